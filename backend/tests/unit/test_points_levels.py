import pytest

from app.domain.gamification.levels import level_for_points, level_progress, points_for_level


@pytest.mark.parametrize(
	"points,level",
	[(0, 1), (49, 1), (50, 2), (113, 2), (199, 2), (200, 3), (450, 4), (1250, 6), (5000, 11), (-30, 1)],
)
def test_level_for_points(points, level):
	assert level_for_points(points) == level


def test_level_is_monotonic():
	previous = level_for_points(0)
	for points in range(0, 20000, 7):
		current = level_for_points(points)
		assert current >= previous
		previous = current


def test_points_for_level_is_the_threshold():
	for level in range(1, 40):
		threshold = points_for_level(level)
		assert level_for_points(threshold) == level
		if threshold > 0:
			assert level_for_points(threshold - 1) == level - 1


def test_level_progress():
	progress = level_progress(75)
	assert progress.level == 2
	assert progress.current_level_points == 50
	assert progress.next_level_points == 200
	assert progress.points_to_next_level == 125
	assert progress.progress_percent == pytest.approx(25 / 150)
