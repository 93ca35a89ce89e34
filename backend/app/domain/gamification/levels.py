"""Level curve: level = floor(sqrt(points / 50)) + 1."""

from __future__ import annotations

import math

from app.domain.gamification.models import LevelProgress

POINTS_PER_LEVEL_UNIT = 50


def level_for_points(total_points: int) -> int:
	"""Return the level for a points total.

	Integer arithmetic: floor(sqrt(p / 50)) == isqrt(p // 50) for p >= 0.
	"""

	points = max(0, int(total_points))
	return math.isqrt(points // POINTS_PER_LEVEL_UNIT) + 1


def points_for_level(level: int) -> int:
	"""Minimum points required to be at ``level``."""

	lvl = max(1, int(level))
	return POINTS_PER_LEVEL_UNIT * (lvl - 1) ** 2


def level_progress(total_points: int) -> LevelProgress:
	points = max(0, int(total_points))
	level = level_for_points(points)
	floor_points = points_for_level(level)
	next_points = points_for_level(level + 1)
	span = next_points - floor_points
	earned = points - floor_points
	return LevelProgress(
		level=level,
		current_level_points=floor_points,
		next_level_points=next_points,
		points_to_next_level=next_points - points,
		progress_percent=max(0.0, min(1.0, earned / span)),
	)
