from datetime import date, datetime, timedelta, timezone

from app.domain.gamification.achievements import (
	DEFAULT_ACHIEVEMENTS,
	UserState,
	build_user_state,
	evaluate,
	evaluate_until_stable,
)
from app.domain.gamification.models import (
	AchievementDefinition,
	ActivityRecord,
	CriteriaType,
	Rarity,
	ScoreBreakdown,
)

TODAY = date(2024, 5, 1)


def _record(activity_type, *, score=None, day=TODAY, index=0):
	metadata = {} if score is None else {"score": score}
	return ActivityRecord(
		id=f"r{index}",
		user_id="u1",
		activity_type=activity_type,
		occurred_at=datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc),
		metadata=metadata,
		points_earned=10,
		breakdown=ScoreBreakdown(base_points=10, multiplier=1.0, bonuses=(), points=10),
	)


def _ids(definitions):
	return [definition.id for definition in definitions]


def test_first_quiz_unlocks_once():
	state = build_user_state(
		[_record("QUIZ_COMPLETION", score=60)],
		activity_days=[TODAY],
		as_of=TODAY,
		total_points=50,
		earned_ids=(),
	)
	assert "first_quiz_completed" in _ids(evaluate(state, DEFAULT_ACHIEVEMENTS))

	already = build_user_state(
		[_record("QUIZ_COMPLETION", score=60)],
		activity_days=[TODAY],
		as_of=TODAY,
		total_points=50,
		earned_ids=("first_quiz_completed",),
	)
	assert "first_quiz_completed" not in _ids(evaluate(already, DEFAULT_ACHIEVEMENTS))


def test_inactive_definitions_never_unlock():
	registry = [
		AchievementDefinition(
			id="retired",
			criteria_type=CriteriaType.ACTIVITY_COUNT,
			threshold=1,
			is_active=False,
		)
	]
	state = UserState(activity_counts={"QUIZ_COMPLETION": 3})
	assert evaluate(state, registry) == []


def test_duplicate_registry_entries_unlock_once():
	definition = AchievementDefinition(id="any", criteria_type=CriteriaType.ACTIVITY_COUNT, threshold=1)
	state = UserState(activity_counts={"DAILY_LOGIN": 1})
	assert _ids(evaluate(state, [definition, definition])) == ["any"]


def test_category_count_and_score_average():
	registry = [
		AchievementDefinition(
			id="collector",
			criteria_type=CriteriaType.CATEGORY_COUNT,
			threshold=3,
			category="collections",
		),
		AchievementDefinition(
			id="ace",
			criteria_type=CriteriaType.SCORE_AVERAGE,
			threshold=90,
			category="QUIZ_COMPLETION",
		),
		AchievementDefinition(
			id="flawless",
			criteria_type=CriteriaType.PERFECT_SCORES,
			threshold=2,
			category="QUIZ_COMPLETION",
		),
	]
	records = [
		_record("COLLECTION_CREATED", index=1),
		_record("COLLECTION_SHARED", index=2),
		_record("COLLECTION_LIKED", index=3),
		_record("QUIZ_COMPLETION", score=100, index=4),
		_record("QUIZ_COMPLETION", score=85, index=5),
	]
	state = build_user_state(records, activity_days=[TODAY], as_of=TODAY, total_points=0, earned_ids=())
	assert _ids(evaluate(state, registry)) == ["collector", "ace"]


def test_score_average_needs_scored_activities():
	registry = [AchievementDefinition(id="ace", criteria_type=CriteriaType.SCORE_AVERAGE, threshold=0)]
	state = build_user_state(
		[_record("DAILY_LOGIN")],
		activity_days=[TODAY],
		as_of=TODAY,
		total_points=0,
		earned_ids=(),
	)
	assert evaluate(state, registry) == []


def test_score_average_waits_for_min_samples():
	registry = [
		AchievementDefinition(
			id="ace",
			criteria_type=CriteriaType.SCORE_AVERAGE,
			threshold=90,
			category="QUIZ_COMPLETION",
			min_samples=3,
		)
	]

	def _state(quizzes):
		records = [_record("QUIZ_COMPLETION", score=100, index=i) for i in range(quizzes)]
		return build_user_state(records, activity_days=[TODAY], as_of=TODAY, total_points=0, earned_ids=())

	assert evaluate(_state(2), registry) == []
	assert _ids(evaluate(_state(3), registry)) == ["ace"]


def test_streak_rule_uses_longest_run():
	days = [TODAY - timedelta(days=offset) for offset in range(10, 3, -1)]
	records = [_record("DAILY_LOGIN", day=day, index=i) for i, day in enumerate(days)]
	state = build_user_state(records, activity_days=days, as_of=TODAY, total_points=35, earned_ids=())
	assert state.current_streak == 0
	assert state.longest_streak == 7
	assert "week_streak" in _ids(evaluate(state, DEFAULT_ACHIEVEMENTS))


def test_bonus_points_cascade_into_level_milestones():
	registry = [
		AchievementDefinition(
			id="big_unlock",
			criteria_type=CriteriaType.TOTAL_POINTS,
			threshold=100,
			points=700,
			rarity=Rarity.EPIC,
		),
		AchievementDefinition(id="level_5_reached", criteria_type=CriteriaType.LEVEL_REACHED, threshold=5),
	]
	state = UserState(total_points=150, level=2)
	assert _ids(evaluate(state, registry)) == ["big_unlock"]
	assert _ids(evaluate_until_stable(state, registry)) == ["big_unlock", "level_5_reached"]


def test_default_bonus_depends_on_rarity():
	common = AchievementDefinition(id="c", criteria_type=CriteriaType.ACTIVITY_COUNT, threshold=1)
	rare = AchievementDefinition(id="r", criteria_type=CriteriaType.ACTIVITY_COUNT, threshold=1, rarity=Rarity.RARE)
	explicit = AchievementDefinition(id="e", criteria_type=CriteriaType.ACTIVITY_COUNT, threshold=1, points=25)
	assert common.bonus_points == 150
	assert rare.bonus_points == 300
	assert explicit.bonus_points == 25
