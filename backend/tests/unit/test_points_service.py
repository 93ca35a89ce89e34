import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.domain.gamification.exceptions import (
	AwardConflictError,
	IdempotencyConflictError,
	ProfileVersionConflict,
	StoreUnavailableError,
)
from app.domain.gamification.repo import InMemoryGamificationRepository
from app.domain.gamification.service import PointsService

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _clock(moment=NOW):
	return lambda: moment


class ConflictingRepository(InMemoryGamificationRepository):
	"""Rejects the first ``failures`` commits as stale."""

	def __init__(self, failures, **kwargs):
		super().__init__(**kwargs)
		self.failures = failures
		self.attempts = 0

	async def commit_award(self, commit):
		self.attempts += 1
		if self.attempts <= self.failures:
			raise ProfileVersionConflict()
		await super().commit_award(commit)


class UnavailableRepository(InMemoryGamificationRepository):
	async def commit_award(self, commit):
		raise StoreUnavailableError()


class SummaryOnlyRepository(InMemoryGamificationRepository):
	"""Fails if an award reads the raw activity log instead of its summary."""

	async def query_activities(self, **kwargs):
		raise AssertionError("award scanned the activity log")


async def _reconciles(repository, user_id):
	profile = await repository.load_profile(user_id)
	records = await repository.query_activities(user_id=user_id)
	bonuses = sum(item.points_awarded for item in profile.earned_achievements)
	assert profile.total_points == sum(record.points_earned for record in records) + bonuses
	assert profile.activity_count == len(records)
	assert profile.longest_streak >= profile.current_streak
	return profile, records


@pytest.mark.asyncio
async def test_first_quiz_awards_scored_points_and_levels_up():
	repository = InMemoryGamificationRepository(definitions=())
	service = PointsService(repository, clock=_clock())

	result = await service.award("u1", "QUIZ_COMPLETION", {"score": 95, "difficulty": "advanced"})

	assert result.points_earned == 113
	assert result.total_points == 113
	assert result.level == 2
	assert result.leveled_up is True
	assert result.current_streak == 1
	assert result.achievements == []
	profile = await repository.load_profile("u1")
	assert profile.version == 1
	assert profile.last_active_on == NOW.date()


@pytest.mark.asyncio
async def test_unlock_bonus_is_added_to_the_total():
	repository = InMemoryGamificationRepository()
	service = PointsService(repository, clock=_clock())

	result = await service.award("u1", "QUIZ_COMPLETION", {"score": 95, "difficulty": "advanced"})

	assert [item.id for item in result.achievements] == ["first_quiz_completed"]
	assert result.achievements[0].points == 150
	assert result.total_points == 263
	assert result.level == 3

	second = await service.award("u1", "QUIZ_COMPLETION", {"score": 60})
	assert second.achievements == []
	profile, _records = await _reconciles(repository, "u1")
	assert [item.achievement_id for item in profile.earned_achievements] == ["first_quiz_completed"]


@pytest.mark.asyncio
async def test_unknown_activity_is_recorded_with_zero_points():
	repository = InMemoryGamificationRepository(definitions=())
	service = PointsService(repository, clock=_clock())

	result = await service.award("u1", "virtual_reality_tour", {"score": 100})

	assert result.points_earned == 0
	assert result.total_points == 0
	assert result.leveled_up is False
	records = await repository.query_activities(user_id="u1")
	assert [record.activity_type for record in records] == ["virtual_reality_tour"]


@pytest.mark.asyncio
async def test_lowercase_tags_are_normalised():
	repository = InMemoryGamificationRepository(definitions=())
	service = PointsService(repository, clock=_clock())

	result = await service.award("u1", "daily_login")

	assert result.points_earned == 5
	records = await repository.query_activities(user_id="u1")
	assert records[0].activity_type == "DAILY_LOGIN"


@pytest.mark.asyncio
async def test_concurrent_awards_for_one_user_lose_nothing():
	repository = InMemoryGamificationRepository()
	service = PointsService(repository, clock=_clock())

	results = await asyncio.gather(
		*(service.award("u1", "QUIZ_COMPLETION", {"score": 80}) for _ in range(15)),
		*(service.award("u1", "DAILY_LOGIN") for _ in range(10)),
	)

	profile, records = await _reconciles(repository, "u1")
	assert len(records) == 25
	assert profile.version == 25
	assert len({result.activity_id for result in results}) == 25
	earned = [item.achievement_id for item in profile.earned_achievements]
	assert len(earned) == len(set(earned))
	assert "ten_quizzes_completed" in earned
	assert max(result.total_points for result in results) == profile.total_points


@pytest.mark.asyncio
async def test_writers_in_another_process_are_reconciled():
	repository = InMemoryGamificationRepository()
	ours = PointsService(repository, clock=_clock())
	theirs = PointsService(repository, clock=_clock())
	injected = False
	commit = repository.commit_award

	async def racing_commit(item):
		nonlocal injected
		if not injected:
			injected = True
			await theirs.award("u1", "COURSE_COMPLETION")
		await commit(item)

	repository.commit_award = racing_commit

	result = await ours.award("u1", "QUIZ_COMPLETION", {"score": 50})

	profile, records = await _reconciles(repository, "u1")
	assert len(records) == 2
	assert profile.version == 2
	assert result.total_points == profile.total_points
	assert {item.achievement_id for item in profile.earned_achievements} == {
		"first_course_completed",
		"first_quiz_completed",
	}
	assert profile.total_points == 550


@pytest.mark.asyncio
async def test_version_conflicts_are_retried():
	repository = ConflictingRepository(failures=2, definitions=())
	service = PointsService(repository, clock=_clock(), max_retries=3)

	result = await service.award("u1", "DAILY_LOGIN")

	assert repository.attempts == 3
	assert result.total_points == 5
	_profile, records = await _reconciles(repository, "u1")
	assert len(records) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_and_credit_nothing():
	repository = ConflictingRepository(failures=10, definitions=())
	service = PointsService(repository, clock=_clock(), max_retries=4)

	with pytest.raises(AwardConflictError):
		await service.award("u1", "DAILY_LOGIN")

	assert repository.attempts == 4
	assert await repository.load_profile("u1") is None
	assert await repository.query_activities(user_id="u1") == []


@pytest.mark.asyncio
async def test_store_failure_propagates_without_credit():
	repository = UnavailableRepository()
	service = PointsService(repository, clock=_clock())

	with pytest.raises(StoreUnavailableError):
		await service.award("u1", "GOAL_COMPLETED")

	assert await repository.load_profile("u1") is None


@pytest.mark.asyncio
async def test_repeated_idempotency_key_replays_the_first_outcome():
	repository = InMemoryGamificationRepository()
	service = PointsService(repository, clock=_clock())

	first = await service.award("u1", "QUIZ_COMPLETION", {"score": 95}, idempotency_key="evt-1")
	again = await service.award("u1", "QUIZ_COMPLETION", {"score": 95}, idempotency_key="evt-1")

	assert again.replayed is True
	assert again.activity_id == first.activity_id
	assert again.points_earned == first.points_earned
	assert again.total_points == first.total_points
	assert [item.id for item in again.achievements] == [item.id for item in first.achievements]
	assert len(await repository.query_activities(user_id="u1")) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_are_credited_once():
	repository = InMemoryGamificationRepository(definitions=())
	service = PointsService(repository, clock=_clock())

	results = await asyncio.gather(
		*(service.award("u1", "GOAL_COMPLETED", idempotency_key="goal-7") for _ in range(5))
	)

	assert sum(1 for result in results if not result.replayed) == 1
	profile = await repository.load_profile("u1")
	assert profile.total_points == 100


@pytest.mark.asyncio
async def test_idempotency_key_reuse_for_another_activity_is_rejected():
	repository = InMemoryGamificationRepository()
	service = PointsService(repository, clock=_clock())
	await service.award("u1", "DAILY_LOGIN", idempotency_key="evt-2")

	with pytest.raises(IdempotencyConflictError):
		await service.award("u1", "GOAL_COMPLETED", idempotency_key="evt-2")

	other_user = await service.award("u2", "GOAL_COMPLETED", idempotency_key="evt-2")
	assert other_user.replayed is False


@pytest.mark.asyncio
async def test_streak_builds_across_days_and_hides_when_lapsed():
	repository = InMemoryGamificationRepository(definitions=())
	for offset in range(3):
		day = NOW + timedelta(days=offset)
		result = await PointsService(repository, clock=_clock(day)).award("u1", "DAILY_LOGIN")
	assert result.current_streak == 3
	assert result.longest_streak == 3

	later = PointsService(repository, clock=_clock(NOW + timedelta(days=5)))
	summary = await later.get_profile("u1")
	assert summary.current_streak == 0
	assert summary.longest_streak == 3

	result = await later.award("u1", "DAILY_LOGIN")
	assert result.current_streak == 1
	assert result.longest_streak == 3


@pytest.mark.asyncio
async def test_get_profile_for_unknown_user_is_empty():
	service = PointsService(InMemoryGamificationRepository(), clock=_clock())

	summary = await service.get_profile("nobody")

	assert summary.total_points == 0
	assert summary.progress.level == 1
	assert summary.progress.next_level_points == 50
	assert summary.achievement_count == 0


@pytest.mark.asyncio
async def test_point_history_filters_timeframe_and_zero_point_records():
	repository = InMemoryGamificationRepository(definitions=())
	service = PointsService(repository, clock=_clock())
	await service.award("u1", "DAILY_LOGIN", occurred_at=NOW - timedelta(days=60))
	await service.award("u1", "COMMENT_POSTED", occurred_at=NOW - timedelta(days=3))
	await service.award("u1", "SOMETHING_UNSCORED", occurred_at=NOW - timedelta(days=2))

	month = await service.get_point_history("u1", "month")
	year = await service.get_point_history("u1", "year")
	fallback = await service.get_point_history("u1", "decade")

	assert [record.activity_type for record in month] == ["COMMENT_POSTED"]
	assert [record.activity_type for record in year] == ["DAILY_LOGIN", "COMMENT_POSTED"]
	assert fallback == month


@pytest.mark.asyncio
async def test_weekly_progress_is_zero_filled():
	repository = InMemoryGamificationRepository(definitions=())
	service = PointsService(repository, clock=_clock())
	await service.award("u1", "DAILY_LOGIN", occurred_at=NOW - timedelta(days=2))
	await service.award("u1", "COMMENT_POSTED")
	await service.award("u1", "DAILY_LOGIN")
	await service.award("u1", "DAILY_LOGIN", occurred_at=NOW - timedelta(days=9))

	days = await service.get_weekly_progress("u1")

	assert [item.day for item in days] == [NOW.date() - timedelta(days=offset) for offset in range(6, -1, -1)]
	assert days[-1].points == 15
	assert days[-1].activities == 2
	assert days[-3].points == 5
	assert sum(item.points for item in days) == 20


@pytest.mark.asyncio
async def test_list_achievements_marks_earned_ones():
	repository = InMemoryGamificationRepository()
	service = PointsService(repository, clock=_clock())
	await service.award("u1", "GAME_COMPLETION")

	statuses = {status.definition.id: status for status in await service.list_achievements("u1")}

	assert statuses["first_game_completed"].earned is True
	assert statuses["first_game_completed"].points_awarded == 150
	assert statuses["first_game_completed"].earned_at == NOW
	assert statuses["first_quiz_completed"].earned is False
	assert statuses["first_quiz_completed"].earned_at is None


@pytest.mark.asyncio
async def test_retired_definitions_stop_unlocking():
	repository = InMemoryGamificationRepository()
	catalogue = {definition.id: definition for definition in await repository.list_active_achievements()}
	await repository.upsert_achievement_definitions([replace(catalogue["first_quiz_completed"], is_active=False)])
	service = PointsService(repository, clock=_clock())

	result = await service.award("u1", "QUIZ_COMPLETION", {"score": 60})

	assert result.achievements == []
	assert result.total_points == 50


@pytest.mark.asyncio
async def test_quiz_average_needs_five_scored_quizzes():
	repository = SummaryOnlyRepository()
	service = PointsService(repository, clock=_clock())

	results = [await service.award("u1", "QUIZ_COMPLETION", {"score": 95}) for _ in range(5)]

	assert [item.id for item in results[0].achievements] == ["first_quiz_completed"]
	assert all(result.achievements == [] for result in results[1:4])
	assert [item.id for item in results[4].achievements] == ["quiz_virtuoso", "level_5_reached"]
	assert results[4].total_points == 975
	assert results[4].level == 5
