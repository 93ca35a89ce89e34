"""Award engine and per-user read models for points, levels and achievements."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

import ulid

from app.domain.gamification import policy
from app.domain.gamification.achievements import evaluate_until_stable
from app.domain.gamification.exceptions import (
	AwardConflictError,
	DuplicateActivityError,
	IdempotencyConflictError,
	ProfileVersionConflict,
	StoreUnavailableError,
)
from app.domain.gamification.levels import level_for_points, level_progress
from app.domain.gamification.models import (
	AchievementDefinition,
	AchievementStatus,
	ActivityRecord,
	ActivityType,
	AwardResult,
	DailyProgress,
	EarnedAchievement,
	ProfileSummary,
	Rarity,
	ScoreProfile,
	UnlockedAchievement,
	coerce_activity_type,
)
from app.domain.gamification.repo import AwardCommit, GamificationRepository, get_repository
from app.domain.gamification.streaks import compute_streak, local_date, resolve_timezone
from app.domain.gamification.windows import HISTORY_TIMEFRAMES, ensure_aware, history_start
from app.obs import metrics as obs_metrics
from app.settings import settings

_LOG = logging.getLogger(__name__)

Clock = Callable[[], datetime]

WEEKLY_PROGRESS_DAYS = 7


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def normalise_activity_type(value: str | ActivityType) -> str:
	"""Known tags map onto the enum value; unknown tags are kept as given."""

	member = coerce_activity_type(value)
	if member is not None:
		return member.value
	return str(value).strip()


class _UserLocks:
	"""One asyncio.Lock per user, dropped once nobody holds or waits on it."""

	def __init__(self) -> None:
		self._locks: Dict[str, asyncio.Lock] = {}
		self._waiters: Dict[str, int] = defaultdict(int)

	@asynccontextmanager
	async def hold(self, user_id: str) -> AsyncIterator[None]:
		lock = self._locks.setdefault(user_id, asyncio.Lock())
		self._waiters[user_id] += 1
		try:
			async with lock:
				yield
		finally:
			self._waiters[user_id] -= 1
			if self._waiters[user_id] <= 0:
				self._waiters.pop(user_id, None)
				self._locks.pop(user_id, None)


def _unlocked_view(definition: Optional[AchievementDefinition], earned: EarnedAchievement) -> UnlockedAchievement:
	if definition is None:
		return UnlockedAchievement(
			id=earned.achievement_id,
			name=earned.achievement_id,
			rarity=Rarity.COMMON,
			points=earned.points_awarded,
		)
	return UnlockedAchievement(
		id=definition.id,
		name=definition.name or definition.id,
		rarity=definition.rarity,
		points=earned.points_awarded,
	)


class PointsService:
	"""Turns activity events into points, levels, streaks and achievement unlocks.

	Same-user awards are serialised by an in-process lock, and every commit is
	guarded by the profile version so writers in other processes are detected
	too. A stale commit restarts the whole computation from a fresh read.
	"""

	def __init__(
		self,
		repository: Optional[GamificationRepository] = None,
		*,
		clock: Optional[Clock] = None,
		max_retries: Optional[int] = None,
		timezone_name: Optional[str] = None,
	) -> None:
		self._repository = repository
		self._clock = clock or _utcnow
		self._max_retries = max_retries
		self._timezone_name = timezone_name
		self._locks = _UserLocks()

	@property
	def repository(self) -> GamificationRepository:
		return self._repository or get_repository()

	def _now(self) -> datetime:
		return ensure_aware(self._clock())

	def _tz(self):
		return resolve_timezone(self._timezone_name or settings.streak_timezone)

	async def award(
		self,
		user_id: str,
		activity_type: str | ActivityType,
		metadata: Optional[Mapping[str, Any]] = None,
		*,
		occurred_at: Optional[datetime] = None,
		idempotency_key: Optional[str] = None,
	) -> AwardResult:
		tag = normalise_activity_type(activity_type)
		payload = dict(metadata or {})
		key = (idempotency_key or "").strip() or None
		attempts = max(1, self._max_retries if self._max_retries is not None else settings.award_max_retries)
		started = time.perf_counter()
		try:
			async with self._locks.hold(user_id):
				result = await self._award_with_retries(user_id, tag, payload, occurred_at, key, attempts)
		except (AwardConflictError, IdempotencyConflictError):
			obs_metrics.inc_award("conflict")
			raise
		except StoreUnavailableError:
			obs_metrics.inc_award("error")
			raise
		finally:
			obs_metrics.observe_award_duration(time.perf_counter() - started)
		obs_metrics.inc_award("replayed" if result.replayed else "ok")
		return result

	async def _award_with_retries(
		self,
		user_id: str,
		tag: str,
		payload: Dict[str, Any],
		occurred_at: Optional[datetime],
		key: Optional[str],
		attempts: int,
	) -> AwardResult:
		repository = self.repository
		for attempt in range(1, attempts + 1):
			if key:
				existing = await repository.find_activity_by_key(user_id, key)
				if existing is not None:
					return await self._replay(existing, tag)
			try:
				return await self._award_once(repository, user_id, tag, payload, occurred_at, key)
			except ProfileVersionConflict as exc:
				obs_metrics.inc_award_retry()
				_LOG.info(
					"points.award_conflict",
					extra={"user": user_id, "attempt": attempt, "conflict": exc.reason},
				)
			except DuplicateActivityError:
				existing = await repository.find_activity_by_key(user_id, key) if key else None
				if existing is None:
					raise
				return await self._replay(existing, tag)
		_LOG.warning("points.award_conflict", extra={"user": user_id, "attempts": attempts, "exhausted": True})
		raise AwardConflictError()

	async def _award_once(
		self,
		repository: GamificationRepository,
		user_id: str,
		tag: str,
		payload: Dict[str, Any],
		occurred_at: Optional[datetime],
		key: Optional[str],
	) -> AwardResult:
		now = self._now()
		tz = self._tz()
		stored = await repository.load_profile(user_id)
		expected_version = stored.version if stored else 0
		profile = stored or ScoreProfile.empty(user_id, now=now)

		breakdown = policy.score_activity(tag, payload)
		record = ActivityRecord(
			id=ulid.new().str,
			user_id=user_id,
			activity_type=tag,
			occurred_at=ensure_aware(occurred_at) if occurred_at else now,
			metadata=payload,
			points_earned=breakdown.points,
			breakdown=breakdown,
			idempotency_key=key,
		)

		summary = await repository.summarize_activities(user_id, tz)
		summary.add(record, local_date(record.occurred_at, tz))
		days = summary.activity_days
		today = local_date(now, tz)
		streak = compute_streak(days, today)
		longest = max(profile.longest_streak, streak.longest)

		previous_level = level_for_points(profile.total_points)
		total = profile.total_points + breakdown.points
		state = summary.to_state(as_of=today, total_points=total, earned_ids=profile.earned_ids)
		state.longest_streak = longest

		definitions = await repository.list_active_achievements()
		unlocked = evaluate_until_stable(state, definitions)
		earned = tuple(
			EarnedAchievement(
				achievement_id=definition.id,
				earned_at=now,
				points_awarded=definition.bonus_points,
				activity_id=record.id,
			)
			for definition in unlocked
		)
		total += sum(item.points_awarded for item in earned)
		level = level_for_points(total)

		updated = replace(
			profile,
			total_points=total,
			level=level,
			current_streak=streak.current,
			longest_streak=longest,
			last_active_on=max(days),
			activity_count=profile.activity_count + 1,
			earned_achievements=profile.earned_achievements + earned,
			version=expected_version + 1,
			updated_at=now,
		)
		await repository.commit_award(
			AwardCommit(profile=updated, expected_version=expected_version, record=record, unlocks=earned)
		)

		leveled_up = level > previous_level
		obs_metrics.inc_points_awarded(tag, total - profile.total_points)
		if leveled_up:
			obs_metrics.inc_level_up()
		for definition in unlocked:
			obs_metrics.inc_achievement_unlocked(definition.rarity.value)
			_LOG.info(
				"achievement.unlocked",
				extra={"user": user_id, "achievement": definition.id, "bonus": definition.bonus_points},
			)
		_LOG.info(
			"points.awarded",
			extra={
				"user": user_id,
				"activity_type": tag,
				"points": breakdown.points,
				"total": total,
				"level": level,
				"unlocks": len(unlocked),
			},
		)
		return AwardResult(
			activity_id=record.id,
			points_earned=breakdown.points,
			total_points=total,
			level=level,
			leveled_up=leveled_up,
			breakdown=breakdown,
			achievements=[_unlocked_view(definition, item) for definition, item in zip(unlocked, earned)],
			current_streak=streak.current,
			longest_streak=longest,
		)

	async def _replay(self, record: ActivityRecord, tag: str) -> AwardResult:
		if record.activity_type != tag:
			raise IdempotencyConflictError()
		repository = self.repository
		profile = await repository.load_profile(record.user_id) or ScoreProfile.empty(record.user_id)
		definitions = {item.id: item for item in await repository.list_active_achievements()}
		achievements = [
			_unlocked_view(definitions.get(item.achievement_id), item)
			for item in profile.earned_achievements
			if item.activity_id == record.id
		]
		_LOG.info("points.award_replayed", extra={"user": record.user_id, "activity_id": record.id})
		return AwardResult(
			activity_id=record.id,
			points_earned=record.points_earned,
			total_points=profile.total_points,
			level=level_for_points(profile.total_points),
			leveled_up=False,
			breakdown=record.breakdown,
			achievements=achievements,
			current_streak=self._visible_streak(profile),
			longest_streak=profile.longest_streak,
			replayed=True,
		)

	def _visible_streak(self, profile: ScoreProfile) -> int:
		if profile.last_active_on is None:
			return 0
		if profile.last_active_on != local_date(self._now(), self._tz()):
			return 0
		return profile.current_streak

	async def get_profile(self, user_id: str) -> ProfileSummary:
		profile = await self.repository.load_profile(user_id) or ScoreProfile.empty(user_id)
		return ProfileSummary(
			user_id=user_id,
			total_points=profile.total_points,
			progress=level_progress(profile.total_points),
			current_streak=self._visible_streak(profile),
			longest_streak=profile.longest_streak,
			achievement_count=len(profile.earned_achievements),
			activity_count=profile.activity_count,
			last_active_on=profile.last_active_on,
		)

	async def get_point_history(self, user_id: str, timeframe: str = "month") -> List[ActivityRecord]:
		"""Records with positive points in the timeframe, oldest first."""

		if timeframe not in HISTORY_TIMEFRAMES:
			timeframe = "month"
		now = self._now()
		records = await self.repository.query_activities(
			user_id=user_id,
			since=history_start(timeframe, now),
			until=now,
		)
		return [record for record in records if record.points_earned > 0]

	async def get_weekly_progress(self, user_id: str) -> List[DailyProgress]:
		now = self._now()
		tz = self._tz()
		today = local_date(now, tz)
		first_day = today - timedelta(days=WEEKLY_PROGRESS_DAYS - 1)
		# One extra day of slack covers timezones ahead of UTC.
		records = await self.repository.query_activities(
			user_id=user_id,
			since=now - timedelta(days=WEEKLY_PROGRESS_DAYS + 1),
			until=now,
		)
		points: Dict[Any, int] = defaultdict(int)
		counts: Dict[Any, int] = defaultdict(int)
		for record in records:
			day = local_date(record.occurred_at, tz)
			if first_day <= day <= today:
				points[day] += record.points_earned
				counts[day] += 1
		return [
			DailyProgress(day=day, points=points[day], activities=counts[day])
			for day in (first_day + timedelta(days=offset) for offset in range(WEEKLY_PROGRESS_DAYS))
		]

	async def list_achievements(self, user_id: str) -> List[AchievementStatus]:
		repository = self.repository
		definitions = await repository.list_active_achievements()
		profile = await repository.load_profile(user_id)
		earned = {item.achievement_id: item for item in profile.earned_achievements} if profile else {}
		statuses: List[AchievementStatus] = []
		for definition in definitions:
			item = earned.get(definition.id)
			statuses.append(
				AchievementStatus(
					definition=definition,
					earned=item is not None,
					earned_at=item.earned_at if item else None,
					points_awarded=item.points_awarded if item else None,
				)
			)
		return statuses
