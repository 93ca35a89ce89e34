"""Store contracts for score profiles, the activity log and the achievement registry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo

from app.domain.gamification.achievements import DEFAULT_ACHIEVEMENTS, ActivitySummary
from app.domain.gamification.exceptions import DuplicateActivityError, ProfileVersionConflict
from app.domain.gamification.models import (
	AchievementDefinition,
	ActivityRecord,
	EarnedAchievement,
	ScoreProfile,
)
from app.domain.gamification.streaks import activity_dates
from app.settings import settings


@dataclass(slots=True, frozen=True)
class AwardCommit:
	"""Everything one award writes, persisted as a single unit.

	``profile.version`` must already be ``expected_version + 1``; ``expected_version``
	is 0 for a profile that does not exist yet.
	"""

	profile: ScoreProfile
	expected_version: int
	record: ActivityRecord
	unlocks: Tuple[EarnedAchievement, ...] = ()


class GamificationRepository(Protocol):
	async def load_profile(self, user_id: str) -> Optional[ScoreProfile]:
		...

	async def commit_award(self, commit: AwardCommit) -> None:
		"""Persist atomically; raise ProfileVersionConflict on a stale version and
		DuplicateActivityError when the idempotency key is taken."""
		...

	async def find_activity_by_key(self, user_id: str, idempotency_key: str) -> Optional[ActivityRecord]:
		...

	async def query_activities(
		self,
		*,
		user_id: Optional[str] = None,
		activity_types: Optional[Iterable[str]] = None,
		since: Optional[datetime] = None,
		until: Optional[datetime] = None,
	) -> List[ActivityRecord]:
		...

	async def list_profiles(self) -> List[ScoreProfile]:
		...

	async def summarize_activities(self, user_id: str, tz: ZoneInfo) -> ActivitySummary:
		"""Per-type counts and score aggregates of the user's log plus their active days in ``tz``."""
		...

	async def list_active_achievements(self) -> List[AchievementDefinition]:
		...

	async def fetch_display_names(self, user_ids: Sequence[str]) -> Dict[str, str]:
		...


class InMemoryGamificationRepository:
	"""Process-local store used in development and tests."""

	def __init__(
		self,
		definitions: Optional[Iterable[AchievementDefinition]] = None,
		*,
		display_names: Optional[Dict[str, str]] = None,
	) -> None:
		self._lock = asyncio.Lock()
		self._profiles: Dict[str, ScoreProfile] = {}
		self._records: List[ActivityRecord] = []
		self._by_key: Dict[Tuple[str, str], ActivityRecord] = {}
		self._definitions: List[AchievementDefinition] = list(
			DEFAULT_ACHIEVEMENTS if definitions is None else definitions
		)
		self.display_names: Dict[str, str] = dict(display_names or {})

	async def load_profile(self, user_id: str) -> Optional[ScoreProfile]:
		async with self._lock:
			profile = self._profiles.get(user_id)
			return replace(profile) if profile else None

	async def commit_award(self, commit: AwardCommit) -> None:
		async with self._lock:
			user_id = commit.profile.user_id
			current = self._profiles.get(user_id)
			current_version = current.version if current else 0
			if current_version != commit.expected_version:
				raise ProfileVersionConflict()
			key = commit.record.idempotency_key
			if key and (user_id, key) in self._by_key:
				raise DuplicateActivityError()
			if current is not None:
				taken = current.earned_ids
				if any(item.achievement_id in taken for item in commit.unlocks):
					raise ProfileVersionConflict("achievement_already_earned")
			self._profiles[user_id] = replace(commit.profile)
			self._records.append(commit.record)
			if key:
				self._by_key[(user_id, key)] = commit.record

	async def find_activity_by_key(self, user_id: str, idempotency_key: str) -> Optional[ActivityRecord]:
		async with self._lock:
			return self._by_key.get((user_id, idempotency_key))

	async def query_activities(
		self,
		*,
		user_id: Optional[str] = None,
		activity_types: Optional[Iterable[str]] = None,
		since: Optional[datetime] = None,
		until: Optional[datetime] = None,
	) -> List[ActivityRecord]:
		types = frozenset(activity_types) if activity_types is not None else None
		async with self._lock:
			matched = [
				record
				for record in self._records
				if (user_id is None or record.user_id == user_id)
				and (types is None or record.activity_type in types)
				and (since is None or record.occurred_at >= since)
				and (until is None or record.occurred_at <= until)
			]
		matched.sort(key=lambda record: (record.occurred_at, record.id))
		return matched

	async def summarize_activities(self, user_id: str, tz: ZoneInfo) -> ActivitySummary:
		async with self._lock:
			records = [record for record in self._records if record.user_id == user_id]
		summary = ActivitySummary(activity_days=activity_dates((record.occurred_at for record in records), tz))
		for record in records:
			summary.add(record)
		return summary

	async def list_profiles(self) -> List[ScoreProfile]:
		async with self._lock:
			return [replace(profile) for profile in self._profiles.values()]

	async def list_active_achievements(self) -> List[AchievementDefinition]:
		async with self._lock:
			return [definition for definition in self._definitions if definition.is_active]

	async def fetch_display_names(self, user_ids: Sequence[str]) -> Dict[str, str]:
		return {user_id: self.display_names[user_id] for user_id in user_ids if user_id in self.display_names}

	async def upsert_achievement_definitions(self, definitions: Iterable[AchievementDefinition]) -> None:
		async with self._lock:
			incoming = {definition.id: definition for definition in definitions}
			kept = [definition for definition in self._definitions if definition.id not in incoming]
			self._definitions = kept + list(incoming.values())


_repository: Optional[GamificationRepository] = None


def get_repository() -> GamificationRepository:
	global _repository
	if _repository is None:
		if settings.points_store_backend == "memory":
			_repository = InMemoryGamificationRepository()
		else:
			from app.domain.gamification.postgres_repo import PostgresGamificationRepository

			_repository = PostgresGamificationRepository()
	return _repository


def set_repository(repository: Optional[GamificationRepository]) -> None:
	global _repository
	_repository = repository
