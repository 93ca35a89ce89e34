"""Leaderboard aggregation: windowed ranking, positions and engine-wide statistics."""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from redis.exceptions import RedisError

from app.domain.gamification import policy
from app.domain.gamification.levels import level_for_points
from app.domain.gamification.models import (
	CATEGORY_ACTIVITY_TYPES,
	AchievementPopularity,
	ActivityRecord,
	ActivityType,
	ActivityTypeStats,
	LeaderboardCategory,
	LeaderboardEntry,
	LeaderboardPage,
	LeaderboardPosition,
	LeaderboardStats,
	LeaderboardWindow,
	ScoreProfile,
	Standing,
)
from app.domain.gamification.repo import GamificationRepository, get_repository
from app.domain.gamification.windows import ensure_aware, window_start
from app.infra.redis import redis_client
from app.obs import metrics as obs_metrics
from app.settings import settings

_LOG = logging.getLogger(__name__)

RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_LIMIT = 10
TOP_ACHIEVEMENTS_LIMIT = 5


def _cache_key(window: LeaderboardWindow, category: LeaderboardCategory) -> str:
	return f"lb:standings:{window.value}:{category.value}"


def _ordering_key(standing: Standing):
	registered = standing.registered_at
	return (
		-standing.points,
		-standing.activity_count,
		registered is None,
		registered.timestamp() if registered else 0.0,
		standing.user_id,
	)


def rank_standings(standings: Iterable[Standing]) -> List[Standing]:
	"""Participants only (points > 0), in final rank order."""

	return sorted((item for item in standings if item.points > 0), key=_ordering_key)


def percentile_for(rank: int, total: int) -> int:
	return policy.round_half_up((total - rank + 1) / total * 100)


def _average(total: float, count: int) -> Optional[float]:
	if count <= 0:
		return None
	return round(total / count, 1)


class _Fold:
	"""Per-user accumulator for one window/category fold."""

	__slots__ = ("points", "count", "by_type", "score_total", "score_count", "perfect")

	def __init__(self) -> None:
		self.points = 0
		self.count = 0
		self.by_type: Counter[str] = Counter()
		self.score_total = 0.0
		self.score_count = 0
		self.perfect = 0

	def add(self, record: ActivityRecord) -> None:
		self.points += record.points_earned
		self.count += 1
		self.by_type[record.activity_type] += 1
		score = policy.read_score(record.metadata)
		if score is not None:
			self.score_total += score
			self.score_count += 1
			if score >= 100:
				self.perfect += 1

	def stats_for(self, category: LeaderboardCategory) -> Dict[str, Any]:
		if category is LeaderboardCategory.GAMES:
			return {
				"games_completed": self.by_type[ActivityType.GAME_COMPLETION.value],
				"avg_score": _average(self.score_total, self.score_count),
			}
		if category is LeaderboardCategory.QUIZZES:
			return {
				"quizzes_completed": self.by_type[ActivityType.QUIZ_COMPLETION.value],
				"avg_score": _average(self.score_total, self.score_count),
				"perfect_scores": self.perfect,
			}
		if category is LeaderboardCategory.COLLECTIONS:
			return {
				"collections_created": self.by_type[ActivityType.COLLECTION_CREATED.value],
				"collections_shared": self.by_type[ActivityType.COLLECTION_SHARED.value],
				"likes_received": self.by_type[ActivityType.COLLECTION_LIKED.value],
			}
		if category is LeaderboardCategory.COURSES:
			return {
				"courses_completed": self.by_type[ActivityType.COURSE_COMPLETION.value],
				"lessons_completed": self.by_type[ActivityType.LESSON_COMPLETION.value],
			}
		return {"activities_count": self.count}


def _standing_to_json(standing: Standing) -> Dict[str, Any]:
	payload = asdict(standing)
	payload["registered_at"] = standing.registered_at.isoformat() if standing.registered_at else None
	return payload


def _standing_from_json(payload: Dict[str, Any]) -> Standing:
	registered = payload.get("registered_at")
	return Standing(
		user_id=str(payload["user_id"]),
		points=int(payload["points"]),
		activity_count=int(payload["activity_count"]),
		level=int(payload["level"]),
		registered_at=datetime.fromisoformat(registered) if registered else None,
		stats=dict(payload.get("stats") or {}),
	)


class LeaderboardService:
	"""Ranks users over a time window and category, anonymising everyone but the caller.

	Reads take no locks against concurrent awards; standings may trail the latest
	award by up to the cache TTL.
	"""

	def __init__(
		self,
		repository: Optional[GamificationRepository] = None,
		*,
		clock: Optional[Callable[[], datetime]] = None,
		cache_ttl_seconds: Optional[int] = None,
	) -> None:
		self._repository = repository
		self._clock = clock
		self._cache_ttl_seconds = cache_ttl_seconds
		self._redis = redis_client

	@property
	def repository(self) -> GamificationRepository:
		return self._repository or get_repository()

	def _now(self) -> datetime:
		if self._clock is None:
			return datetime.now(timezone.utc)
		return ensure_aware(self._clock())

	@property
	def cache_ttl_seconds(self) -> int:
		if self._cache_ttl_seconds is not None:
			return self._cache_ttl_seconds
		return settings.leaderboard_cache_ttl_seconds

	def clamp_limit(self, limit: Optional[int]) -> int:
		if limit is None:
			return settings.leaderboard_default_limit
		return max(1, min(int(limit), settings.leaderboard_max_limit))

	async def _read_cache(self, key: str) -> Optional[List[Standing]]:
		try:
			raw = await self._redis.get(key)
		except (RedisError, OSError):
			_LOG.warning("leaderboard.cache_unavailable", extra={"key": key, "op": "get"})
			return None
		if not raw:
			obs_metrics.inc_leaderboard_cache("miss")
			return None
		try:
			cached = [_standing_from_json(item) for item in json.loads(raw)]
		except (ValueError, TypeError, KeyError, AttributeError):
			_LOG.warning("leaderboard.cache_corrupt", extra={"key": key})
			obs_metrics.inc_leaderboard_cache("miss")
			return None
		obs_metrics.inc_leaderboard_cache("hit")
		return cached

	async def _write_cache(self, key: str, standings: Sequence[Standing]) -> None:
		payload = json.dumps([_standing_to_json(item) for item in standings], separators=(",", ":"))
		try:
			await self._redis.set(key, payload, ex=self.cache_ttl_seconds)
		except (RedisError, OSError):
			_LOG.warning("leaderboard.cache_unavailable", extra={"key": key, "op": "set"})

	async def standings(self, window: LeaderboardWindow, category: LeaderboardCategory) -> List[Standing]:
		"""Full ranked, un-anonymised participant list for a window/category."""

		use_cache = self.cache_ttl_seconds > 0
		key = _cache_key(window, category)
		if use_cache:
			cached = await self._read_cache(key)
			if cached is not None:
				return cached
		ranked = await self._compute_standings(window, category)
		obs_metrics.observe_leaderboard_participants(len(ranked))
		if use_cache:
			await self._write_cache(key, ranked)
		return ranked

	async def _compute_standings(self, window: LeaderboardWindow, category: LeaderboardCategory) -> List[Standing]:
		repository = self.repository
		profiles = {profile.user_id: profile for profile in await repository.list_profiles()}

		if window is LeaderboardWindow.ALL_TIME and category is LeaderboardCategory.OVERALL:
			return rank_standings(
				Standing(
					user_id=profile.user_id,
					points=profile.total_points,
					activity_count=profile.activity_count,
					level=level_for_points(profile.total_points),
					registered_at=profile.created_at,
					stats={"activities_count": profile.activity_count},
				)
				for profile in profiles.values()
			)

		now = self._now()
		records = await repository.query_activities(
			activity_types=CATEGORY_ACTIVITY_TYPES.get(category),
			since=window_start(window, now),
			until=now,
		)
		folds: Dict[str, _Fold] = defaultdict(_Fold)
		for record in records:
			if record.points_earned <= 0:
				continue
			folds[record.user_id].add(record)

		standings: List[Standing] = []
		for user_id, fold in folds.items():
			profile = profiles.get(user_id)
			standings.append(
				Standing(
					user_id=user_id,
					points=fold.points,
					activity_count=fold.count,
					level=level_for_points(profile.total_points) if profile else 1,
					registered_at=profile.created_at if profile else None,
					stats=fold.stats_for(category),
				)
			)
		return rank_standings(standings)

	async def _render(
		self,
		ranked: Sequence[Standing],
		current_user_id: Optional[str],
	) -> List[LeaderboardEntry]:
		names: Dict[str, str] = {}
		if current_user_id and any(item.user_id == current_user_id for item in ranked):
			names = await self.repository.fetch_display_names([current_user_id])
		entries: List[LeaderboardEntry] = []
		for rank, standing in enumerate(ranked, start=1):
			is_current = current_user_id is not None and standing.user_id == current_user_id
			entries.append(
				LeaderboardEntry(
					rank=rank,
					display_name=names.get(standing.user_id, standing.user_id) if is_current else f"Player {rank}",
					is_current_user=is_current,
					points=standing.points,
					level=standing.level,
					activity_count=standing.activity_count,
					stats=dict(standing.stats),
					user_id=standing.user_id if is_current else None,
				)
			)
		return entries

	async def get_leaderboard(
		self,
		window: LeaderboardWindow = LeaderboardWindow.ALL_TIME,
		category: LeaderboardCategory = LeaderboardCategory.OVERALL,
		limit: Optional[int] = None,
		*,
		current_user_id: Optional[str] = None,
	) -> LeaderboardPage:
		obs_metrics.inc_leaderboard_query(window.value, category.value)
		ranked = await self.standings(window, category)
		entries = await self._render(ranked[: self.clamp_limit(limit)], current_user_id)
		return LeaderboardPage(
			window=window,
			category=category,
			entries=entries,
			total_participants=len(ranked),
			generated_at=self._now(),
		)

	async def get_position(
		self,
		user_id: str,
		window: LeaderboardWindow = LeaderboardWindow.ALL_TIME,
		category: LeaderboardCategory = LeaderboardCategory.OVERALL,
	) -> LeaderboardPosition:
		ranked = await self.standings(window, category)
		total = len(ranked)
		mine = next((item for item in ranked if item.user_id == user_id), None)
		if mine is None:
			return LeaderboardPosition(rank=None, total_participants=total, percentile=None)
		ahead = sum(1 for item in ranked if item.points > mine.points)
		rank = ahead + 1
		return LeaderboardPosition(
			rank=rank,
			total_participants=total,
			percentile=percentile_for(rank, total),
			points=mine.points,
			activity_count=mine.activity_count,
		)

	async def get_achievements_leaderboard(
		self,
		limit: Optional[int] = None,
		*,
		current_user_id: Optional[str] = None,
	) -> List[LeaderboardEntry]:
		profiles = [profile for profile in await self.repository.list_profiles() if profile.earned_achievements]

		def _key(profile: ScoreProfile):
			created = profile.created_at
			return (
				-len(profile.earned_achievements),
				-profile.total_points,
				created is None,
				created.timestamp() if created else 0.0,
				profile.user_id,
			)

		profiles.sort(key=_key)
		ranked = [
			Standing(
				user_id=profile.user_id,
				points=profile.total_points,
				activity_count=profile.activity_count,
				level=level_for_points(profile.total_points),
				registered_at=profile.created_at,
				stats={"achievements_count": len(profile.earned_achievements)},
			)
			for profile in profiles[: self.clamp_limit(limit)]
		]
		return await self._render(ranked, current_user_id)

	async def get_stats(self) -> LeaderboardStats:
		repository = self.repository
		profiles = await repository.list_profiles()
		active = [profile for profile in profiles if profile.total_points > 0]
		average = policy.round_half_up(sum(p.total_points for p in active) / len(active)) if active else 0
		levels = Counter(level_for_points(profile.total_points) for profile in profiles)

		names = {definition.id: definition.name or definition.id for definition in await repository.list_active_achievements()}
		earners = Counter(
			item.achievement_id
			for profile in profiles
			for item in profile.earned_achievements
			if item.achievement_id in names
		)
		top_achievements = [
			AchievementPopularity(achievement_id=achievement_id, name=names[achievement_id], earned_count=count)
			for achievement_id, count in sorted(earners.items(), key=lambda item: (-item[1], item[0]))[:TOP_ACHIEVEMENTS_LIMIT]
		]

		now = self._now()
		recent = await repository.query_activities(since=now - timedelta(days=RECENT_ACTIVITY_DAYS), until=now)
		counts: Counter[str] = Counter()
		points: Counter[str] = Counter()
		for record in recent:
			counts[record.activity_type] += 1
			points[record.activity_type] += record.points_earned
		recent_activity = [
			ActivityTypeStats(activity_type=activity_type, count=count, total_points=points[activity_type])
			for activity_type, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:RECENT_ACTIVITY_LIMIT]
		]

		return LeaderboardStats(
			active_users=len(active),
			average_points=average,
			level_distribution=dict(sorted(levels.items())),
			top_achievements=top_achievements,
			recent_activity=recent_activity,
		)
