"""asyncpg-backed store for the points engine."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

import asyncpg

from app.domain.gamification.achievements import ActivitySummary
from app.domain.gamification.exceptions import (
	DuplicateActivityError,
	ProfileVersionConflict,
	StoreUnavailableError,
)
from app.domain.gamification.models import (
	AchievementDefinition,
	ActivityRecord,
	CriteriaType,
	EarnedAchievement,
	Rarity,
	ScoreBreakdown,
	ScoreProfile,
)
from app.domain.gamification.repo import AwardCommit
from app.infra.postgres import get_pool

_LOG = logging.getLogger(__name__)

IDEMPOTENCY_CONSTRAINT = "activity_records_user_key_uniq"

_PROFILE_COLUMNS = (
	"user_id, total_points, level, current_streak, longest_streak, last_active_on, "
	"activity_count, version, created_at, updated_at"
)
_RECORD_COLUMNS = (
	"id, user_id, activity_type, occurred_at, metadata, points_earned, breakdown, idempotency_key"
)
# Score rules match policy.read_score: finite JSON numbers and numeric strings, clamped to 0-100.
_SUMMARY_SQL = """
SELECT activity_type,
	count(*) AS activities,
	sum(score) AS score_total,
	count(score) AS score_count,
	count(*) FILTER (WHERE score >= 100) AS perfect_count
FROM (
	SELECT activity_type,
		CASE WHEN abs(raw) <= 1.7976931348623157e308 THEN LEAST(100, GREATEST(0, raw))::float8 END AS score
	FROM (
		SELECT activity_type,
			CASE
				WHEN jsonb_typeof(metadata->'score') = 'number' THEN (metadata->>'score')::numeric
				WHEN jsonb_typeof(metadata->'score') = 'string'
					AND btrim(metadata->>'score') ~ '^[-+]?([0-9]+[.]?[0-9]*|[.][0-9]+)([eE][-+]?[0-9]+)?$'
					THEN btrim(metadata->>'score')::numeric
			END AS raw
		FROM activity_records
		WHERE user_id = $1
	) AS parsed
) AS scored
GROUP BY activity_type
"""


def _json_value(raw: Any) -> Dict[str, Any]:
	if raw is None:
		return {}
	if isinstance(raw, (bytes, str)):
		return json.loads(raw)
	return dict(raw)


def _status_count(status: str) -> int:
	try:
		return int(status.split()[-1])
	except (AttributeError, IndexError, ValueError):
		return 0


def _record_from_row(row: asyncpg.Record) -> ActivityRecord:
	return ActivityRecord(
		id=str(row["id"]),
		user_id=str(row["user_id"]),
		activity_type=row["activity_type"],
		occurred_at=row["occurred_at"],
		metadata=_json_value(row["metadata"]),
		points_earned=int(row["points_earned"]),
		breakdown=ScoreBreakdown.from_mapping(_json_value(row["breakdown"])),
		idempotency_key=row["idempotency_key"],
	)


def _earned_from_row(row: asyncpg.Record) -> EarnedAchievement:
	return EarnedAchievement(
		achievement_id=row["achievement_id"],
		earned_at=row["earned_at"],
		points_awarded=int(row["points_awarded"]),
		activity_id=row["activity_id"],
	)


def _profile_from_row(row: asyncpg.Record, earned: Sequence[EarnedAchievement]) -> ScoreProfile:
	return ScoreProfile(
		user_id=str(row["user_id"]),
		total_points=int(row["total_points"]),
		level=int(row["level"]),
		current_streak=int(row["current_streak"]),
		longest_streak=int(row["longest_streak"]),
		last_active_on=row["last_active_on"],
		activity_count=int(row["activity_count"]),
		earned_achievements=tuple(earned),
		version=int(row["version"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


def _finite(value: Any) -> Any:
	if isinstance(value, float) and not math.isfinite(value):
		return None
	if isinstance(value, dict):
		return {key: _finite(item) for key, item in value.items()}
	if isinstance(value, (list, tuple)):
		return [_finite(item) for item in value]
	return value


def _jsonb(value: Any) -> str:
	"""Serialise for a jsonb column; NaN and infinities become null."""

	return json.dumps(_finite(value), default=str, allow_nan=False)


def _definition_from_row(row: asyncpg.Record) -> AchievementDefinition:
	return AchievementDefinition(
		id=row["id"],
		name=row["name"] or "",
		description=row["description"] or "",
		criteria_type=CriteriaType(row["criteria_type"]),
		threshold=float(row["threshold"]),
		category=row["category"],
		points=row["points"],
		rarity=Rarity(row["rarity"]),
		is_active=bool(row["is_active"]),
		min_samples=int(row["min_samples"]),
	)


@asynccontextmanager
async def _connection() -> AsyncIterator[asyncpg.Connection]:
	try:
		pool = await get_pool()
		async with pool.acquire() as conn:
			yield conn
	except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
		_LOG.warning("points.store_unavailable", extra={"error": type(exc).__name__})
		raise StoreUnavailableError() from exc


class PostgresGamificationRepository:
	"""Conditional-update store: the profile row's ``version`` guards every award."""

	async def load_profile(self, user_id: str) -> Optional[ScoreProfile]:
		async with _connection() as conn:
			row = await conn.fetchrow(
				f"SELECT {_PROFILE_COLUMNS} FROM score_profiles WHERE user_id = $1",
				user_id,
			)
			if row is None:
				return None
			earned_rows = await conn.fetch(
				"""
				SELECT achievement_id, earned_at, points_awarded, activity_id
				FROM earned_achievements
				WHERE user_id = $1
				ORDER BY earned_at, achievement_id
				""",
				user_id,
			)
		return _profile_from_row(row, [_earned_from_row(item) for item in earned_rows])

	async def commit_award(self, commit: AwardCommit) -> None:
		profile = commit.profile
		record = commit.record
		async with _connection() as conn:
			try:
				async with conn.transaction():
					if commit.expected_version == 0:
						status = await conn.execute(
							f"""
							INSERT INTO score_profiles ({_PROFILE_COLUMNS})
							VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
							ON CONFLICT (user_id) DO NOTHING
							""",
							profile.user_id,
							profile.total_points,
							profile.level,
							profile.current_streak,
							profile.longest_streak,
							profile.last_active_on,
							profile.activity_count,
							profile.version,
							profile.created_at,
							profile.updated_at,
						)
					else:
						status = await conn.execute(
							"""
							UPDATE score_profiles
							SET total_points = $2,
								level = $3,
								current_streak = $4,
								longest_streak = $5,
								last_active_on = $6,
								activity_count = $7,
								version = $8,
								updated_at = $9
							WHERE user_id = $1 AND version = $10
							""",
							profile.user_id,
							profile.total_points,
							profile.level,
							profile.current_streak,
							profile.longest_streak,
							profile.last_active_on,
							profile.activity_count,
							profile.version,
							profile.updated_at,
							commit.expected_version,
						)
					if _status_count(status) == 0:
						raise ProfileVersionConflict()
					await conn.execute(
						f"""
						INSERT INTO activity_records ({_RECORD_COLUMNS})
						VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7::jsonb, $8)
						""",
						record.id,
						record.user_id,
						record.activity_type,
						record.occurred_at,
						_jsonb(record.metadata),
						record.points_earned,
						_jsonb(record.breakdown.to_mapping()),
						record.idempotency_key,
					)
					if commit.unlocks:
						await conn.executemany(
							"""
							INSERT INTO earned_achievements (user_id, achievement_id, earned_at, points_awarded, activity_id)
							VALUES ($1, $2, $3, $4, $5)
							""",
							[
								(profile.user_id, item.achievement_id, item.earned_at, item.points_awarded, item.activity_id)
								for item in commit.unlocks
							],
						)
			except asyncpg.UniqueViolationError as exc:
				if exc.constraint_name == IDEMPOTENCY_CONSTRAINT:
					raise DuplicateActivityError() from exc
				raise ProfileVersionConflict(exc.constraint_name or "unique_violation") from exc

	async def find_activity_by_key(self, user_id: str, idempotency_key: str) -> Optional[ActivityRecord]:
		async with _connection() as conn:
			row = await conn.fetchrow(
				f"SELECT {_RECORD_COLUMNS} FROM activity_records WHERE user_id = $1 AND idempotency_key = $2",
				user_id,
				idempotency_key,
			)
		return _record_from_row(row) if row else None

	async def query_activities(
		self,
		*,
		user_id: Optional[str] = None,
		activity_types: Optional[Iterable[str]] = None,
		since: Optional[datetime] = None,
		until: Optional[datetime] = None,
	) -> List[ActivityRecord]:
		clauses: List[str] = []
		params: List[Any] = []
		if user_id is not None:
			params.append(user_id)
			clauses.append(f"user_id = ${len(params)}")
		if activity_types is not None:
			params.append(list(activity_types))
			clauses.append(f"activity_type = ANY(${len(params)}::text[])")
		if since is not None:
			params.append(since)
			clauses.append(f"occurred_at >= ${len(params)}")
		if until is not None:
			params.append(until)
			clauses.append(f"occurred_at <= ${len(params)}")
		where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
		async with _connection() as conn:
			rows = await conn.fetch(
				f"SELECT {_RECORD_COLUMNS} FROM activity_records {where} ORDER BY occurred_at, id",
				*params,
			)
		return [_record_from_row(row) for row in rows]

	async def summarize_activities(self, user_id: str, tz: ZoneInfo) -> ActivitySummary:
		async with _connection() as conn:
			type_rows = await conn.fetch(_SUMMARY_SQL, user_id)
			day_rows = await conn.fetch(
				"""
				SELECT DISTINCT (occurred_at AT TIME ZONE $2)::date AS day
				FROM activity_records
				WHERE user_id = $1
				""",
				user_id,
				tz.key,
			)
		summary = ActivitySummary(activity_days={row["day"] for row in day_rows})
		for row in type_rows:
			summary.merge(
				row["activity_type"],
				int(row["activities"]),
				score_total=float(row["score_total"] or 0.0),
				score_count=int(row["score_count"]),
				perfect_count=int(row["perfect_count"]),
			)
		return summary

	async def list_profiles(self) -> List[ScoreProfile]:
		async with _connection() as conn:
			rows = await conn.fetch(f"SELECT {_PROFILE_COLUMNS} FROM score_profiles")
			earned_rows = await conn.fetch(
				"""
				SELECT user_id, achievement_id, earned_at, points_awarded, activity_id
				FROM earned_achievements
				ORDER BY earned_at, achievement_id
				"""
			)
		earned: Dict[str, List[EarnedAchievement]] = {}
		for row in earned_rows:
			earned.setdefault(str(row["user_id"]), []).append(_earned_from_row(row))
		return [_profile_from_row(row, earned.get(str(row["user_id"]), [])) for row in rows]

	async def list_active_achievements(self) -> List[AchievementDefinition]:
		async with _connection() as conn:
			rows = await conn.fetch(
				"""
				SELECT id, name, description, criteria_type, threshold, category, points, rarity, is_active, min_samples
				FROM achievement_definitions
				WHERE is_active
				ORDER BY id
				"""
			)
		return [_definition_from_row(row) for row in rows]

	async def fetch_display_names(self, user_ids: Sequence[str]) -> Dict[str, str]:
		if not user_ids:
			return {}
		async with _connection() as conn:
			try:
				rows = await conn.fetch(
					"""
					SELECT id::text AS id, display_name
					FROM users
					WHERE id::text = ANY($1::text[])
					""",
					list(user_ids),
				)
			except asyncpg.UndefinedTableError:
				return {}
		return {row["id"]: row["display_name"] for row in rows if row["display_name"]}

	async def upsert_achievement_definitions(self, definitions: Iterable[AchievementDefinition]) -> None:
		rows = [
			(
				definition.id,
				definition.name,
				definition.description,
				definition.criteria_type.value,
				definition.threshold,
				definition.category,
				definition.points,
				definition.rarity.value,
				definition.is_active,
				definition.min_samples,
			)
			for definition in definitions
		]
		if not rows:
			return
		async with _connection() as conn:
			await conn.executemany(
				"""
				INSERT INTO achievement_definitions (id, name, description, criteria_type, threshold, category, points, rarity, is_active, min_samples)
				VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
				ON CONFLICT (id)
				DO UPDATE SET name = EXCLUDED.name,
					description = EXCLUDED.description,
					criteria_type = EXCLUDED.criteria_type,
					threshold = EXCLUDED.threshold,
					category = EXCLUDED.category,
					points = EXCLUDED.points,
					rarity = EXCLUDED.rarity,
					is_active = EXCLUDED.is_active,
					min_samples = EXCLUDED.min_samples
				""",
				rows,
			)
