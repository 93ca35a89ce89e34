"""Pydantic schemas for the points, achievements and leaderboard APIs."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.domain.gamification.models import (
	AchievementStatus,
	ActivityRecord,
	AwardResult,
	DailyProgress,
	LeaderboardCategory,
	LeaderboardEntry,
	LeaderboardPage,
	LeaderboardPosition,
	LeaderboardStats,
	LeaderboardWindow,
	ProfileSummary,
	Rarity,
	ScoreBreakdown,
)


class AwardPointsRequest(BaseModel):
	activity_type: str = Field(..., min_length=1, max_length=64)
	metadata: Dict[str, Any] = Field(default_factory=dict)
	occurred_at: Optional[datetime] = None
	idempotency_key: Optional[str] = Field(default=None, max_length=128)
	user_id: Optional[str] = Field(default=None, description="Award on behalf of another user (admin only)")


class BonusSchema(BaseModel):
	name: str
	label: str
	multiplier: float


class BreakdownSchema(BaseModel):
	base_points: int
	multiplier: float
	bonuses: List[BonusSchema] = Field(default_factory=list)
	points: int

	@classmethod
	def from_domain(cls, breakdown: ScoreBreakdown) -> "BreakdownSchema":
		return cls(
			base_points=breakdown.base_points,
			multiplier=breakdown.multiplier,
			bonuses=[BonusSchema(name=b.name, label=b.label, multiplier=b.multiplier) for b in breakdown.bonuses],
			points=breakdown.points,
		)


class UnlockedAchievementSchema(BaseModel):
	id: str
	name: str
	rarity: Rarity
	points: int


class AwardResultSchema(BaseModel):
	activity_id: str
	points_earned: int = Field(..., ge=0)
	total_points: int = Field(..., ge=0)
	level: int = Field(..., ge=1)
	leveled_up: bool
	achievements: List[UnlockedAchievementSchema] = Field(default_factory=list)
	breakdown: BreakdownSchema
	current_streak: int = 0
	longest_streak: int = 0
	replayed: bool = False

	@classmethod
	def from_domain(cls, result: AwardResult) -> "AwardResultSchema":
		return cls(
			activity_id=result.activity_id,
			points_earned=result.points_earned,
			total_points=result.total_points,
			level=result.level,
			leveled_up=result.leveled_up,
			achievements=[
				UnlockedAchievementSchema(id=item.id, name=item.name, rarity=item.rarity, points=item.points)
				for item in result.achievements
			],
			breakdown=BreakdownSchema.from_domain(result.breakdown),
			current_streak=result.current_streak,
			longest_streak=result.longest_streak,
			replayed=result.replayed,
		)


class ProfileSummarySchema(BaseModel):
	user_id: str
	total_points: int
	level: int
	current_level_points: int
	next_level_points: int
	points_to_next_level: int
	progress_percent: float = Field(..., ge=0.0, le=1.0)
	current_streak: int
	longest_streak: int
	achievement_count: int
	activity_count: int
	last_active_on: Optional[date] = None

	@classmethod
	def from_domain(cls, summary: ProfileSummary) -> "ProfileSummarySchema":
		progress = summary.progress
		return cls(
			user_id=summary.user_id,
			total_points=summary.total_points,
			level=progress.level,
			current_level_points=progress.current_level_points,
			next_level_points=progress.next_level_points,
			points_to_next_level=progress.points_to_next_level,
			progress_percent=progress.progress_percent,
			current_streak=summary.current_streak,
			longest_streak=summary.longest_streak,
			achievement_count=summary.achievement_count,
			activity_count=summary.activity_count,
			last_active_on=summary.last_active_on,
		)


class ActivityRecordSchema(BaseModel):
	id: str
	activity_type: str
	occurred_at: datetime
	points_earned: int
	metadata: Dict[str, Any] = Field(default_factory=dict)
	breakdown: BreakdownSchema

	@classmethod
	def from_domain(cls, record: ActivityRecord) -> "ActivityRecordSchema":
		return cls(
			id=record.id,
			activity_type=record.activity_type,
			occurred_at=record.occurred_at,
			points_earned=record.points_earned,
			metadata=record.metadata,
			breakdown=BreakdownSchema.from_domain(record.breakdown),
		)


class PointHistorySchema(BaseModel):
	timeframe: str
	items: List[ActivityRecordSchema]


class DailyProgressSchema(BaseModel):
	day: date
	points: int
	activities: int

	@classmethod
	def from_domain(cls, item: DailyProgress) -> "DailyProgressSchema":
		return cls(day=item.day, points=item.points, activities=item.activities)


class AchievementStatusSchema(BaseModel):
	id: str
	name: str
	description: str = ""
	criteria_type: str
	threshold: float
	min_samples: int = 1
	category: Optional[str] = None
	rarity: Rarity
	points: int
	earned: bool
	earned_at: Optional[datetime] = None

	@classmethod
	def from_domain(cls, status: AchievementStatus) -> "AchievementStatusSchema":
		definition = status.definition
		return cls(
			id=definition.id,
			name=definition.name or definition.id,
			description=definition.description,
			criteria_type=definition.criteria_type.value,
			threshold=definition.threshold,
			min_samples=definition.min_samples,
			category=definition.category,
			rarity=definition.rarity,
			points=status.points_awarded if status.points_awarded is not None else definition.bonus_points,
			earned=status.earned,
			earned_at=status.earned_at,
		)


class LeaderboardEntrySchema(BaseModel):
	rank: int = Field(..., ge=1)
	display_name: str
	is_current_user: bool = False
	points: int
	level: int
	activity_count: int
	stats: Dict[str, Any] = Field(default_factory=dict)
	user_id: Optional[str] = None

	@classmethod
	def from_domain(cls, entry: LeaderboardEntry) -> "LeaderboardEntrySchema":
		return cls(
			rank=entry.rank,
			display_name=entry.display_name,
			is_current_user=entry.is_current_user,
			points=entry.points,
			level=entry.level,
			activity_count=entry.activity_count,
			stats=entry.stats,
			user_id=entry.user_id,
		)


class LeaderboardResponseSchema(BaseModel):
	window: LeaderboardWindow
	category: LeaderboardCategory
	total_participants: int
	generated_at: datetime
	items: List[LeaderboardEntrySchema]

	@classmethod
	def from_domain(cls, page: LeaderboardPage) -> "LeaderboardResponseSchema":
		return cls(
			window=page.window,
			category=page.category,
			total_participants=page.total_participants,
			generated_at=page.generated_at,
			items=[LeaderboardEntrySchema.from_domain(entry) for entry in page.entries],
		)


class LeaderboardPositionSchema(BaseModel):
	window: LeaderboardWindow
	category: LeaderboardCategory
	rank: Optional[int] = None
	total_participants: int
	percentile: Optional[int] = None
	points: int = 0
	activity_count: int = 0

	@classmethod
	def from_domain(
		cls,
		position: LeaderboardPosition,
		*,
		window: LeaderboardWindow,
		category: LeaderboardCategory,
	) -> "LeaderboardPositionSchema":
		return cls(
			window=window,
			category=category,
			rank=position.rank,
			total_participants=position.total_participants,
			percentile=position.percentile,
			points=position.points,
			activity_count=position.activity_count,
		)


class AchievementPopularitySchema(BaseModel):
	achievement_id: str
	name: str
	earned_count: int


class ActivityTypeStatsSchema(BaseModel):
	activity_type: str
	count: int
	total_points: int


class LeaderboardStatsSchema(BaseModel):
	active_users: int
	average_points: int
	level_distribution: Dict[int, int]
	top_achievements: List[AchievementPopularitySchema]
	recent_activity: List[ActivityTypeStatsSchema]

	@classmethod
	def from_domain(cls, stats: LeaderboardStats) -> "LeaderboardStatsSchema":
		return cls(
			active_users=stats.active_users,
			average_points=stats.average_points,
			level_distribution=stats.level_distribution,
			top_achievements=[
				AchievementPopularitySchema(
					achievement_id=item.achievement_id,
					name=item.name,
					earned_count=item.earned_count,
				)
				for item in stats.top_achievements
			],
			recent_activity=[
				ActivityTypeStatsSchema(
					activity_type=item.activity_type,
					count=item.count,
					total_points=item.total_points,
				)
				for item in stats.recent_activity
			],
		)
