"""Domain models for points, levels, achievements and leaderboards."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ActivityType(str, Enum):
	"""Activity tags with a base-point value."""

	# Quiz and assessment
	QUIZ_COMPLETION = "QUIZ_COMPLETION"
	QUIZ_PERFECT_SCORE = "QUIZ_PERFECT_SCORE"
	QUIZ_FIRST_TRY = "QUIZ_FIRST_TRY"

	# Games
	GAME_COMPLETION = "GAME_COMPLETION"
	GAME_HIGH_SCORE = "GAME_HIGH_SCORE"
	GAME_FIRST_PLAY = "GAME_FIRST_PLAY"
	GAME_STREAK = "GAME_STREAK"

	# Tools
	TOOL_USAGE = "TOOL_USAGE"
	TOOL_SESSION_COMPLETE = "TOOL_SESSION_COMPLETE"
	TOOL_REVIEW = "TOOL_REVIEW"

	# Collections
	COLLECTION_CREATED = "COLLECTION_CREATED"
	COLLECTION_ITEM_ADDED = "COLLECTION_ITEM_ADDED"
	COLLECTION_SHARED = "COLLECTION_SHARED"
	COLLECTION_LIKED = "COLLECTION_LIKED"
	COLLECTION_FORKED = "COLLECTION_FORKED"

	# Courses
	COURSE_ENROLLMENT = "COURSE_ENROLLMENT"
	COURSE_COMPLETION = "COURSE_COMPLETION"
	LESSON_COMPLETION = "LESSON_COMPLETION"

	# Museum and tours
	MUSEUM_VISIT = "MUSEUM_VISIT"
	TOUR_COMPLETION = "TOUR_COMPLETION"
	ARTIFACT_VIEWED = "ARTIFACT_VIEWED"

	# Social
	COMMENT_POSTED = "COMMENT_POSTED"
	HELPFUL_REVIEW = "HELPFUL_REVIEW"
	FORUM_PARTICIPATION = "FORUM_PARTICIPATION"

	# Goals and progress
	GOAL_CREATED = "GOAL_CREATED"
	GOAL_COMPLETED = "GOAL_COMPLETED"
	MILESTONE_REACHED = "MILESTONE_REACHED"
	STREAK_MAINTAINED = "STREAK_MAINTAINED"

	# Daily / weekly
	DAILY_LOGIN = "DAILY_LOGIN"
	FIRST_ACTIVITY_OF_DAY = "FIRST_ACTIVITY_OF_DAY"
	WEEKLY_GOAL_MET = "WEEKLY_GOAL_MET"


BASE_POINTS: Dict[ActivityType, int] = {
	ActivityType.QUIZ_COMPLETION: 50,
	ActivityType.QUIZ_PERFECT_SCORE: 100,
	ActivityType.QUIZ_FIRST_TRY: 25,
	ActivityType.GAME_COMPLETION: 40,
	ActivityType.GAME_HIGH_SCORE: 75,
	ActivityType.GAME_FIRST_PLAY: 20,
	ActivityType.GAME_STREAK: 30,
	ActivityType.TOOL_USAGE: 15,
	ActivityType.TOOL_SESSION_COMPLETE: 25,
	ActivityType.TOOL_REVIEW: 20,
	ActivityType.COLLECTION_CREATED: 30,
	ActivityType.COLLECTION_ITEM_ADDED: 5,
	ActivityType.COLLECTION_SHARED: 40,
	ActivityType.COLLECTION_LIKED: 10,
	ActivityType.COLLECTION_FORKED: 35,
	ActivityType.COURSE_ENROLLMENT: 25,
	ActivityType.COURSE_COMPLETION: 200,
	ActivityType.LESSON_COMPLETION: 30,
	ActivityType.MUSEUM_VISIT: 20,
	ActivityType.TOUR_COMPLETION: 60,
	ActivityType.ARTIFACT_VIEWED: 5,
	ActivityType.COMMENT_POSTED: 10,
	ActivityType.HELPFUL_REVIEW: 15,
	ActivityType.FORUM_PARTICIPATION: 12,
	ActivityType.GOAL_CREATED: 20,
	ActivityType.GOAL_COMPLETED: 100,
	ActivityType.MILESTONE_REACHED: 50,
	ActivityType.STREAK_MAINTAINED: 25,
	ActivityType.DAILY_LOGIN: 5,
	ActivityType.FIRST_ACTIVITY_OF_DAY: 10,
	ActivityType.WEEKLY_GOAL_MET: 100,
}


def coerce_activity_type(value: str | ActivityType) -> Optional[ActivityType]:
	"""Map a caller-supplied tag onto the closed enum, or None when unknown."""

	if isinstance(value, ActivityType):
		return value
	try:
		return ActivityType(str(value).strip().upper())
	except ValueError:
		return None


def base_points_for(activity_type: str | ActivityType) -> int:
	member = coerce_activity_type(activity_type)
	if member is None:
		return 0
	return BASE_POINTS.get(member, 0)


class Difficulty(str, Enum):
	BEGINNER = "beginner"
	INTERMEDIATE = "intermediate"
	ADVANCED = "advanced"
	EXPERT = "expert"


class CriteriaType(str, Enum):
	"""What part of the user's state an achievement threshold is tested against."""

	ACTIVITY_COUNT = "activity_count"
	CATEGORY_COUNT = "category_count"
	STREAK_LENGTH = "streak_length"
	SCORE_AVERAGE = "score_average"
	PERFECT_SCORES = "perfect_scores"
	LEVEL_REACHED = "level_reached"
	TOTAL_POINTS = "total_points"


class Rarity(str, Enum):
	COMMON = "common"
	UNCOMMON = "uncommon"
	RARE = "rare"
	EPIC = "epic"
	LEGENDARY = "legendary"

	@property
	def ordinal(self) -> int:
		return list(Rarity).index(self)


ACHIEVEMENT_EARNED_POINTS = 150
RARE_ACHIEVEMENT_POINTS = 300


def default_bonus_for(rarity: Rarity) -> int:
	if rarity.ordinal >= Rarity.RARE.ordinal:
		return RARE_ACHIEVEMENT_POINTS
	return ACHIEVEMENT_EARNED_POINTS


class LeaderboardWindow(str, Enum):
	"""Time ranges points are summed over for ranking."""

	ALL_TIME = "allTime"
	DAILY = "daily"
	WEEKLY = "weekly"
	MONTHLY = "monthly"


class LeaderboardCategory(str, Enum):
	"""Activity-type filters for leaderboards."""

	OVERALL = "overall"
	GAMES = "games"
	QUIZZES = "quizzes"
	COLLECTIONS = "collections"
	COURSES = "courses"


CATEGORY_ACTIVITY_TYPES: Dict[LeaderboardCategory, Optional[frozenset[str]]] = {
	LeaderboardCategory.OVERALL: None,
	LeaderboardCategory.GAMES: frozenset({ActivityType.GAME_COMPLETION.value}),
	LeaderboardCategory.QUIZZES: frozenset({ActivityType.QUIZ_COMPLETION.value}),
	LeaderboardCategory.COLLECTIONS: frozenset(
		{
			ActivityType.COLLECTION_CREATED.value,
			ActivityType.COLLECTION_SHARED.value,
			ActivityType.COLLECTION_LIKED.value,
		}
	),
	LeaderboardCategory.COURSES: frozenset(
		{
			ActivityType.COURSE_COMPLETION.value,
			ActivityType.LESSON_COMPLETION.value,
		}
	),
}


def category_includes(category: LeaderboardCategory, activity_type: str) -> bool:
	types = CATEGORY_ACTIVITY_TYPES.get(category)
	return types is None or activity_type in types


@dataclass(slots=True, frozen=True)
class AppliedBonus:
	"""A non-default multiplier that contributed to a score."""

	name: str
	label: str
	multiplier: float


@dataclass(slots=True, frozen=True)
class ScoreBreakdown:
	"""Audit trail for one scored activity."""

	base_points: int
	multiplier: float
	bonuses: Tuple[AppliedBonus, ...]
	points: int

	def to_mapping(self) -> Dict[str, Any]:
		return {
			"base_points": self.base_points,
			"multiplier": self.multiplier,
			"bonuses": [
				{"name": bonus.name, "label": bonus.label, "multiplier": bonus.multiplier}
				for bonus in self.bonuses
			],
			"points": self.points,
		}

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "ScoreBreakdown":
		bonuses = tuple(
			AppliedBonus(
				name=str(item.get("name", "")),
				label=str(item.get("label", "")),
				multiplier=float(item.get("multiplier", 1.0)),
			)
			for item in mapping.get("bonuses") or ()
		)
		return cls(
			base_points=int(mapping.get("base_points", 0)),
			multiplier=float(mapping.get("multiplier", 1.0)),
			bonuses=bonuses,
			points=int(mapping.get("points", 0)),
		)


@dataclass(slots=True, frozen=True)
class ActivityRecord:
	"""Append-only ledger row; one per awarded event."""

	id: str
	user_id: str
	activity_type: str
	occurred_at: datetime
	metadata: Dict[str, Any]
	points_earned: int
	breakdown: ScoreBreakdown
	idempotency_key: Optional[str] = None


@dataclass(slots=True, frozen=True)
class EarnedAchievement:
	achievement_id: str
	earned_at: datetime
	points_awarded: int
	activity_id: Optional[str] = None


@dataclass(slots=True)
class ScoreProfile:
	"""Per-user score state; written only by the award engine."""

	user_id: str
	total_points: int = 0
	level: int = 1
	current_streak: int = 0
	longest_streak: int = 0
	last_active_on: Optional[date] = None
	activity_count: int = 0
	earned_achievements: Tuple[EarnedAchievement, ...] = ()
	version: int = 0
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None

	@classmethod
	def empty(cls, user_id: str, *, now: Optional[datetime] = None) -> "ScoreProfile":
		return cls(user_id=user_id, created_at=now, updated_at=now)

	@property
	def earned_ids(self) -> frozenset[str]:
		return frozenset(item.achievement_id for item in self.earned_achievements)

	@property
	def achievement_points(self) -> int:
		return sum(item.points_awarded for item in self.earned_achievements)


@dataclass(slots=True, frozen=True)
class AchievementDefinition:
	"""Reference data describing a one-time unlockable milestone."""

	id: str
	criteria_type: CriteriaType
	threshold: float
	name: str = ""
	description: str = ""
	category: Optional[str] = None
	points: Optional[int] = None
	rarity: Rarity = Rarity.COMMON
	is_active: bool = True
	min_samples: int = 1

	@property
	def bonus_points(self) -> int:
		if self.points is None:
			return default_bonus_for(self.rarity)
		return max(0, int(self.points))


@dataclass(slots=True, frozen=True)
class UnlockedAchievement:
	id: str
	name: str
	rarity: Rarity
	points: int


@dataclass(slots=True, frozen=True)
class StreakState:
	current: int = 0
	longest: int = 0


@dataclass(slots=True, frozen=True)
class LevelProgress:
	level: int
	current_level_points: int
	next_level_points: int
	points_to_next_level: int
	progress_percent: float


@dataclass(slots=True)
class AwardResult:
	"""Outcome of a single award, reflecting the post-achievement totals."""

	activity_id: str
	points_earned: int
	total_points: int
	level: int
	leveled_up: bool
	breakdown: ScoreBreakdown
	achievements: List[UnlockedAchievement] = field(default_factory=list)
	current_streak: int = 0
	longest_streak: int = 0
	replayed: bool = False


@dataclass(slots=True, frozen=True)
class ProfileSummary:
	user_id: str
	total_points: int
	progress: LevelProgress
	current_streak: int
	longest_streak: int
	achievement_count: int
	activity_count: int
	last_active_on: Optional[date] = None


@dataclass(slots=True, frozen=True)
class DailyProgress:
	day: date
	points: int
	activities: int


@dataclass(slots=True, frozen=True)
class AchievementStatus:
	definition: AchievementDefinition
	earned: bool
	earned_at: Optional[datetime] = None
	points_awarded: Optional[int] = None


@dataclass(slots=True)
class Standing:
	"""Un-anonymised ranking row; safe to cache, never returned to callers as-is."""

	user_id: str
	points: int
	activity_count: int
	level: int
	registered_at: Optional[datetime] = None
	stats: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class LeaderboardEntry:
	rank: int
	display_name: str
	is_current_user: bool
	points: int
	level: int
	activity_count: int
	stats: Dict[str, Any] = field(default_factory=dict)
	user_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class LeaderboardPosition:
	rank: Optional[int]
	total_participants: int
	percentile: Optional[int]
	points: int = 0
	activity_count: int = 0


@dataclass(slots=True, frozen=True)
class LeaderboardPage:
	window: LeaderboardWindow
	category: LeaderboardCategory
	entries: List[LeaderboardEntry]
	total_participants: int
	generated_at: datetime


@dataclass(slots=True, frozen=True)
class ActivityTypeStats:
	activity_type: str
	count: int
	total_points: int


@dataclass(slots=True, frozen=True)
class AchievementPopularity:
	achievement_id: str
	name: str
	earned_count: int


@dataclass(slots=True, frozen=True)
class LeaderboardStats:
	active_users: int
	average_points: int
	level_distribution: Dict[int, int]
	top_achievements: List[AchievementPopularity]
	recent_activity: List[ActivityTypeStats]
