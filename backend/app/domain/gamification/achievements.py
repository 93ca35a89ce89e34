"""Declarative achievement rules evaluated against a user's cumulative state."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from app.domain.gamification import policy
from app.domain.gamification.levels import level_for_points
from app.domain.gamification.models import (
	AchievementDefinition,
	ActivityRecord,
	ActivityType,
	CriteriaType,
	LeaderboardCategory,
	Rarity,
	category_includes,
)
from app.domain.gamification.streaks import compute_streak

PERFECT_SCORE = 100.0


@dataclass(slots=True)
class UserState:
	"""Cumulative per-user facts the rules are tested against."""

	activity_counts: Mapping[str, int] = field(default_factory=dict)
	score_totals: Mapping[str, float] = field(default_factory=dict)
	score_counts: Mapping[str, int] = field(default_factory=dict)
	perfect_counts: Mapping[str, int] = field(default_factory=dict)
	current_streak: int = 0
	longest_streak: int = 0
	total_points: int = 0
	level: int = 1
	earned_ids: frozenset[str] = frozenset()

	@property
	def total_activities(self) -> int:
		return sum(self.activity_counts.values())

	def count_for(self, activity_type: Optional[str]) -> int:
		if not activity_type:
			return self.total_activities
		return self.activity_counts.get(activity_type, 0)

	def count_for_category(self, category: LeaderboardCategory) -> int:
		return sum(
			count
			for activity_type, count in self.activity_counts.items()
			if category_includes(category, activity_type)
		)

	def scored_count(self, activity_type: Optional[str]) -> int:
		if activity_type:
			return self.score_counts.get(activity_type, 0)
		return sum(self.score_counts.values())

	def average_score(self, activity_type: Optional[str]) -> Optional[float]:
		if activity_type:
			count = self.score_counts.get(activity_type, 0)
			total = self.score_totals.get(activity_type, 0.0)
		else:
			count = sum(self.score_counts.values())
			total = sum(self.score_totals.values())
		if count <= 0:
			return None
		return total / count

	def perfect_scores(self, activity_type: Optional[str]) -> int:
		if activity_type:
			return self.perfect_counts.get(activity_type, 0)
		return sum(self.perfect_counts.values())

	def with_unlocks(self, unlocked: Iterable[AchievementDefinition]) -> "UserState":
		"""Fold unlocks into the earned set and totals."""

		unlocked = list(unlocked)
		total = self.total_points + sum(item.bonus_points for item in unlocked)
		return UserState(
			activity_counts=self.activity_counts,
			score_totals=self.score_totals,
			score_counts=self.score_counts,
			perfect_counts=self.perfect_counts,
			current_streak=self.current_streak,
			longest_streak=self.longest_streak,
			total_points=total,
			level=level_for_points(total),
			earned_ids=self.earned_ids | {item.id for item in unlocked},
		)


@dataclass(slots=True)
class ActivitySummary:
	"""Per-type aggregates of a user's activity log plus the local days they were active."""

	activity_counts: Counter[str] = field(default_factory=Counter)
	score_totals: Dict[str, float] = field(default_factory=dict)
	score_counts: Counter[str] = field(default_factory=Counter)
	perfect_counts: Counter[str] = field(default_factory=Counter)
	activity_days: Set[date] = field(default_factory=set)

	def merge(
		self,
		activity_type: str,
		count: int,
		*,
		score_total: float = 0.0,
		score_count: int = 0,
		perfect_count: int = 0,
	) -> None:
		self.activity_counts[activity_type] += count
		if score_count <= 0:
			return
		self.score_totals[activity_type] = self.score_totals.get(activity_type, 0.0) + score_total
		self.score_counts[activity_type] += score_count
		if perfect_count:
			self.perfect_counts[activity_type] += perfect_count

	def add(self, record: ActivityRecord, day: Optional[date] = None) -> None:
		if day is not None:
			self.activity_days.add(day)
		score = policy.read_score(record.metadata)
		if score is None:
			self.merge(record.activity_type, 1)
			return
		self.merge(
			record.activity_type,
			1,
			score_total=score,
			score_count=1,
			perfect_count=1 if score >= PERFECT_SCORE else 0,
		)

	def to_state(self, *, as_of: date, total_points: int, earned_ids: Iterable[str]) -> UserState:
		streak = compute_streak(self.activity_days, as_of)
		return UserState(
			activity_counts=dict(self.activity_counts),
			score_totals=dict(self.score_totals),
			score_counts=dict(self.score_counts),
			perfect_counts=dict(self.perfect_counts),
			current_streak=streak.current,
			longest_streak=streak.longest,
			total_points=total_points,
			level=level_for_points(total_points),
			earned_ids=frozenset(earned_ids),
		)


def build_user_state(
	records: Iterable[ActivityRecord],
	*,
	activity_days: Iterable[date],
	as_of: date,
	total_points: int,
	earned_ids: Iterable[str],
) -> UserState:
	summary = ActivitySummary(activity_days=set(activity_days))
	for record in records:
		summary.add(record)
	return summary.to_state(as_of=as_of, total_points=total_points, earned_ids=earned_ids)


def _observed_value(definition: AchievementDefinition, state: UserState) -> Optional[float]:
	criteria = definition.criteria_type
	if criteria is CriteriaType.ACTIVITY_COUNT:
		return state.count_for(definition.category)
	if criteria is CriteriaType.CATEGORY_COUNT:
		try:
			category = LeaderboardCategory(definition.category or LeaderboardCategory.OVERALL.value)
		except ValueError:
			return None
		return state.count_for_category(category)
	if criteria is CriteriaType.STREAK_LENGTH:
		return state.longest_streak
	if criteria is CriteriaType.SCORE_AVERAGE:
		if state.scored_count(definition.category) < max(1, definition.min_samples):
			return None
		return state.average_score(definition.category)
	if criteria is CriteriaType.PERFECT_SCORES:
		return state.perfect_scores(definition.category)
	if criteria is CriteriaType.LEVEL_REACHED:
		return state.level
	if criteria is CriteriaType.TOTAL_POINTS:
		return state.total_points
	return None


def qualifies(definition: AchievementDefinition, state: UserState) -> bool:
	observed = _observed_value(definition, state)
	if observed is None:
		return False
	return observed >= definition.threshold


def evaluate(state: UserState, registry: Sequence[AchievementDefinition]) -> List[AchievementDefinition]:
	"""Return active definitions newly satisfied by ``state``.

	Never returns an id already in ``state.earned_ids``; each id appears once.
	"""

	seen: set[str] = set(state.earned_ids)
	unlocked: List[AchievementDefinition] = []
	for definition in registry:
		if not definition.is_active or definition.id in seen:
			continue
		if qualifies(definition, state):
			seen.add(definition.id)
			unlocked.append(definition)
	return unlocked


def evaluate_until_stable(state: UserState, registry: Sequence[AchievementDefinition]) -> List[AchievementDefinition]:
	"""Evaluate repeatedly so bonus points can unlock level/points milestones.

	Terminates because every pass adds at least one id from a finite registry.
	"""

	unlocked: List[AchievementDefinition] = []
	current = state
	while True:
		fresh = evaluate(current, registry)
		if not fresh:
			return unlocked
		unlocked.extend(fresh)
		current = current.with_unlocks(fresh)


def _level_milestone(level: int, rarity: Rarity) -> AchievementDefinition:
	return AchievementDefinition(
		id=f"level_{level}_reached",
		name=f"Level {level}",
		description=f"Reached level {level}.",
		criteria_type=CriteriaType.LEVEL_REACHED,
		threshold=level,
		rarity=rarity,
	)


DEFAULT_ACHIEVEMENTS: tuple[AchievementDefinition, ...] = (
	AchievementDefinition(
		id="first_quiz_completed",
		name="First Quiz",
		description="Completed your first quiz.",
		criteria_type=CriteriaType.ACTIVITY_COUNT,
		threshold=1,
		category=ActivityType.QUIZ_COMPLETION.value,
	),
	AchievementDefinition(
		id="ten_quizzes_completed",
		name="Quiz Enthusiast",
		description="Completed ten quizzes.",
		criteria_type=CriteriaType.ACTIVITY_COUNT,
		threshold=10,
		category=ActivityType.QUIZ_COMPLETION.value,
		rarity=Rarity.UNCOMMON,
	),
	AchievementDefinition(
		id="first_game_completed",
		name="First Game",
		description="Completed your first game.",
		criteria_type=CriteriaType.ACTIVITY_COUNT,
		threshold=1,
		category=ActivityType.GAME_COMPLETION.value,
	),
	AchievementDefinition(
		id="first_collection_created",
		name="Curator",
		description="Created your first collection.",
		criteria_type=CriteriaType.ACTIVITY_COUNT,
		threshold=1,
		category=ActivityType.COLLECTION_CREATED.value,
	),
	AchievementDefinition(
		id="first_course_completed",
		name="Scholar",
		description="Completed your first course.",
		criteria_type=CriteriaType.ACTIVITY_COUNT,
		threshold=1,
		category=ActivityType.COURSE_COMPLETION.value,
	),
	AchievementDefinition(
		id="week_streak",
		name="Week Streak",
		description="Active seven days in a row.",
		criteria_type=CriteriaType.STREAK_LENGTH,
		threshold=7,
		rarity=Rarity.UNCOMMON,
	),
	AchievementDefinition(
		id="month_streak",
		name="Month Streak",
		description="Active thirty days in a row.",
		criteria_type=CriteriaType.STREAK_LENGTH,
		threshold=30,
		rarity=Rarity.RARE,
	),
	AchievementDefinition(
		id="quiz_virtuoso",
		name="Quiz Virtuoso",
		description="Average quiz score of 90 or more across at least five scored quizzes.",
		criteria_type=CriteriaType.SCORE_AVERAGE,
		threshold=90,
		category=ActivityType.QUIZ_COMPLETION.value,
		rarity=Rarity.RARE,
		min_samples=5,
	),
	_level_milestone(5, Rarity.COMMON),
	_level_milestone(10, Rarity.UNCOMMON),
	_level_milestone(25, Rarity.RARE),
	_level_milestone(50, Rarity.EPIC),
	_level_milestone(100, Rarity.LEGENDARY),
)
