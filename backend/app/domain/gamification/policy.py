"""Scoring policy: base points composed with difficulty, performance, time and streak multipliers."""

from __future__ import annotations

import math
from typing import Any, List, Mapping, Optional, Tuple

from app.domain.gamification.models import (
	AppliedBonus,
	Difficulty,
	ScoreBreakdown,
	base_points_for,
)

# --- Difficulty ---
DIFFICULTY_MULTIPLIERS = {
	Difficulty.BEGINNER: 1.0,
	Difficulty.INTERMEDIATE: 1.2,
	Difficulty.ADVANCED: 1.5,
	Difficulty.EXPERT: 2.0,
}

# --- Performance (0-100 score bands) ---
PERF_EXCELLENT = 1.5      # 90-100
PERF_GOOD = 1.2           # 70-89
PERF_AVERAGE = 1.0        # 50-69
PERF_BELOW_AVERAGE = 0.8  # below 50

SCORE_MIN = 0.0
SCORE_MAX = 100.0

# --- Time bonus ---
QUICK_COMPLETION_RATIO = 0.8
QUICK_COMPLETION_MULT = 1.3

# --- Streak bonus ---
STREAK_WEEK_1 = 1.0       # < 7 days
STREAK_WEEK_2 = 1.1       # 7-13
STREAK_WEEK_3 = 1.2       # 14-20
STREAK_WEEK_4 = 1.3       # 21-29
STREAK_MONTH_PLUS = 1.5   # 30+

_ALIASES = {
	"completionTime": ("completionTime", "completion_time"),
	"expectedTime": ("expectedTime", "expected_time"),
	"streakDays": ("streakDays", "streak_days"),
	"score": ("score",),
	"difficulty": ("difficulty",),
}


def _lookup(metadata: Mapping[str, Any] | None, key: str) -> Any:
	if not metadata:
		return None
	for name in _ALIASES.get(key, (key,)):
		if name in metadata and metadata[name] is not None:
			return metadata[name]
	return None


def read_number(metadata: Mapping[str, Any] | None, key: str) -> Optional[float]:
	"""Read a finite number from metadata; anything else counts as missing."""

	raw = _lookup(metadata, key)
	if raw is None or isinstance(raw, bool):
		return None
	try:
		value = float(raw)
	except (TypeError, ValueError, OverflowError):
		return None
	if math.isnan(value) or math.isinf(value):
		return None
	return value


def read_score(metadata: Mapping[str, Any] | None) -> Optional[float]:
	value = read_number(metadata, "score")
	if value is None:
		return None
	return min(SCORE_MAX, max(SCORE_MIN, value))


def difficulty_multiplier(difficulty: Any) -> Tuple[float, Optional[str]]:
	if difficulty is None:
		return 1.0, None
	try:
		level = Difficulty(str(difficulty).strip().lower())
	except ValueError:
		return 1.0, None
	return DIFFICULTY_MULTIPLIERS[level], f"{level.value} difficulty"


def performance_multiplier(score: float) -> Tuple[float, str]:
	if score >= 90:
		return PERF_EXCELLENT, "Excellent performance"
	if score >= 70:
		return PERF_GOOD, "Good performance"
	if score >= 50:
		return PERF_AVERAGE, "Average performance"
	return PERF_BELOW_AVERAGE, "Below average performance"


def time_bonus_multiplier(completion_time: Optional[float], expected_time: Optional[float]) -> Tuple[float, Optional[str]]:
	if completion_time is None or expected_time is None:
		return 1.0, None
	if completion_time <= 0 or expected_time <= 0:
		return 1.0, None
	if completion_time <= QUICK_COMPLETION_RATIO * expected_time:
		return QUICK_COMPLETION_MULT, "Quick completion"
	return 1.0, None


def streak_multiplier(streak_days: float) -> Tuple[float, str]:
	days = max(0.0, streak_days)
	if days >= 30:
		return STREAK_MONTH_PLUS, "Monthly streak"
	if days >= 21:
		return STREAK_WEEK_4, "3+ week streak"
	if days >= 14:
		return STREAK_WEEK_3, "2+ week streak"
	if days >= 7:
		return STREAK_WEEK_2, "1+ week streak"
	return STREAK_WEEK_1, "Starting streak"


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def score_activity(activity_type: str, metadata: Mapping[str, Any] | None = None) -> ScoreBreakdown:
	"""Compute points for an activity.

	Pure and deterministic. Unknown activity types score 0 and malformed metadata
	falls back to neutral multipliers, so this never raises for caller input.
	"""

	base_points = base_points_for(activity_type)
	multiplier = 1.0
	bonuses: List[AppliedBonus] = []

	def _apply(name: str, factor: float, label: Optional[str]) -> None:
		nonlocal multiplier
		factor = max(0.0, factor)
		multiplier *= factor
		if label and factor != 1.0:
			bonuses.append(AppliedBonus(name=name, label=label, multiplier=factor))

	factor, label = difficulty_multiplier(_lookup(metadata, "difficulty"))
	_apply("difficulty", factor, label)

	score = read_score(metadata)
	if score is not None:
		factor, label = performance_multiplier(score)
		_apply("performance", factor, label)

	factor, label = time_bonus_multiplier(
		read_number(metadata, "completionTime"),
		read_number(metadata, "expectedTime"),
	)
	_apply("time", factor, label)

	streak_days = read_number(metadata, "streakDays")
	if streak_days is not None:
		factor, label = streak_multiplier(streak_days)
		_apply("streak", factor, label)

	points = max(0, round_half_up(base_points * multiplier))
	return ScoreBreakdown(
		base_points=base_points,
		multiplier=multiplier,
		bonuses=tuple(bonuses),
		points=points,
	)
