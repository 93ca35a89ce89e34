"""Consecutive-day streak detection over activity dates."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.domain.gamification.models import StreakState


def _as_date(value: date | datetime) -> date:
	if isinstance(value, datetime):
		return value.date()
	return value


def compute_streak(activity_days: Iterable[date | datetime], as_of: date | datetime) -> StreakState:
	"""Return (current, longest) runs of consecutive days.

	``current`` walks backwards from ``as_of`` and is 0 when ``as_of`` itself has
	no activity. ``longest`` is the longest run anywhere in the input.
	"""

	days = sorted({_as_date(value) for value in activity_days})
	if not days:
		return StreakState(current=0, longest=0)

	longest = 1
	run = 1
	for prev, cur in zip(days, days[1:]):
		if cur - prev == timedelta(days=1):
			run += 1
		else:
			run = 1
		longest = max(longest, run)

	present = set(days)
	cursor = _as_date(as_of)
	current = 0
	while cursor in present:
		current += 1
		cursor -= timedelta(days=1)

	return StreakState(current=current, longest=longest)


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
	try:
		return ZoneInfo(tz_name or "UTC")
	except (ZoneInfoNotFoundError, ValueError):
		return ZoneInfo("UTC")


def local_date(moment: datetime, tz: ZoneInfo) -> date:
	"""Calendar date of ``moment`` in ``tz``; naive datetimes are taken as UTC."""

	if moment.tzinfo is None:
		moment = moment.replace(tzinfo=timezone.utc)
	return moment.astimezone(tz).date()


def activity_dates(timestamps: Iterable[datetime], tz: ZoneInfo) -> set[date]:
	return {local_date(moment, tz) for moment in timestamps}
