"""Time window arithmetic shared by history reads and leaderboards."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.domain.gamification.models import LeaderboardWindow

HISTORY_TIMEFRAMES = ("week", "month", "year")


def ensure_aware(moment: datetime) -> datetime:
	if moment.tzinfo is None:
		return moment.replace(tzinfo=timezone.utc)
	return moment


def months_before(moment: datetime, months: int) -> datetime:
	"""Same day-of-month ``months`` earlier, clamped to the end of shorter months."""

	index = moment.year * 12 + (moment.month - 1) - months
	year, month = divmod(index, 12)
	month += 1
	day = min(moment.day, calendar.monthrange(year, month)[1])
	return moment.replace(year=year, month=month, day=day)


def window_start(window: LeaderboardWindow, now: datetime) -> Optional[datetime]:
	"""Inclusive lower bound of ``window``; None means unbounded."""

	if window is LeaderboardWindow.DAILY:
		return now - timedelta(days=1)
	if window is LeaderboardWindow.WEEKLY:
		return now - timedelta(days=7)
	if window is LeaderboardWindow.MONTHLY:
		return months_before(now, 1)
	return None


def history_start(timeframe: str, now: datetime) -> datetime:
	"""Lower bound for point history; unknown timeframes fall back to a month."""

	if timeframe == "week":
		return now - timedelta(days=7)
	if timeframe == "year":
		return months_before(now, 12)
	return months_before(now, 1)
