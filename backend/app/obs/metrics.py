"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, Summary

log = logging.getLogger(__name__)


REQUEST_COUNTER = Counter(
	"heritage_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"heritage_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

POINTS_AWARDS = Counter(
	"heritage_points_awards_total",
	"Award requests by outcome",
	["outcome"],
)

POINTS_AWARD_RETRIES = Counter(
	"heritage_points_award_retries_total",
	"Awards restarted after a profile version conflict",
)

POINTS_AWARDED = Counter(
	"heritage_points_awarded_total",
	"Points credited, by activity type",
	["activity_type"],
)

POINTS_AWARD_DURATION = Histogram(
	"heritage_points_award_duration_seconds",
	"Wall time of a single award including retries",
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

ACHIEVEMENTS_UNLOCKED = Counter(
	"heritage_achievements_unlocked_total",
	"Achievements unlocked",
	["rarity"],
)

LEVEL_UPS = Counter(
	"heritage_level_ups_total",
	"Awards that raised a user's level",
)

LEADERBOARD_QUERIES = Counter(
	"heritage_lb_queries_total",
	"Leaderboard queries",
	["window", "category"],
)

LEADERBOARD_CACHE = Counter(
	"heritage_lb_cache_total",
	"Leaderboard standings cache lookups",
	["result"],
)

LEADERBOARD_PARTICIPANTS = Summary(
	"heritage_lb_participants",
	"Participants per computed standings list",
)

REDIS_UP = Gauge("heritage_redis_up", "Redis availability (1=up,0=down)")
POSTGRES_UP = Gauge("heritage_postgres_up", "Postgres availability (1=up,0=down)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_award(outcome: str) -> None:
	POINTS_AWARDS.labels(outcome=outcome).inc()


def inc_award_retry() -> None:
	POINTS_AWARD_RETRIES.inc()


def observe_award_duration(elapsed_seconds: float) -> None:
	POINTS_AWARD_DURATION.observe(elapsed_seconds)


def inc_points_awarded(activity_type: str, points: int) -> None:
	if points > 0:
		POINTS_AWARDED.labels(activity_type=activity_type).inc(points)


def inc_achievement_unlocked(rarity: str) -> None:
	ACHIEVEMENTS_UNLOCKED.labels(rarity=rarity).inc()


def inc_level_up() -> None:
	LEVEL_UPS.inc()


def inc_leaderboard_query(window: str, category: str) -> None:
	LEADERBOARD_QUERIES.labels(window=window, category=category).inc()


def inc_leaderboard_cache(result: str) -> None:
	LEADERBOARD_CACHE.labels(result=result).inc()


def observe_leaderboard_participants(count: int) -> None:
	LEADERBOARD_PARTICIPANTS.observe(count)


def set_dependency_up(name: str, up: bool) -> None:
	gauge = REDIS_UP if name == "redis" else POSTGRES_UP
	gauge.set(1 if up else 0)
