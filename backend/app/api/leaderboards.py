"""FastAPI routes for points leaderboards."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.errors import to_http_exception
from app.domain.gamification.exceptions import GamificationError
from app.domain.gamification.leaderboard import LeaderboardService
from app.domain.gamification.models import LeaderboardCategory, LeaderboardWindow
from app.domain.gamification.schemas import (
	LeaderboardEntrySchema,
	LeaderboardPositionSchema,
	LeaderboardResponseSchema,
	LeaderboardStatsSchema,
)
from app.infra.auth import AuthenticatedUser, get_current_user, get_optional_user

router = APIRouter(prefix="/leaderboards", tags=["leaderboards"])

_service = LeaderboardService()


@router.get("", response_model=LeaderboardResponseSchema)
async def leaderboard_endpoint(
	window: LeaderboardWindow = Query(default=LeaderboardWindow.ALL_TIME),
	category: LeaderboardCategory = Query(default=LeaderboardCategory.OVERALL),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
) -> LeaderboardResponseSchema:
	try:
		page = await _service.get_leaderboard(
			window,
			category,
			limit,
			current_user_id=auth_user.id if auth_user else None,
		)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return LeaderboardResponseSchema.from_domain(page)


# Note: static paths below must stay ahead of any parameterised route
@router.get("/me/position", response_model=LeaderboardPositionSchema)
async def my_position_endpoint(
	window: LeaderboardWindow = Query(default=LeaderboardWindow.ALL_TIME),
	category: LeaderboardCategory = Query(default=LeaderboardCategory.OVERALL),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> LeaderboardPositionSchema:
	try:
		position = await _service.get_position(auth_user.id, window, category)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return LeaderboardPositionSchema.from_domain(position, window=window, category=category)


@router.get("/achievements", response_model=List[LeaderboardEntrySchema])
async def achievements_leaderboard_endpoint(
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
) -> List[LeaderboardEntrySchema]:
	try:
		entries = await _service.get_achievements_leaderboard(
			limit,
			current_user_id=auth_user.id if auth_user else None,
		)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return [LeaderboardEntrySchema.from_domain(entry) for entry in entries]


@router.get("/stats", response_model=LeaderboardStatsSchema)
async def leaderboard_stats_endpoint() -> LeaderboardStatsSchema:
	try:
		stats = await _service.get_stats()
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return LeaderboardStatsSchema.from_domain(stats)
