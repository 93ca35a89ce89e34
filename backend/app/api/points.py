"""FastAPI routes for awarding points and reading a user's progress."""

from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from app.api.errors import to_http_exception
from app.domain.gamification.exceptions import GamificationError
from app.domain.gamification.schemas import (
	AchievementStatusSchema,
	ActivityRecordSchema,
	AwardPointsRequest,
	AwardResultSchema,
	DailyProgressSchema,
	PointHistorySchema,
	ProfileSummarySchema,
)
from app.domain.gamification.service import PointsService
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/points", tags=["points"])

_service = PointsService()


@router.post("/award", response_model=AwardResultSchema)
async def award_points_endpoint(
	payload: AwardPointsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> AwardResultSchema:
	target_user = payload.user_id or auth_user.id
	if target_user != auth_user.id and not auth_user.has_role("admin"):
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="insufficient_role")
	try:
		result = await _service.award(
			target_user,
			payload.activity_type,
			payload.metadata,
			occurred_at=payload.occurred_at,
			idempotency_key=idempotency_key or payload.idempotency_key,
		)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return AwardResultSchema.from_domain(result)


@router.get("/me", response_model=ProfileSummarySchema)
async def my_profile_endpoint(auth_user: AuthenticatedUser = Depends(get_current_user)) -> ProfileSummarySchema:
	try:
		summary = await _service.get_profile(auth_user.id)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return ProfileSummarySchema.from_domain(summary)


@router.get("/me/history", response_model=PointHistorySchema)
async def my_history_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	timeframe: Literal["week", "month", "year"] = Query(default="month"),
) -> PointHistorySchema:
	try:
		records = await _service.get_point_history(auth_user.id, timeframe)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return PointHistorySchema(
		timeframe=timeframe,
		items=[ActivityRecordSchema.from_domain(record) for record in records],
	)


@router.get("/me/weekly-progress", response_model=List[DailyProgressSchema])
async def my_weekly_progress_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[DailyProgressSchema]:
	try:
		days = await _service.get_weekly_progress(auth_user.id)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return [DailyProgressSchema.from_domain(day) for day in days]


@router.get("/achievements", response_model=List[AchievementStatusSchema])
async def achievements_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[AchievementStatusSchema]:
	try:
		statuses = await _service.list_achievements(auth_user.id)
	except GamificationError as exc:
		raise to_http_exception(exc) from exc
	return [AchievementStatusSchema.from_domain(item) for item in statuses]
