"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.infra.auth import AuthenticatedUser, get_optional_user
from app.obs import health
from app.settings import settings

router = APIRouter(prefix="", tags=["ops"])


async def require_metrics_access(user: Optional[AuthenticatedUser] = Depends(get_optional_user)) -> None:
	if settings.obs_metrics_public:
		return
	if user is None:
		raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	if not user.has_role("admin"):
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="insufficient_role")


@router.get("/health")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics", dependencies=[Depends(require_metrics_access)])
async def metrics_endpoint() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
