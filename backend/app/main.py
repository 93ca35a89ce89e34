"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import leaderboards, ops, points
from app.api.errors import install_error_handlers
from app.infra import postgres
from app.obs import init as obs_init
from app.settings import settings

LOGGER = logging.getLogger(__name__)

_DEV_ORIGINS = [
	"http://localhost:3000",
	"http://127.0.0.1:3000",
	"http://localhost:5173",
	"http://127.0.0.1:5173",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.points_store_backend == "postgres":
		await postgres.init_pool()
	LOGGER.info("service.started", extra={"store_backend": settings.points_store_backend})
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="Heritage Points Engine", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = list(_DEV_ORIGINS) if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = list(_DEV_ORIGINS) if settings.is_dev() else [o for o in allow_origins if o != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)

app.include_router(ops.router, tags=["ops"])
app.include_router(points.router, tags=["points"])
app.include_router(leaderboards.router, tags=["leaderboards"])
