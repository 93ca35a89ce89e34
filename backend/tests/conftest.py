import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.gamification.repo import InMemoryGamificationRepository, set_repository
from app.infra import postgres
from app.main import app
from app.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if sys.platform == "win32":
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await client.flushall()
		set_redis_client(original)


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings(monkeypatch):
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id headers, which are only accepted in dev mode.
	"""
	monkeypatch.setattr(settings, "environment", "dev")
	monkeypatch.setattr(settings, "points_store_backend", "memory")
	monkeypatch.setattr(settings, "obs_log_sampling_rate_info", 1.0)
	monkeypatch.setattr(settings, "streak_timezone", "UTC")


@pytest.fixture(autouse=True)
def memory_repository():
	repository = InMemoryGamificationRepository()
	set_repository(repository)
	try:
		yield repository
	finally:
		set_repository(None)


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
