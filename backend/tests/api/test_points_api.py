import pytest

from app.api import points as points_api
from app.domain.gamification.exceptions import StoreUnavailableError

USER = {"X-User-Id": "user-1"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Roles": "admin"}


@pytest.mark.asyncio
async def test_award_points_returns_breakdown_and_unlocks(api_client):
	response = await api_client.post(
		"/points/award",
		json={"activity_type": "QUIZ_COMPLETION", "metadata": {"score": 95, "difficulty": "advanced"}},
		headers=USER,
	)
	assert response.status_code == 200
	payload = response.json()
	assert payload["points_earned"] == 113
	assert payload["breakdown"]["multiplier"] == pytest.approx(2.25)
	assert [item["id"] for item in payload["achievements"]] == ["first_quiz_completed"]
	assert payload["total_points"] == 263
	assert payload["level"] == 3
	assert payload["leveled_up"] is True
	assert payload["replayed"] is False
	assert response.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_award_requires_authentication(api_client):
	response = await api_client.post("/points/award", json={"activity_type": "DAILY_LOGIN"})
	assert response.status_code == 401
	assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_award_for_another_user_requires_admin(api_client, memory_repository):
	body = {"activity_type": "DAILY_LOGIN", "user_id": "user-2"}

	denied = await api_client.post("/points/award", json=body, headers=USER)
	allowed = await api_client.post("/points/award", json=body, headers=ADMIN)

	assert denied.status_code == 403
	assert allowed.status_code == 200
	assert (await memory_repository.load_profile("user-2")).total_points == 5
	assert await memory_repository.load_profile("admin-1") is None


@pytest.mark.asyncio
async def test_idempotency_key_header_replays(api_client, memory_repository):
	headers = {**USER, "Idempotency-Key": "evt-42"}
	body = {"activity_type": "GOAL_COMPLETED"}

	first = await api_client.post("/points/award", json=body, headers=headers)
	second = await api_client.post("/points/award", json=body, headers=headers)
	clash = await api_client.post("/points/award", json={"activity_type": "DAILY_LOGIN"}, headers=headers)

	assert first.status_code == 200
	assert second.json()["replayed"] is True
	assert second.json()["activity_id"] == first.json()["activity_id"]
	assert clash.status_code == 409
	assert clash.json()["detail"] == "idempotency_conflict"
	assert len(await memory_repository.query_activities(user_id="user-1")) == 1


@pytest.mark.asyncio
async def test_invalid_body_is_rejected(api_client):
	response = await api_client.post("/points/award", json={"metadata": {}}, headers=USER)
	assert response.status_code == 422
	assert response.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_store_outage_maps_to_503(api_client, monkeypatch):
	async def unavailable(*_args, **_kwargs):
		raise StoreUnavailableError()

	monkeypatch.setattr(points_api._service, "award", unavailable)

	response = await api_client.post("/points/award", json={"activity_type": "DAILY_LOGIN"}, headers=USER)

	assert response.status_code == 503
	assert response.json()["detail"] == "store_unavailable"
	assert "request_id" in response.json()


@pytest.mark.asyncio
async def test_profile_history_and_weekly_progress(api_client):
	await api_client.post("/points/award", json={"activity_type": "COMMENT_POSTED"}, headers=USER)
	await api_client.post("/points/award", json={"activity_type": "DAILY_LOGIN"}, headers=USER)

	profile = await api_client.get("/points/me", headers=USER)
	history = await api_client.get("/points/me/history", params={"timeframe": "week"}, headers=USER)
	weekly = await api_client.get("/points/me/weekly-progress", headers=USER)

	assert profile.status_code == 200
	assert profile.json()["total_points"] == 15
	assert profile.json()["level"] == 1
	assert profile.json()["points_to_next_level"] == 35
	assert profile.json()["current_streak"] == 1
	assert history.json()["timeframe"] == "week"
	assert [item["activity_type"] for item in history.json()["items"]] == ["COMMENT_POSTED", "DAILY_LOGIN"]
	assert len(weekly.json()) == 7
	assert weekly.json()[-1]["points"] == 15


@pytest.mark.asyncio
async def test_history_rejects_unknown_timeframe(api_client):
	response = await api_client.get("/points/me/history", params={"timeframe": "century"}, headers=USER)
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_achievement_catalogue_marks_earned(api_client):
	await api_client.post("/points/award", json={"activity_type": "GAME_COMPLETION"}, headers=USER)

	response = await api_client.get("/points/achievements", headers=USER)

	assert response.status_code == 200
	catalogue = {item["id"]: item for item in response.json()}
	assert catalogue["first_game_completed"]["earned"] is True
	assert catalogue["first_quiz_completed"]["earned"] is False
	assert catalogue["month_streak"]["points"] == 300
