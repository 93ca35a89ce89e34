import pytest

from app.api import leaderboards as leaderboards_api
from app.domain.gamification.exceptions import StoreUnavailableError
from app.domain.gamification.service import PointsService


async def _seed():
	service = PointsService()
	await service.award("user-a", "COURSE_COMPLETION")
	await service.award("user-b", "QUIZ_COMPLETION", {"score": 92})
	await service.award("user-b", "QUIZ_COMPLETION", {"score": 100})
	await service.award("user-c", "DAILY_LOGIN")


@pytest.mark.asyncio
async def test_public_leaderboard_is_anonymised(api_client):
	await _seed()

	response = await api_client.get("/leaderboards")

	assert response.status_code == 200
	payload = response.json()
	assert payload["window"] == "allTime"
	assert payload["category"] == "overall"
	assert payload["total_participants"] == 3
	assert [row["rank"] for row in payload["items"]] == [1, 2, 3]
	assert [row["display_name"] for row in payload["items"]] == ["Player 1", "Player 2", "Player 3"]
	assert all(row["user_id"] is None for row in payload["items"])
	assert all(row["is_current_user"] is False for row in payload["items"])


@pytest.mark.asyncio
async def test_caller_is_identified_in_their_row(api_client, memory_repository):
	memory_repository.display_names["user-b"] = "Bea"
	await _seed()

	response = await api_client.get("/leaderboards", params={"limit": 2}, headers={"X-User-Id": "user-b"})

	rows = response.json()["items"]
	assert len(rows) == 2
	mine = [row for row in rows if row["is_current_user"]]
	assert mine == [
		{
			"rank": mine[0]["rank"],
			"display_name": "Bea",
			"is_current_user": True,
			"points": mine[0]["points"],
			"level": mine[0]["level"],
			"activity_count": 2,
			"stats": {"activities_count": 2},
			"user_id": "user-b",
		}
	]


@pytest.mark.asyncio
async def test_category_leaderboard_reports_category_stats(api_client):
	await _seed()

	response = await api_client.get("/leaderboards", params={"window": "weekly", "category": "quizzes"})

	payload = response.json()
	assert payload["total_participants"] == 1
	assert payload["items"][0]["points"] == 150
	assert payload["items"][0]["stats"] == {"quizzes_completed": 2, "avg_score": 96.0, "perfect_scores": 1}


@pytest.mark.asyncio
async def test_unknown_window_is_rejected(api_client):
	response = await api_client.get("/leaderboards", params={"window": "hourly"})
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_my_position(api_client):
	await _seed()

	response = await api_client.get("/leaderboards/me/position", headers={"X-User-Id": "user-c"})
	missing = await api_client.get("/leaderboards/me/position", headers={"X-User-Id": "user-z"})

	assert response.status_code == 200
	assert response.json()["rank"] == 3
	assert response.json()["total_participants"] == 3
	assert response.json()["percentile"] == 33
	assert missing.json()["rank"] is None
	assert missing.json()["percentile"] is None


@pytest.mark.asyncio
async def test_my_position_requires_authentication(api_client):
	response = await api_client.get("/leaderboards/me/position")
	assert response.status_code == 401


@pytest.mark.asyncio
async def test_achievements_leaderboard_and_stats(api_client):
	await _seed()

	achievements = await api_client.get("/leaderboards/achievements")
	stats = await api_client.get("/leaderboards/stats")

	assert achievements.status_code == 200
	assert [row["stats"]["achievements_count"] for row in achievements.json()] == [1, 1]
	assert stats.status_code == 200
	assert stats.json()["active_users"] == 3
	assert stats.json()["level_distribution"] == {"1": 1, "3": 2}


@pytest.mark.asyncio
async def test_store_outage_maps_to_503(api_client, monkeypatch):
	async def unavailable(*_args, **_kwargs):
		raise StoreUnavailableError()

	monkeypatch.setattr(leaderboards_api._service, "get_leaderboard", unavailable)

	response = await api_client.get("/leaderboards")

	assert response.status_code == 503
