# =====================================
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from matchrelay.middleware.api_key import APIKeyMiddleware


@pytest.fixture
async def protected_client():
	app = FastAPI()
	app.add_middleware(APIKeyMiddleware, exclude_paths=["/internal"], api_keys=["producer-key"])

	@app.get("/api/v1/outbox/document/items/g1")
	async def item():
		return {"ok": True}

	@app.get("/health")
	async def health():
		return {"status": "healthy"}

	async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
		yield ac


@pytest.mark.asyncio
async def test_missing_api_key(protected_client: AsyncClient):
	response = await protected_client.get("/api/v1/outbox/document/items/g1")
	assert response.status_code == 401
	assert response.json()["error"] == "Unauthorized"


@pytest.mark.asyncio
async def test_valid_api_key(protected_client: AsyncClient):
	response = await protected_client.get(
		"/api/v1/outbox/document/items/g1",
		headers={"X-API-Key": "producer-key"}
	)
	assert response.status_code == 200


@pytest.mark.asyncio
async def test_wrong_api_key(protected_client: AsyncClient):
	response = await protected_client.get(
		"/api/v1/outbox/document/items/g1",
		params={"api_key": "guess"}
	)
	assert response.status_code == 401


@pytest.mark.asyncio
async def test_health_needs_no_key(protected_client: AsyncClient):
	response = await protected_client.get("/health")
	assert response.status_code == 200
