import pytest
from pathlib import Path
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient

from matchrelay.config import Settings
from matchrelay.models.outbox import DOCUMENT_CHANNEL, HTTP_CHANNEL, DocumentArtifactRef, HttpArtifactRef
from matchrelay.services.artifacts import register_artifact_builder
from matchrelay.services.outbox_store import OutboxStore


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
	"""Settings pointing at a throwaway data directory"""
	return Settings(
		DATA_DIR=tmp_path / "hockey-json",
		TELEGRAM_BOT_TOKEN="",
		TELEGRAM_CHAT_ID="",
		RASPI_BASE_URL="",
		RASPI_API_KEY="",
		REQUIRE_API_KEY=False,
	)


@pytest.fixture
def document_store(test_settings: Settings) -> OutboxStore:
	return OutboxStore.in_directory(test_settings.outbox_dir, DOCUMENT_CHANNEL)


@pytest.fixture
def http_store(test_settings: Settings) -> OutboxStore:
	return OutboxStore.in_directory(test_settings.outbox_dir, HTTP_CHANNEL)


@pytest.fixture
def document_ref():
	def make(name: str = "e1.json", season: str = "2025", event_id=None) -> DocumentArtifactRef:
		return DocumentArtifactRef(export_file_name=name, season=season, event_id=event_id)
	return make


@pytest.fixture
def http_ref():
	def make(path: str = "/data/finished/2025/g1.json") -> HttpArtifactRef:
		return HttpArtifactRef(finished_file_path=path)
	return make


@pytest.fixture(autouse=True)
def no_artifact_builder():
	register_artifact_builder(None)
	yield
	register_artifact_builder(None)


@pytest.fixture
def scheduled_jobs() -> list:
	return []


@pytest.fixture
async def client(
		test_settings: Settings,
		document_store: OutboxStore,
		http_store: OutboxStore,
		scheduled_jobs: list
) -> AsyncGenerator[AsyncClient, None]:
	"""API client wired to temporary outboxes, scheduling recorded instead of sent to Celery"""
	from matchrelay.main import app
	from matchrelay.services.outbox_service import (
		OutboxService,
		get_document_outbox_service,
		get_finished_dir,
		get_http_outbox_service,
	)
	from matchrelay.services.channels import DOCUMENT_JOB, HTTP_JOB

	document_service = OutboxService(document_store, DOCUMENT_JOB, scheduled_jobs.append)
	http_service = OutboxService(http_store, HTTP_JOB, scheduled_jobs.append)

	app.dependency_overrides[get_document_outbox_service] = lambda: document_service
	app.dependency_overrides[get_http_outbox_service] = lambda: http_service
	app.dependency_overrides[get_finished_dir] = lambda: test_settings.finished_dir

	async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
		yield ac

	app.dependency_overrides.clear()
