"""Wiring of the document and HTTP outboxes to their drivers"""
from functools import partial
from typing import Callable, Optional, Tuple
import logging

import httpx

from matchrelay.config import Settings, settings as default_settings
from matchrelay.core.exceptions import ConfigurationMissing
from matchrelay.models.outbox import DOCUMENT_CHANNEL, HTTP_CHANNEL
from matchrelay.services.artifacts import DocumentArtifactResolver, FinishedGameResolver, FinishedRecordLookup
from matchrelay.services.outbox_store import OutboxStore
from matchrelay.services.retry_driver import RetryDriver
from matchrelay.services.settings_service import RuntimeSettingsRepository, SettingsProvider
from matchrelay.services.transports import RaspiUploadClient, TelegramDocumentClient

logger = logging.getLogger(__name__)

DOCUMENT_JOB = "document_retry"
HTTP_JOB = "http_retry"
JOB_IDS = (DOCUMENT_JOB, HTTP_JOB)

DEFAULT_PORTS = {"http": 80, "https": 443}


def get_document_store(settings: Optional[Settings] = None) -> OutboxStore:
	settings = settings or default_settings
	return OutboxStore.in_directory(settings.outbox_dir, DOCUMENT_CHANNEL)


def get_http_store(settings: Optional[Settings] = None) -> OutboxStore:
	settings = settings or default_settings
	return OutboxStore.in_directory(settings.outbox_dir, HTTP_CHANNEL)


def build_document_driver(
		settings: Optional[Settings] = None,
		provider: Optional[SettingsProvider] = None,
		client: Optional[TelegramDocumentClient] = None
) -> RetryDriver:
	settings = settings or default_settings
	provider = provider or RuntimeSettingsRepository.from_settings(settings)
	client = client or TelegramDocumentClient(
		api_url=settings.TELEGRAM_API_URL,
		connect_timeout=settings.HTTP_CONNECT_TIMEOUT,
		read_timeout=settings.HTTP_READ_TIMEOUT
	)

	def transport():
		delivery = provider.get_delivery_settings()
		if not delivery.document_configured:
			raise ConfigurationMissing("Telegram bot token or chat id is blank")
		return partial(client.send, delivery.channel_token.strip(), delivery.chat_id.strip())

	return RetryDriver(
		store=get_document_store(settings),
		resolver=DocumentArtifactResolver(settings.exports_dir, FinishedRecordLookup(settings.finished_dir)),
		transport_factory=transport,
		max_attempts=settings.DOCUMENT_MAX_ATTEMPTS,
		claim_timeout_seconds=settings.CLAIM_TIMEOUT_SECONDS
	)


def build_http_driver(
		settings: Optional[Settings] = None,
		provider: Optional[SettingsProvider] = None,
		client_factory: Callable[..., RaspiUploadClient] = RaspiUploadClient
) -> RetryDriver:
	settings = settings or default_settings
	provider = provider or RuntimeSettingsRepository.from_settings(settings)

	def transport():
		delivery = provider.get_delivery_settings()
		if not delivery.http_configured:
			raise ConfigurationMissing("Server URL or API key is blank")
		client = client_factory(
			base_url=delivery.http_base_url,
			api_key=delivery.api_key,
			connect_timeout=settings.HTTP_CONNECT_TIMEOUT,
			read_timeout=settings.HTTP_READ_TIMEOUT
		)
		return client.upload

	return RetryDriver(
		store=get_http_store(settings),
		resolver=FinishedGameResolver(settings.finished_dir),
		transport_factory=transport,
		max_attempts=settings.HTTP_MAX_ATTEMPTS,
		claim_timeout_seconds=settings.CLAIM_TIMEOUT_SECONDS
	)


DRIVER_BUILDERS = {
	DOCUMENT_JOB: build_document_driver,
	HTTP_JOB: build_http_driver,
}


def build_driver(job_id: str, settings: Optional[Settings] = None) -> RetryDriver:
	try:
		builder = DRIVER_BUILDERS[job_id]
	except KeyError:
		raise ValueError(f"Unknown retry job: {job_id}") from None
	return builder(settings)


def connectivity_target(job_id: str, settings: Optional[Settings] = None) -> Tuple[str, int]:
	"""Host and port checked for reachability before a sweep: the scoreboard server for HTTP, the public check host otherwise"""
	settings = settings or default_settings
	fallback = (settings.CONNECTIVITY_CHECK_HOST, settings.CONNECTIVITY_CHECK_PORT)
	if job_id != HTTP_JOB:
		return fallback

	base_url = RuntimeSettingsRepository.from_settings(settings).get_delivery_settings().http_base_url.strip()
	if not base_url:
		return fallback

	try:
		url = httpx.URL(base_url)
	except httpx.InvalidURL as e:
		logger.warning(f"Cannot check reachability of server URL {base_url!r}: {e}")
		return fallback
	if not url.host:
		return fallback
	return url.host, url.port or DEFAULT_PORTS.get(url.scheme, settings.CONNECTIVITY_CHECK_PORT)
