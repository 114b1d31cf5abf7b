from pathlib import Path
from typing import Callable, Optional, Union
import logging

from matchrelay.config import settings
from matchrelay.models.outbox import DocumentArtifactRef, HttpArtifactRef, OutboxItem, OutboxKey
from matchrelay.monitoring.metrics import outbox_enqueued
from matchrelay.services.channels import DOCUMENT_JOB, HTTP_JOB, get_document_store, get_http_store
from matchrelay.services.outbox_store import OutboxStore

logger = logging.getLogger(__name__)


class OutboxService:
	"""Entry point for producers: queue a deliverable and wake its sweep"""

	def __init__(
			self,
			store: OutboxStore,
			job_id: str,
			schedule: Optional[Callable[[str], str]] = None
	):
		self.store = store
		self.job_id = job_id
		self.schedule = schedule

	def enqueue(self, key: Union[OutboxKey, str], ref) -> OutboxItem:
		"""Add (or re-queue) an item and request a sweep"""
		item = self.store.upsert_pending(key, ref)
		outbox_enqueued.labels(channel=self.store.channel.name).inc()

		if self.schedule is not None:
			try:
				self.schedule(self.job_id)
			except Exception as e:
				# the item is already durable; the periodic sweep will pick it up
				logger.error(f"Could not schedule {self.job_id} sweep for {item.key}: {e}")

		return item

	def get_item(self, key: Union[OutboxKey, str]) -> Optional[OutboxItem]:
		return self.store.get_by_key(key)


def _default_schedule(job_id: str) -> str:
	from matchrelay.workers.scheduler import schedule
	return schedule(job_id)


def get_document_outbox_service() -> OutboxService:
	return OutboxService(get_document_store(), DOCUMENT_JOB, _default_schedule)


def get_http_outbox_service() -> OutboxService:
	return OutboxService(get_http_store(), HTTP_JOB, _default_schedule)


def get_finished_dir() -> Path:
	return settings.finished_dir


def enqueue_document_export(
		game_id: str,
		season: str,
		export_file_name: str,
		event_id: Optional[int] = None
) -> OutboxItem:
	"""Queue ``result_<eventId>.json`` for the Telegram channel"""
	ref = DocumentArtifactRef(export_file_name=export_file_name, season=season, event_id=event_id)
	return get_document_outbox_service().enqueue(OutboxKey(game_id), ref)


def enqueue_finished_game(game_id: str, season: str, finished_file_path: str) -> OutboxItem:
	"""Queue a finished-game JSON for the scoreboard server"""
	ref = HttpArtifactRef(finished_file_path=finished_file_path)
	return get_http_outbox_service().enqueue(OutboxKey(game_id, season), ref)
