"""
Scheduling of retry sweeps.

A sweep request replaces any request for the same job that has not started
yet (it is revoked without ``terminate``), so a sweep already running always
finishes. The id of the waiting request lives in Redis.
"""
from typing import Optional
import logging
import uuid

import redis
from celery import Celery

from matchrelay.config import Settings, settings as default_settings
from matchrelay.services.channels import JOB_IDS

logger = logging.getLogger(__name__)

PENDING_SLOT_PREFIX = "matchrelay:pending:"

# delete the slot only if it still holds our id
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
	return redis.call('del', KEYS[1])
end
return 0
"""


def backoff_delay(retries: int, settings: Optional[Settings] = None) -> int:
	"""Exponential backoff from a fixed base: base, 2*base, 4*base... capped"""
	settings = settings or default_settings
	return min(settings.RETRY_BACKOFF_BASE_SECONDS * (2 ** retries), settings.RETRY_BACKOFF_MAX_SECONDS)


def pending_slot(job_id: str) -> str:
	return f"{PENDING_SLOT_PREFIX}{job_id}"


class RetryScheduler:
	def __init__(
			self,
			redis_client: redis.Redis,
			app: Celery,
			settings: Optional[Settings] = None
	):
		self.redis = redis_client
		self.app = app
		self.settings = settings or default_settings

	@property
	def slot_ttl(self) -> int:
		return self.settings.RETRY_BACKOFF_MAX_SECONDS * 2

	def schedule(self, job_id: str) -> str:
		"""Request a sweep for job_id; returns the Celery task id"""
		if job_id not in JOB_IDS:
			raise ValueError(f"Unknown retry job: {job_id}")

		task_id = str(uuid.uuid4())
		previous = self.redis.set(pending_slot(job_id), task_id, ex=self.slot_ttl, get=True)
		if previous and previous != task_id:
			self.app.control.revoke(previous)
			logger.info(f"Superseded pending {job_id} sweep {previous}")

		from matchrelay.workers.retry_tasks import run_retry_sweep
		run_retry_sweep.apply_async(args=[job_id], task_id=task_id)
		logger.info(f"Scheduled {job_id} sweep {task_id}")
		return task_id

	def release_slot(self, job_id: str, task_id: str) -> bool:
		"""A sweep that starts is no longer pending and cannot be superseded"""
		return bool(self.redis.eval(_RELEASE_SCRIPT, 1, pending_slot(job_id), task_id))

	def hold_slot(self, job_id: str, task_id: str) -> bool:
		"""
		Mark a sweep waiting for its retry as pending again.

		Returns False when a newer request is already waiting; that request
		covers this one.
		"""
		return bool(self.redis.set(pending_slot(job_id), task_id, ex=self.slot_ttl, nx=True))


_scheduler: Optional[RetryScheduler] = None


def get_scheduler() -> RetryScheduler:
	global _scheduler

	if _scheduler is None:
		from matchrelay.core.celery_app import celery_app
		from matchrelay.core.redis import get_redis
		_scheduler = RetryScheduler(get_redis(), celery_app)
	return _scheduler


def schedule(job_id: str) -> str:
	return get_scheduler().schedule(job_id)
