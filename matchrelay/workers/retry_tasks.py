from typing import Any, Dict
import logging

from matchrelay.config import settings
from matchrelay.core.celery_app import celery_app
from matchrelay.core.network import is_network_available
from matchrelay.services.channels import JOB_IDS, build_driver, connectivity_target
from matchrelay.workers.scheduler import backoff_delay, get_scheduler

logger = logging.getLogger(__name__)

celery_app.conf.beat_schedule = {
	'schedule-retry-sweeps': {
		'task': 'matchrelay.workers.retry_tasks.schedule_retry_sweeps',
		'schedule': settings.RETRY_SWEEP_INTERVAL_SECONDS,
	},
}


@celery_app.task(
	bind=True,
	name="matchrelay.workers.retry_tasks.run_retry_sweep",
	max_retries=settings.RETRY_MAX_RETRIES
)
def run_retry_sweep(self, job_id: str) -> Dict[str, Any]:
	"""Run one sweep of the outbox behind job_id"""
	task_id = self.request.id
	scheduler = get_scheduler()
	scheduler.release_slot(job_id, task_id)

	if not is_network_available(*connectivity_target(job_id)):
		return _retry_later(self, job_id, None)

	try:
		report = build_driver(job_id).run_sweep()
	except Exception as e:
		logger.error(f"{job_id} sweep {task_id} failed: {e}", exc_info=True)
		return _retry_later(self, job_id, e)

	return report.as_dict()


def _retry_later(task, job_id: str, exc):
	if task.max_retries is not None and task.request.retries >= task.max_retries:
		# the slot was released on entry; the periodic sweep takes over
		logger.error(f"{job_id} sweep {task.request.id} gave up after {task.request.retries} retries: {exc}")
		return {"job_id": job_id, "retries_exhausted": True, "error": str(exc) if exc else "network unavailable"}

	if not get_scheduler().hold_slot(job_id, task.request.id):
		logger.info(f"Newer {job_id} sweep already pending; not retrying {task.request.id}")
		return {"job_id": job_id, "superseded": True}

	countdown = backoff_delay(task.request.retries)
	logger.warning(f"{job_id} sweep {task.request.id} retry #{task.request.retries + 1} in {countdown}s")
	raise task.retry(exc=exc, countdown=countdown)


@celery_app.task(name="matchrelay.workers.retry_tasks.schedule_retry_sweeps")
def schedule_retry_sweeps() -> Dict[str, str]:
	"""Periodic trigger for every outbox"""
	scheduler = get_scheduler()
	return {job_id: scheduler.schedule(job_id) for job_id in JOB_IDS}
