# matchrelay/core/celery_app.py
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from matchrelay.config import settings
from matchrelay.core.logging_config import setup_logging

celery_app = Celery(
	"matchrelay",
	broker=settings.REDIS_URL,
	backend=settings.REDIS_URL,
	include=["matchrelay.workers.retry_tasks"],
)

celery_app.conf.update(
	task_time_limit=60 * 30,
	task_soft_time_limit=60 * 25,
	worker_max_tasks_per_child=100,
	worker_prefetch_multiplier=1,
	result_expires=3600,
	task_track_started=True,
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
	setup_logging(settings.LOG_LEVEL)
