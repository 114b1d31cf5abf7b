import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO"):
	"""Configure root logging once for the API and the Celery worker"""
	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format=LOG_FORMAT,
		handlers=[logging.StreamHandler(sys.stdout)]
	)
	# httpx logs every request at INFO
	logging.getLogger("httpx").setLevel(logging.WARNING)
