import logging
import socket

from matchrelay.config import settings

logger = logging.getLogger(__name__)


def is_network_available(host: str = None, port: int = None, timeout: float = None) -> bool:
	"""Cheap connectivity check run before a retry sweep"""
	host = host or settings.CONNECTIVITY_CHECK_HOST
	port = port or settings.CONNECTIVITY_CHECK_PORT
	timeout = timeout if timeout is not None else settings.CONNECTIVITY_CHECK_TIMEOUT

	try:
		with socket.create_connection((host, port), timeout=timeout):
			return True
	except OSError as e:
		logger.info(f"Network unavailable ({host}:{port}): {e}")
		return False
