from datetime import datetime, timezone
import json
import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0


def _level_for(status_code: int) -> int:
	if status_code >= 500:
		return logging.ERROR
	if status_code >= 400:
		return logging.WARNING
	return logging.INFO


class LoggingMiddleware(BaseHTTPMiddleware):
	"""One JSON access-log line per request"""

	async def dispatch(self, request: Request, call_next):
		started = time.perf_counter()
		response = await call_next(request)
		elapsed = time.perf_counter() - started

		level = _level_for(response.status_code)
		entry = {
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"level": logging.getLevelName(level),
			"request_id": getattr(request.state, "request_id", None),
			"method": request.method,
			"path": request.url.path,
			"query": str(request.url.query) or None,
			"client": request.client.host if request.client else None,
			"status_code": response.status_code,
			"duration_seconds": round(elapsed, 3),
		}
		logger.log(level, json.dumps(entry))

		if elapsed > SLOW_REQUEST_SECONDS:
			logger.warning(f"Slow request: {request.method} {request.url.path} took {elapsed:.2f}s")

		return response
