import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from matchrelay.monitoring.metrics import active_requests, request_count, request_duration

METRICS_PATH = "/internal/metrics"


def _endpoint(request: Request) -> str:
	# route template, e.g. /api/v1/outbox/{channel}/items/{game_id}
	route = request.scope.get("route")
	return getattr(route, "path", request.url.path)


class MonitoringMiddleware(BaseHTTPMiddleware):
	"""Prometheus request metrics; scrapes of the metrics endpoint are not counted"""

	async def dispatch(self, request: Request, call_next):
		if request.url.path == METRICS_PATH:
			return await call_next(request)

		active_requests.inc()
		started = time.perf_counter()
		try:
			response = await call_next(request)
		finally:
			active_requests.dec()

		endpoint = _endpoint(request)
		request_count.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
		request_duration.labels(method=request.method, endpoint=endpoint).observe(time.perf_counter() - started)
		return response
