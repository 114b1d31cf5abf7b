from prometheus_client import Counter, Histogram, Gauge, generate_latest
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter()

# HTTP API
request_count = Counter(
	'http_requests_total',
	'Total HTTP requests',
	['method', 'endpoint', 'status']
)

request_duration = Histogram(
	'http_request_duration_seconds',
	'HTTP request duration',
	['method', 'endpoint'],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

active_requests = Gauge(
	'http_requests_active',
	'Number of active HTTP requests'
)

# Outbox
outbox_enqueued = Counter(
	'outbox_enqueued_total',
	'Items queued for delivery',
	['channel']
)

delivery_attempts = Counter(
	'outbox_delivery_attempts_total',
	'Delivery attempts by outcome',
	['channel', 'outcome']
)

sweeps = Counter(
	'outbox_sweeps_total',
	'Retry sweeps run',
	['channel']
)

sweep_duration = Histogram(
	'outbox_sweep_duration_seconds',
	'Retry sweep duration',
	['channel'],
	buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0)
)


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics():
	"""Prometheus metrics endpoint"""
	return generate_latest()
