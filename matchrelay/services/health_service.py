# matchrelay/services/health_service.py
from typing import Any, Callable, Dict
from datetime import datetime, timezone
import os
import platform
import logging

import psutil

from matchrelay.config import settings
from matchrelay.core.celery_app import celery_app
from matchrelay.core.redis import check_redis_connection
from matchrelay.services.channels import get_document_store, get_http_store

logger = logging.getLogger(__name__)


def _redis() -> Dict[str, Any]:
    healthy = check_redis_connection()
    return {"healthy": healthy, "url": settings.REDIS_URL.rsplit("@", 1)[-1]}


def _storage() -> Dict[str, Any]:
    """Outbox directory is writable; per-channel item counts by status"""
    outbox_dir = settings.outbox_dir
    outbox_dir.mkdir(parents=True, exist_ok=True)

    channels = {}
    for store in (get_document_store(), get_http_store()):
        counts: Dict[str, int] = {}
        for item in store.get_all():
            counts[item.status.value] = counts.get(item.status.value, 0) + 1
        channels[store.channel.name] = counts

    return {
        "healthy": os.access(outbox_dir, os.W_OK),
        "path": str(outbox_dir),
        "outbox": channels,
    }


def _celery() -> Dict[str, Any]:
    stats = celery_app.control.inspect(timeout=1.0).stats() or {}
    workers = sorted(stats)
    return {"healthy": bool(workers), "workers": workers}


CHECKS: Dict[str, Callable[[], Dict[str, Any]]] = {
    "redis": _redis,
    "storage": _storage,
    "celery": _celery,
}


def _system() -> Dict[str, Any]:
    return {
        "cpu_percent": psutil.cpu_percent(interval=0.1),
        "memory_percent": psutil.virtual_memory().percent,
        "disk_percent": psutil.disk_usage(str(settings.DATA_DIR.resolve().anchor)).percent,
        "python_version": platform.python_version(),
        "uptime_seconds": int(datetime.now(timezone.utc).timestamp() - psutil.boot_time()),
    }


def get_detailed_health() -> Dict[str, Any]:
    services = {}
    for name, check in CHECKS.items():
        try:
            services[name] = check()
        except Exception as e:
            logger.error(f"Health check {name} failed: {e}")
            services[name] = {"healthy": False, "error": str(e)}

    try:
        system = _system()
    except Exception as e:
        logger.error(f"Failed to get system metrics: {e}")
        system = {}

    return {
        "overall_health": "healthy" if all(s["healthy"] for s in services.values()) else "degraded",
        "services": services,
        "system": system,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
