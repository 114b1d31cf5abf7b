import redis
from typing import Optional
from matchrelay.config import settings
import logging

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
	"""Get the shared Redis client"""
	global redis_client

	if redis_client is None:
		redis_client = redis.Redis.from_url(
			settings.REDIS_URL,
			decode_responses=True,
			health_check_interval=30
		)
	return redis_client


def close_redis():
	"""Close Redis connections"""
	global redis_client

	if redis_client:
		redis_client.close()
		redis_client = None

	logger.info("Redis connections closed")


def check_redis_connection() -> bool:
	"""Check if Redis is healthy"""
	try:
		return bool(get_redis().ping())
	except Exception as e:
		logger.error(f"Redis health check failed: {e}")
		return False
