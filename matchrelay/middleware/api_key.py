from datetime import datetime, timezone
from typing import Iterable, List, Optional
import logging
import secrets

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from matchrelay.config import settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
OPEN_PATHS = ("/", "/health", "/health/detailed")


class APIKeyMiddleware(BaseHTTPMiddleware):
	"""Only producers holding one of API_KEYS may queue or inspect outbox items"""

	def __init__(self, app, exclude_paths: Optional[List[str]] = None, api_keys: Optional[Iterable[str]] = None):
		super().__init__(app)
		self.exclude_paths = tuple(exclude_paths or ())
		keys = settings.API_KEYS if api_keys is None else api_keys
		self.api_keys = [key for key in keys if key]

	def is_open(self, path: str) -> bool:
		return path in OPEN_PATHS or path.startswith(self.exclude_paths)

	async def dispatch(self, request: Request, call_next):
		if self.is_open(request.url.path):
			return await call_next(request)

		presented = request.headers.get(API_KEY_HEADER) or request.query_params.get("api_key")
		if presented and self.validate_api_key(presented):
			return await call_next(request)

		client = request.client.host if request.client else "unknown"
		logger.warning(f"Rejected {request.method} {request.url.path} from {client}: bad or missing API key")
		return JSONResponse(
			status_code=status.HTTP_401_UNAUTHORIZED,
			content={
				"error": "Unauthorized",
				"message": "Invalid or missing API key",
				"timestamp": datetime.now(timezone.utc).isoformat()
			},
			headers={"WWW-Authenticate": 'ApiKey realm="matchrelay"'}
		)

	def validate_api_key(self, api_key: str) -> bool:
		return any(secrets.compare_digest(api_key, known) for known in self.api_keys)
