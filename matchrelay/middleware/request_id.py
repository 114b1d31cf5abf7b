import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Tag every request with an id, reusing the caller's when it is sane"""

	async def dispatch(self, request: Request, call_next):
		incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
		request_id = incoming if 0 < len(incoming) <= MAX_REQUEST_ID_LENGTH else uuid.uuid4().hex
		request.state.request_id = request_id

		response = await call_next(request)
		response.headers[REQUEST_ID_HEADER] = request_id
		return response
