"""
Transport clients for the two delivery channels.

Both report the outcome as a DeliveryResult instead of raising: network
errors, timeouts and non-success responses are all transient failures from
the outbox's point of view.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
	success: bool
	error_message: Optional[str] = None

	@classmethod
	def ok(cls) -> "DeliveryResult":
		return cls(success=True)

	@classmethod
	def failure(cls, message: str) -> "DeliveryResult":
		return cls(success=False, error_message=message)


def _describe(exc: Exception) -> str:
	message = str(exc)
	return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


class TelegramDocumentClient:
	"""Sends files through the Telegram Bot API ``sendDocument`` method"""

	def __init__(
			self,
			api_url: str = "https://api.telegram.org",
			connect_timeout: float = 10.0,
			read_timeout: float = 15.0,
			transport: Optional[httpx.BaseTransport] = None
	):
		self.api_url = api_url.rstrip("/")
		self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
		self.transport = transport

	def send(
			self,
			token: str,
			chat_id: str,
			file: Union[str, Path],
			content_type: str = "application/json"
	) -> DeliveryResult:
		"""
		Success means HTTP 2xx AND a Telegram body with ``"ok": true``.
		Telegram answers 200 with ``ok: false`` for some errors (e.g. a wrong chat_id).
		"""
		file = Path(file)
		if not token.strip():
			return DeliveryResult.failure("Telegram token is blank")
		if not chat_id.strip():
			return DeliveryResult.failure("Telegram chat_id is blank")
		if not file.exists():
			return DeliveryResult.failure(f"File does not exist: {file}")

		url = f"{self.api_url}/bot{token}/sendDocument"
		try:
			with httpx.Client(timeout=self.timeout, transport=self.transport) as client, file.open("rb") as document:
				response = client.post(
					url,
					data={"chat_id": chat_id},
					files={"document": (file.name, document, content_type)}
				)
		except (httpx.HTTPError, OSError) as e:
			logger.warning(f"Telegram sendDocument for {file.name} raised {type(e).__name__}")
			return DeliveryResult.failure(f"Telegram sendDocument failed: {_describe(e)}, file={file.name}, chat={chat_id}")

		if response.is_success and self._telegram_ok(response):
			logger.info(f"Sent {file.name} to Telegram chat {chat_id}")
			return DeliveryResult.ok()

		return DeliveryResult.failure(
			f"Telegram sendDocument failed: HTTP {response.status_code}, body={response.text}, "
			f"file={file.name}, chat={chat_id}"
		)

	@staticmethod
	def _telegram_ok(response: httpx.Response) -> bool:
		try:
			payload = response.json()
		except ValueError:
			return False
		return isinstance(payload, dict) and payload.get("ok") is True


class RaspiUploadClient:
	"""
	JSON ingest API of the scoreboard server.

	All requests carry ``X-Api-Key``; a successful answer looks like
	``{"status": "ok", "file": "relative/path.json"}``.
	"""

	FINISHED_GAME_PATH = "/api/upload-finished-game"

	def __init__(
			self,
			base_url: str,
			api_key: str,
			connect_timeout: float = 10.0,
			read_timeout: float = 15.0,
			transport: Optional[httpx.BaseTransport] = None
	):
		self.base_url = base_url.strip().rstrip("/")
		self.api_key = api_key.strip()
		self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
		self.transport = transport

	def upload(self, json_body: str) -> DeliveryResult:
		"""Upload one finished game"""
		return self._post_json(self.FINISHED_GAME_PATH, json_body)

	def _post_json(self, path: str, body: str) -> DeliveryResult:
		headers = {
			"Content-Type": "application/json; charset=utf-8",
			"Accept": "application/json",
			"X-Api-Key": self.api_key
		}
		try:
			with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
				response = client.post(self.base_url + path, content=body.encode("utf-8"), headers=headers)
		except httpx.HTTPError as e:
			logger.warning(f"POST {path} raised {type(e).__name__}")
			return DeliveryResult.failure(_describe(e))

		if not response.is_success:
			return DeliveryResult.failure(f"HTTP {response.status_code}: {response.text}")

		if not response.text.strip():
			return DeliveryResult.failure("Empty server response")

		try:
			payload = response.json()
		except ValueError:
			return DeliveryResult.failure(f"Malformed JSON response: {response.text}")

		if not isinstance(payload, dict):
			return DeliveryResult.failure(f"Malformed JSON response: {response.text}")

		status = payload.get("status", "")
		if status == "ok":
			logger.info(f"POST {path} stored as {payload.get('file')}")
			return DeliveryResult.ok()

		return DeliveryResult.failure(f"Server responded status='{status}', file='{payload.get('file')}'")
