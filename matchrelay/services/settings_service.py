from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol, Union
import json
import logging
import os
import tempfile
import threading

from matchrelay.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# settings.json key -> DeliverySettings field
RUNTIME_KEYS = {
	"telegram_bot_token": "channel_token",
	"telegram_chat_id": "chat_id",
	"server_url": "http_base_url",
	"api_key": "api_key",
}


@dataclass(frozen=True)
class DeliverySettings:
	channel_token: str = ""
	chat_id: str = ""
	http_base_url: str = ""
	api_key: str = ""

	@property
	def document_configured(self) -> bool:
		return bool(self.channel_token.strip() and self.chat_id.strip())

	@property
	def http_configured(self) -> bool:
		return bool(self.http_base_url.strip() and self.api_key.strip())


class SettingsProvider(Protocol):
	def get_delivery_settings(self) -> DeliverySettings:
		...


class RuntimeSettingsRepository:
	"""
	Delivery credentials from the environment, overridable at runtime.

	Values written to ``settings.json`` (the operator's settings screen) win
	over the environment. A blank runtime value counts as unset.
	"""

	def __init__(self, path: Union[str, Path], defaults: Optional[Settings] = None):
		self.path = Path(path)
		self.defaults = defaults or default_settings
		self._lock = threading.Lock()

	@classmethod
	def from_settings(cls, settings: Optional[Settings] = None) -> "RuntimeSettingsRepository":
		settings = settings or default_settings
		return cls(settings.runtime_settings_file, settings)

	def get_delivery_settings(self) -> DeliverySettings:
		values = {
			"channel_token": self.defaults.TELEGRAM_BOT_TOKEN,
			"chat_id": self.defaults.TELEGRAM_CHAT_ID,
			"http_base_url": self.defaults.RASPI_BASE_URL,
			"api_key": self.defaults.RASPI_API_KEY,
		}
		for key, value in self._load().items():
			field = RUNTIME_KEYS.get(key)
			if field and isinstance(value, str) and value.strip():
				values[field] = value.strip()
		return DeliverySettings(**values)

	def update(self, **values: str) -> DeliverySettings:
		"""Persist runtime overrides, e.g. ``update(server_url="https://...")``"""
		unknown = set(values) - set(RUNTIME_KEYS)
		if unknown:
			raise ValueError(f"Unknown runtime settings: {sorted(unknown)}")

		with self._lock:
			current = self._load()
			current.update({key: value.strip() for key, value in values.items()})
			self._write(current)

		logger.info(f"Updated runtime settings: {sorted(values)}")
		return self.get_delivery_settings()

	def _load(self) -> Dict[str, object]:
		if not self.path.exists():
			return {}
		try:
			data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
		except (OSError, ValueError) as e:
			logger.warning(f"Ignoring unreadable runtime settings {self.path}: {e}")
			return {}
		return data if isinstance(data, dict) else {}

	def _write(self, data: Dict[str, object]):
		self.path.parent.mkdir(parents=True, exist_ok=True)
		fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
		with os.fdopen(fd, "w", encoding="utf-8") as tmp:
			json.dump(data, tmp, ensure_ascii=False, indent=2)
		os.replace(tmp_path, self.path)
