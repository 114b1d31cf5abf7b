"""
File-backed delivery outbox.

One JSON document per channel holds every queued item. All operations run a
whole-document read-modify-write inside one exclusive section: a per-instance
thread lock plus an ``fcntl`` lock on a sidecar ``.lock`` file, so Celery
worker processes sharing the data directory serialize as well.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, List, Optional, Tuple, Union
import fcntl
import json
import logging
import os
import shutil
import tempfile
import threading
import time

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from matchrelay.core.exceptions import CorruptPersistedState
from matchrelay.models.outbox import (
	CLAIMABLE_STATUSES,
	NonBlankStr,
	OutboxChannel,
	OutboxItem,
	OutboxKey,
	OutboxState,
	OutboxStatus,
	RefT,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1
LOCK_SUFFIX = ".lock"
MAX_ERROR_LENGTH = 1000
INTERRUPTED_ERROR = "Delivery interrupted"


def _now_millis() -> int:
	return int(time.time() * 1000)


def _next_timestamp(previous: int) -> int:
	"""updatedAt must strictly advance even when the clock does not"""
	return max(_now_millis(), previous + 1)


# =====================================
# Document shapes
# =====================================
@dataclass(frozen=True)
class Versioned:
	version: int
	items: list


@dataclass(frozen=True)
class LegacyArray:
	items: list
	version: int = 1


@dataclass(frozen=True)
class DoubleEncoded:
	inner: Union[Versioned, LegacyArray]


@dataclass(frozen=True)
class Unrecognized:
	value: Any


DocumentShape = Union[Versioned, LegacyArray, DoubleEncoded, Unrecognized]


def _looks_like_json(text: str) -> bool:
	return (text.startswith("{") and text.endswith("}")) or (text.startswith("[") and text.endswith("]"))


def classify_document(value: Any, unwrap: bool = True) -> DocumentShape:
	"""Tell apart the document layouts found in outbox files over time"""
	if isinstance(value, dict):
		version = value.get("version", STATE_VERSION)
		if not isinstance(version, int) or isinstance(version, bool):
			version = STATE_VERSION
		items = value.get("items")
		return Versioned(version=version, items=items if isinstance(items, list) else [])

	if isinstance(value, list):
		return LegacyArray(items=value)

	if unwrap and isinstance(value, str):
		text = value.strip()
		if _looks_like_json(text):
			try:
				inner = classify_document(json.loads(text), unwrap=False)
			except ValueError:
				return Unrecognized(value)
			if isinstance(inner, (Versioned, LegacyArray)):
				return DoubleEncoded(inner)

	return Unrecognized(value)


def normalize_document(text: str) -> Tuple[int, list]:
	"""Return (version, raw items) or raise CorruptPersistedState"""
	try:
		value = json.loads(text)
	except ValueError as e:
		raise CorruptPersistedState(f"invalid JSON: {e}") from e

	shape = classify_document(value)
	if isinstance(shape, DoubleEncoded):
		shape = shape.inner
	if isinstance(shape, Unrecognized):
		raise CorruptPersistedState(f"unrecognized document of type {type(shape.value).__name__}")

	return shape.version, shape.items


class _ItemRecord(BaseModel):
	"""Key and delivery fields of a persisted item; the ref is parsed separately"""
	subject_id: NonBlankStr = Field(alias="gameId")
	partition: Optional[str] = Field(default=None, alias="season")
	status: OutboxStatus = OutboxStatus.PENDING
	attempts: int = Field(default=0, ge=0)
	last_error: Optional[str] = Field(default=None, alias="lastError")
	updated_at: int = Field(default=0, alias="updatedAt")

	model_config = ConfigDict(populate_by_name=True)

	@field_validator("status", mode="before")
	@classmethod
	def unknown_status_is_pending(cls, v):
		if v is None:
			return OutboxStatus.PENDING
		try:
			return OutboxStatus(v)
		except ValueError:
			return OutboxStatus.PENDING


class OutboxStore(Generic[RefT]):
	"""Persisted single-writer queue for one delivery channel"""

	def __init__(self, path: Union[str, Path], channel: OutboxChannel):
		self.path = Path(path)
		self.channel = channel
		self._lock = threading.Lock()

	@classmethod
	def in_directory(cls, outbox_dir: Union[str, Path], channel: OutboxChannel) -> "OutboxStore":
		return cls(Path(outbox_dir) / channel.file_name, channel)

	# =====================================
	# Public operations
	# =====================================
	def get_all(self) -> List[OutboxItem]:
		with self._exclusive():
			return list(self._read().items.values())

	def get_by_key(self, key: Union[OutboxKey, str]) -> Optional[OutboxItem]:
		key = self._key(key)
		with self._exclusive():
			return self._read().items.get(key)

	def upsert_pending(self, key: Union[OutboxKey, str], ref: Any) -> OutboxItem:
		"""Queue (or re-queue) an item; last write wins"""
		key = self._key(key)
		if self.channel.partitioned and not (key.partition or "").strip():
			raise ValueError(f"{self.channel.name} outbox items need a season")
		if not isinstance(ref, self.channel.ref_type):
			ref = self.channel.ref_type.model_validate(ref)

		with self._exclusive():
			state = self._read()
			previous = state.items.pop(key, None)
			item = OutboxItem(
				key=key,
				ref=ref,
				status=OutboxStatus.PENDING,
				attempts=0,
				last_error=None,
				updated_at=_next_timestamp(previous.updated_at if previous else 0)
			)
			state.items[key] = item
			self._write(state)

		logger.info(f"Queued {self.channel.name} outbox item {key}")
		return item

	def try_mark_sending(self, key: Union[OutboxKey, str], max_attempts: Optional[int] = None) -> bool:
		"""Claim an item for delivery; only one caller can win.

		With ``max_attempts`` the cap is checked against the stored attempts, not the caller's snapshot.
		"""
		def claim(item: OutboxItem) -> Optional[OutboxItem]:
			if item.status not in CLAIMABLE_STATUSES:
				return None
			if max_attempts is not None and item.attempts >= max_attempts:
				return None
			return item.model_copy(update={
				"status": OutboxStatus.SENDING,
				"updated_at": _next_timestamp(item.updated_at)
			})

		return self._transition(self._key(key), claim) is not None

	def mark_sent(self, key: Union[OutboxKey, str]) -> Optional[OutboxItem]:
		key = self._key(key)

		def sent(item: OutboxItem) -> Optional[OutboxItem]:
			if item.status != OutboxStatus.SENDING:
				logger.warning(f"Ignoring mark_sent for {self.channel.name} item {key} in status {item.status.value}")
				return None
			return item.model_copy(update={
				"status": OutboxStatus.SENT,
				"last_error": None,
				"updated_at": _next_timestamp(item.updated_at)
			})

		return self._transition(key, sent)

	def mark_failed(self, key: Union[OutboxKey, str], error: str) -> Optional[OutboxItem]:
		key = self._key(key)

		def failed(item: OutboxItem) -> Optional[OutboxItem]:
			if item.status == OutboxStatus.SENT:
				logger.warning(f"Ignoring mark_failed for already sent {self.channel.name} item {key}")
				return None
			return item.model_copy(update={
				"status": OutboxStatus.FAILED,
				"attempts": item.attempts + 1,
				"last_error": (error or "Unknown error")[:MAX_ERROR_LENGTH],
				"updated_at": _next_timestamp(item.updated_at)
			})

		return self._transition(key, failed)

	def release_stale_claims(self, max_age_seconds: float) -> int:
		"""Fail items left in SENDING by a worker that died mid-delivery"""
		cutoff = _now_millis() - int(max_age_seconds * 1000)
		released = 0

		with self._exclusive():
			state = self._read()
			for key, item in list(state.items.items()):
				if item.status == OutboxStatus.SENDING and item.updated_at < cutoff:
					state.items[key] = item.model_copy(update={
						"status": OutboxStatus.FAILED,
						"attempts": item.attempts + 1,
						"last_error": INTERRUPTED_ERROR,
						"updated_at": _next_timestamp(item.updated_at)
					})
					released += 1
			if released:
				self._write(state)

		if released:
			logger.warning(f"Released {released} stale {self.channel.name} outbox claim(s)")
		return released

	def read_state(self) -> OutboxState:
		with self._exclusive():
			return self._read()

	def write_state(self, state: OutboxState):
		with self._exclusive():
			self._write(state)

	# =====================================
	# Internals
	# =====================================
	def _key(self, key: Union[OutboxKey, str]) -> OutboxKey:
		if isinstance(key, str):
			key = OutboxKey(key)
		return self.channel.key_for(*key)

	@contextmanager
	def _exclusive(self):
		with self._lock:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			lock_path = self.path.with_name(self.path.name + LOCK_SUFFIX)
			with lock_path.open("a+", encoding="utf-8") as handle:
				fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
				try:
					yield
				finally:
					fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

	def _transition(
			self,
			key: OutboxKey,
			transform: Callable[[OutboxItem], Optional[OutboxItem]]
	) -> Optional[OutboxItem]:
		with self._exclusive():
			state = self._read()
			current = state.items.get(key)
			if current is None:
				return None

			updated = transform(current)
			if updated is None:
				return None

			state.items[key] = updated
			self._write(state)
			return updated

	def _read(self) -> OutboxState:
		if not self.path.exists():
			return OutboxState(version=STATE_VERSION)

		raw = self.path.read_bytes()
		try:
			text = raw.decode("utf-8").strip()
			if not text:
				return OutboxState(version=STATE_VERSION)
			version, raw_items = normalize_document(text)
		except (UnicodeDecodeError, CorruptPersistedState) as e:
			self._quarantine(e)
			return OutboxState(version=STATE_VERSION)

		items = {}
		for obj in raw_items:
			item = self._item_from_json(obj)
			if item is not None:
				items[item.key] = item
		return OutboxState(version=version, items=items)

	def _write(self, state: OutboxState):
		document = {
			"version": STATE_VERSION,
			"items": [self._item_to_json(item) for item in state.items.values()]
		}
		content = json.dumps(document, ensure_ascii=False)

		fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
		try:
			with os.fdopen(fd, "w", encoding="utf-8") as tmp:
				tmp.write(content)
				tmp.flush()
				os.fsync(tmp.fileno())
			os.replace(tmp_path, self.path)
		except BaseException:
			try:
				os.unlink(tmp_path)
			except OSError:
				pass
			raise

	def _quarantine(self, error: Exception):
		"""Copy the unreadable file aside; raises when no copy could be made so nothing overwrites it"""
		backup = self.path.with_name(f"{self.path.stem}.bad.{_now_millis()}{self.path.suffix}")
		try:
			shutil.copyfile(self.path, backup)
		except OSError as e:
			logger.error(f"Could not quarantine outbox file {self.path} ({error}): {e}; leaving it in place")
			raise

		try:
			self.path.unlink()
		except OSError as e:
			# the copy exists, the next write replaces the original
			logger.warning(f"Could not remove quarantined outbox file {self.path}: {e}")
		logger.error(f"Outbox file {self.path} is unreadable ({error}); moved aside to {backup.name}, starting empty")

	def _item_to_json(self, item: OutboxItem) -> dict:
		doc = {"gameId": item.key.subject_id}
		if self.channel.partitioned:
			doc["season"] = item.key.partition
		doc.update(item.ref.model_dump(by_alias=True))
		doc.update({
			"status": item.status.value,
			"attempts": item.attempts,
			"lastError": item.last_error,
			"updatedAt": item.updated_at
		})
		return doc

	def _item_from_json(self, obj: Any) -> Optional[OutboxItem]:
		if not isinstance(obj, dict):
			return None
		try:
			record = _ItemRecord.model_validate(obj)
			ref = self.channel.ref_type.model_validate(obj)
		except ValidationError as e:
			logger.debug(f"Dropping malformed {self.channel.name} outbox entry: {e.error_count()} error(s)")
			return None

		if self.channel.partitioned and not (record.partition or "").strip():
			return None

		return OutboxItem(
			key=self.channel.key_for(record.subject_id, record.partition),
			ref=ref,
			status=record.status,
			attempts=record.attempts,
			last_error=record.last_error,
			updated_at=record.updated_at
		)
