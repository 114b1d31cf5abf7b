"""
Artifact resolution for outbox items.

The document channel sends an export file that can be rebuilt from the
finished-game record if it was lost; the HTTP channel uploads the finished
record itself.
"""
from pathlib import Path
from typing import Optional, Protocol, Union
import logging

from matchrelay.core.exceptions import ArtifactUnavailable, PermanentSourceMissing
from matchrelay.models.outbox import DocumentArtifactRef, HttpArtifactRef, OutboxItem

logger = logging.getLogger(__name__)


class SourceRecordLookup(Protocol):
	def __call__(self, subject_id: str, partition: Optional[str]) -> Optional[bytes]:
		...


class ArtifactBuilder(Protocol):
	def __call__(self, record: bytes, override_id: Optional[int]) -> Path:
		...


_artifact_builder: Optional[ArtifactBuilder] = None


def register_artifact_builder(builder: Optional[ArtifactBuilder]):
	"""Install the export builder used to rebuild lost document artifacts"""
	global _artifact_builder
	_artifact_builder = builder


def get_artifact_builder() -> Optional[ArtifactBuilder]:
	return _artifact_builder


def ensure_within(path: Union[str, Path], root: Union[str, Path]) -> Path:
	"""Refuse artifact paths that escape their directory (``..``, absolute paths, symlinks)"""
	path = Path(path)
	root = Path(root).resolve()
	resolved = path.resolve()
	if resolved != root and root not in resolved.parents:
		raise ArtifactUnavailable(f"Refusing {path}: outside {root}")
	return path


def _path_component(value: str) -> str:
	if not value or value in (".", "..") or any(sep in value for sep in ("/", "\\", "\x00")):
		raise ArtifactUnavailable(f"Unsafe path component: {value!r}")
	return value


class FinishedRecordLookup:
	"""Reads ``finished/<season>/<gameId>.json``"""

	def __init__(self, finished_dir: Union[str, Path]):
		self.finished_dir = Path(finished_dir)

	def path_for(self, subject_id: str, partition: Optional[str]) -> Path:
		path = self.finished_dir / _path_component(partition or "") / f"{_path_component(subject_id)}.json"
		return ensure_within(path, self.finished_dir)

	def __call__(self, subject_id: str, partition: Optional[str]) -> Optional[bytes]:
		try:
			return self.path_for(subject_id, partition).read_bytes()
		except FileNotFoundError:
			return None


class DocumentArtifactResolver:
	def __init__(
			self,
			exports_dir: Union[str, Path],
			lookup: SourceRecordLookup,
			builder: Optional[ArtifactBuilder] = None
	):
		self.exports_dir = Path(exports_dir)
		self.lookup = lookup
		self.builder = builder

	def resolve(self, item: OutboxItem) -> Path:
		ref: DocumentArtifactRef = item.ref
		export_file = ensure_within(self.exports_dir / ref.export_file_name, self.exports_dir)
		if export_file.exists():
			return export_file

		game_id = item.key.subject_id
		record = self.lookup(game_id, ref.season)
		if record is None:
			path_for = getattr(self.lookup, "path_for", None)
			raise PermanentSourceMissing(path_for(game_id, ref.season) if path_for else f"{ref.season}/{game_id}")

		builder = self.builder or get_artifact_builder()
		if builder is None:
			raise ArtifactUnavailable(f"Export {ref.export_file_name} is missing and no artifact builder is registered")

		logger.info(f"Rebuilding export {ref.export_file_name} for game {game_id} from its finished record")
		try:
			rebuilt = Path(builder(record, ref.event_id))
		except Exception as e:
			raise ArtifactUnavailable(f"Rebuilding export {ref.export_file_name} failed: {e}") from e

		if not rebuilt.exists():
			raise ArtifactUnavailable(f"Artifact builder did not produce {rebuilt}")
		return rebuilt


class FinishedGameResolver:
	"""The finished-game JSON is uploaded verbatim; only files under finished_dir qualify"""

	def __init__(self, finished_dir: Union[str, Path]):
		self.finished_dir = Path(finished_dir)

	def resolve(self, item: OutboxItem) -> str:
		ref: HttpArtifactRef = item.ref
		finished_file = ensure_within(ref.finished_file_path, self.finished_dir)
		if not finished_file.exists():
			raise PermanentSourceMissing(finished_file)

		try:
			return finished_file.read_text(encoding="utf-8")
		except (OSError, UnicodeDecodeError) as e:
			raise ArtifactUnavailable(f"Read finished JSON failed: {e}") from e
