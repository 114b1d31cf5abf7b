from dataclasses import dataclass, field
from typing import Annotated, Dict, Generic, NamedTuple, Optional, Type, TypeVar
import enum

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

RefT = TypeVar("RefT")


def _not_blank(value: str) -> str:
	if not value.strip():
		raise ValueError("must not be blank")
	return value


NonBlankStr = Annotated[str, AfterValidator(_not_blank)]


def _plain_name(value: str) -> str:
	if value in (".", "..") or any(sep in value for sep in ("/", "\\", "\x00")):
		raise ValueError("must be a plain file or directory name")
	return value


# one path component: no separators, never "." or ".."
PathNameStr = Annotated[str, AfterValidator(_not_blank), AfterValidator(_plain_name)]


class OutboxStatus(str, enum.Enum):
	PENDING = "PENDING"
	SENDING = "SENDING"
	SENT = "SENT"
	FAILED = "FAILED"


CLAIMABLE_STATUSES = (OutboxStatus.PENDING, OutboxStatus.FAILED)


class OutboxKey(NamedTuple):
	"""Game id, optionally paired with a season"""
	subject_id: str
	partition: Optional[str] = None

	def __str__(self):
		if self.partition is None:
			return self.subject_id
		return f"{self.partition}/{self.subject_id}"


class DocumentArtifactRef(BaseModel):
	"""Export file sent to the document channel, plus what is needed to rebuild it"""
	export_file_name: PathNameStr = Field(alias="exportFileName")
	season: PathNameStr
	event_id: Optional[int] = Field(default=None, alias="eventId")

	model_config = ConfigDict(populate_by_name=True, frozen=True)


class HttpArtifactRef(BaseModel):
	"""Finished-game JSON uploaded as-is to the HTTP ingest endpoint"""
	finished_file_path: NonBlankStr = Field(alias="finishedFilePath")

	model_config = ConfigDict(populate_by_name=True, frozen=True)


class OutboxItem(BaseModel, Generic[RefT]):
	key: OutboxKey
	ref: RefT
	status: OutboxStatus = OutboxStatus.PENDING
	attempts: int = Field(default=0, ge=0)
	last_error: Optional[str] = None
	updated_at: int = 0  # epoch millis

	model_config = ConfigDict(frozen=True)

	def is_eligible(self, max_attempts: int) -> bool:
		return self.status in CLAIMABLE_STATUSES and self.attempts < max_attempts


@dataclass
class OutboxState(Generic[RefT]):
	version: int = 1
	items: Dict[OutboxKey, OutboxItem] = field(default_factory=dict)


@dataclass(frozen=True)
class OutboxChannel:
	"""
	Layout of one outbox file.

	``partitioned`` channels key items on (game id, season) and persist the
	season as a key field; the others key on the game id alone.
	"""
	name: str
	file_name: str
	ref_type: Type[BaseModel]
	partitioned: bool = False

	def key_for(self, subject_id: str, partition: Optional[str] = None) -> OutboxKey:
		return OutboxKey(subject_id, partition if self.partitioned else None)


DOCUMENT_CHANNEL = OutboxChannel(
	name="document",
	file_name="outbox.json",
	ref_type=DocumentArtifactRef,
)

HTTP_CHANNEL = OutboxChannel(
	name="http",
	file_name="http_outbox.json",
	ref_type=HttpArtifactRef,
	partitioned=True,
)
