# =====================================
# matchrelay/schemas/outbox.py
# =====================================
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from matchrelay.models.outbox import NonBlankStr, OutboxItem, OutboxStatus, PathNameStr


class DocumentEnqueueRequest(BaseModel):
	game_id: PathNameStr = Field(alias="gameId")
	season: PathNameStr
	export_file_name: PathNameStr = Field(alias="exportFileName")
	event_id: Optional[int] = Field(default=None, alias="eventId")

	model_config = ConfigDict(populate_by_name=True)


class HttpEnqueueRequest(BaseModel):
	game_id: PathNameStr = Field(alias="gameId")
	season: PathNameStr
	finished_file_path: NonBlankStr = Field(alias="finishedFilePath")

	model_config = ConfigDict(populate_by_name=True)


class OutboxItemResponse(BaseModel):
	channel: str
	game_id: str
	season: Optional[str] = None
	status: OutboxStatus
	attempts: int
	last_error: Optional[str] = None
	updated_at: int
	ref: dict

	@classmethod
	def from_item(cls, channel: str, item: OutboxItem) -> "OutboxItemResponse":
		season = item.key.partition
		if season is None:
			season = getattr(item.ref, "season", None)

		return cls(
			channel=channel,
			game_id=item.key.subject_id,
			season=season,
			status=item.status,
			attempts=item.attempts,
			last_error=item.last_error,
			updated_at=item.updated_at,
			ref=item.ref.model_dump(by_alias=True),
		)
