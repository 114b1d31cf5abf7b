# =====================================
# matchrelay/api/v1/outbox.py
# =====================================
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pathlib import Path
from typing import Optional
import logging

from matchrelay.core.exceptions import ArtifactUnavailable
from matchrelay.models.outbox import DocumentArtifactRef, HttpArtifactRef
from matchrelay.schemas.outbox import DocumentEnqueueRequest, HttpEnqueueRequest, OutboxItemResponse
from matchrelay.services.artifacts import ensure_within
from matchrelay.services.outbox_service import (
	OutboxService,
	get_document_outbox_service,
	get_finished_dir,
	get_http_outbox_service,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/document", response_model=OutboxItemResponse, status_code=status.HTTP_202_ACCEPTED)
def queue_document(
		payload: DocumentEnqueueRequest,
		service: OutboxService = Depends(get_document_outbox_service)
):
	"""Queue an export file for the Telegram channel"""
	ref = DocumentArtifactRef(
		export_file_name=payload.export_file_name,
		season=payload.season,
		event_id=payload.event_id,
	)
	item = service.enqueue(service.store.channel.key_for(payload.game_id), ref)
	return OutboxItemResponse.from_item(service.store.channel.name, item)


@router.post("/http", response_model=OutboxItemResponse, status_code=status.HTTP_202_ACCEPTED)
def queue_finished_game(
		payload: HttpEnqueueRequest,
		service: OutboxService = Depends(get_http_outbox_service),
		finished_dir: Path = Depends(get_finished_dir)
):
	"""Queue a finished-game JSON for the scoreboard server"""
	try:
		ensure_within(payload.finished_file_path, finished_dir)
	except ArtifactUnavailable as e:
		logger.warning(f"Rejected finished game {payload.game_id}: {e}")
		raise HTTPException(
			status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
			detail="finishedFilePath must be inside the finished directory"
		)

	ref = HttpArtifactRef(finished_file_path=payload.finished_file_path)
	item = service.enqueue(service.store.channel.key_for(payload.game_id, payload.season), ref)
	return OutboxItemResponse.from_item(service.store.channel.name, item)


def _service_for(
		channel: str,
		document: OutboxService = Depends(get_document_outbox_service),
		http: OutboxService = Depends(get_http_outbox_service)
) -> OutboxService:
	if channel == "document":
		return document
	if channel == "http":
		return http
	raise HTTPException(
		status_code=status.HTTP_404_NOT_FOUND,
		detail=f"Unknown channel: {channel}"
	)


@router.get("/{channel}/items/{game_id}", response_model=OutboxItemResponse)
def get_outbox_item(
		channel: str,
		game_id: str,
		season: Optional[str] = Query(None),
		service: OutboxService = Depends(_service_for)
):
	store = service.store
	if store.channel.partitioned and not season:
		raise HTTPException(
			status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
			detail="season is required for this channel"
		)

	item = store.get_by_key(store.channel.key_for(game_id, season))
	if item is None:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail="Outbox item not found"
		)

	return OutboxItemResponse.from_item(channel, item)
