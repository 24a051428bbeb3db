"""Asset and workflow API schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models import EncodingStatus, RunStatus, WorkflowKind
from app.pagination import Cursor


class AssetRead(BaseModel):
    """Public representation of an Asset (also the get-asset step snapshot)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    upload_token: str
    encoding_status: EncodingStatus
    external_asset_ref: str | None = None
    playback_ref: str | None = None
    track_ref: str | None = None
    track_status: str | None = None
    thumbnail_ref: str | None = None
    thumbnail_locator: str | None = None
    preview_locator: str | None = None
    duration: int = 0
    title: str | None = None
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class AssetPage(BaseModel):
    items: list[AssetRead]
    next_cursor: Cursor | None = Field(
        default=None,
        description="Cursor for the next page. Null when no more rows exist.",
    )


class AssetCreateResponse(BaseModel):
    asset: AssetRead
    upload_url: str


class WorkflowTriggerRequest(BaseModel):
    prompt: str | None = Field(default=None, min_length=1, max_length=1000)


class WorkflowRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: WorkflowKind
    asset_id: uuid.UUID
    status: RunStatus
    attempts: int
    error: str | None = None
    input: dict[str, Any] = {}
    completed_steps: list[str] = []
    created_at: datetime
    completed_at: datetime | None = None


class WorkflowTriggerResponse(BaseModel):
    run_id: uuid.UUID
    status: RunStatus
