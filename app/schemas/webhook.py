"""Encoding provider webhook payload schemas.

Defines Pydantic models for validating incoming provider webhook events as a
tagged union keyed by `type`. Each variant carries exactly the fields the
reconciler consumes; extra provider fields are ignored.

Parsing is two-phase:
    1. WebhookEnvelope: {type, data} only. Unknown types are ignored explicitly.
    2. parse_webhook_event(): validates known types against their variant, so a
       missing correlation field (upload_id, asset_id) is a validation error.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

ASSET_CREATED = "video.asset.created"
ASSET_READY = "video.asset.ready"
ASSET_ERRORED = "video.asset.errored"
ASSET_DELETED = "video.asset.deleted"
TRACK_READY = "video.asset.track.ready"

HANDLED_EVENT_TYPES = frozenset(
    {ASSET_CREATED, ASSET_READY, ASSET_ERRORED, ASSET_DELETED, TRACK_READY}
)


class WebhookEnvelope(BaseModel):
    """Outer shape shared by every provider event."""

    type: str = Field(..., min_length=1, max_length=100)
    data: dict[str, Any]


class PlaybackId(BaseModel):
    id: str = Field(..., min_length=1)
    policy: str | None = None


class AssetCreatedData(BaseModel):
    id: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    status: str | None = None


class AssetReadyData(BaseModel):
    id: str = Field(..., min_length=1)
    upload_id: str = Field(..., min_length=1)
    status: str | None = None
    playback_ids: list[PlaybackId] = []
    duration: float | None = Field(default=None, ge=0)


class AssetErroredData(BaseModel):
    upload_id: str = Field(..., min_length=1)
    id: str | None = None
    status: str | None = None


class AssetDeletedData(BaseModel):
    upload_id: str = Field(..., min_length=1)
    id: str | None = None


class TrackReadyData(BaseModel):
    """Track events correlate by provider asset id, not upload id."""

    id: str = Field(..., min_length=1)
    asset_id: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    type: str | None = None
    text_source: str | None = None


class AssetCreatedEvent(BaseModel):
    type: Literal["video.asset.created"]
    data: AssetCreatedData


class AssetReadyEvent(BaseModel):
    type: Literal["video.asset.ready"]
    data: AssetReadyData


class AssetErroredEvent(BaseModel):
    type: Literal["video.asset.errored"]
    data: AssetErroredData


class AssetDeletedEvent(BaseModel):
    type: Literal["video.asset.deleted"]
    data: AssetDeletedData


class TrackReadyEvent(BaseModel):
    type: Literal["video.asset.track.ready"]
    data: TrackReadyData


WebhookEvent = Annotated[
    Union[
        AssetCreatedEvent,
        AssetReadyEvent,
        AssetErroredEvent,
        AssetDeletedEvent,
        TrackReadyEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)


def parse_webhook_event(envelope: WebhookEnvelope) -> WebhookEvent:
    """Validate a handled envelope against its tagged variant.

    Raises:
        pydantic.ValidationError: If a required field of the variant is missing.
    """
    return _event_adapter.validate_python({"type": envelope.type, "data": envelope.data})
