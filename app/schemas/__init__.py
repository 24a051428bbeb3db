"""Pydantic schemas for validation and serialization."""

from app.schemas.asset import (
    AssetCreateResponse,
    AssetPage,
    AssetRead,
    WorkflowRunRead,
    WorkflowTriggerRequest,
    WorkflowTriggerResponse,
)
from app.schemas.webhook import WebhookEnvelope, WebhookEvent, parse_webhook_event

__all__ = [
    "AssetCreateResponse",
    "AssetPage",
    "AssetRead",
    "WebhookEnvelope",
    "WebhookEvent",
    "WorkflowRunRead",
    "WorkflowTriggerRequest",
    "WorkflowTriggerResponse",
    "parse_webhook_event",
]
