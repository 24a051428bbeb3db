"""Encoding provider webhook routes.

This module provides FastAPI routes for receiving provider webhook events:
- POST /api/v1/webhooks/mux - Main webhook endpoint

Pattern:
- Verify signature (fast, no DB, before any parsing)
- Parse envelope; ignore unknown event types explicitly
- Validate the tagged event variant
- Apply the event's patch (targeted UPDATE/DELETE) and commit
- Return 200 with the outcome; the provider retries on any non-2xx
"""

import time

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_mux_webhook_secret, get_webhook_tolerance_seconds
from app.database import get_session
from app.exceptions import ConfigurationError, WebhookSignatureError
from app.schemas.webhook import HANDLED_EVENT_TYPES, WebhookEnvelope, parse_webhook_event
from app.services.asset_store import discard_thumbnail_file
from app.services.upsert_gateway import PatchOutcome
from app.services.webhook_reconciler import reconcile_event, verify_webhook_signature

log = structlog.get_logger()
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "Mux-Signature"


def _webhook_secret() -> str:
    try:
        return get_mux_webhook_secret()
    except ConfigurationError:
        # Verification fails closed on an empty secret
        return ""


@router.post("/mux")
async def handle_mux_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Handle encoding provider webhook events.

    Returns:
        200 OK: Event applied, deleted, not matched (not_found) or ignored
        401 Unauthorized: Missing, stale or invalid signature
        400 Bad Request: Invalid payload or missing correlation field
        409 Conflict: track-ready for a provider asset id not bound yet (redelivered)
    """
    start_time = time.time()

    # Step 1: Verify signature
    signature = request.headers.get(SIGNATURE_HEADER, "")
    body = await request.body()

    try:
        verify_webhook_signature(
            body,
            signature,
            _webhook_secret(),
            tolerance_seconds=get_webhook_tolerance_seconds(),
        )
    except WebhookSignatureError as e:
        log.warning(
            "webhook_unauthorized",
            reason=str(e),
            signature=signature[:8] + "..." if signature else None,
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

    # Step 2: Parse envelope
    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except ValidationError as e:
        log.warning(
            "webhook_invalid_payload",
            error=str(e),
            body=body.decode(errors="replace")[:200],
        )
        raise HTTPException(status_code=400, detail="Invalid payload format") from e

    if envelope.type not in HANDLED_EVENT_TYPES:
        log.info("webhook_ignored", event_type=envelope.type)
        return JSONResponse(
            status_code=200, content={"status": "ignored", "event_type": envelope.type}
        )

    # Step 3: Validate the tagged variant
    try:
        event = parse_webhook_event(envelope)
    except ValidationError as e:
        log.warning(
            "webhook_missing_fields",
            event_type=envelope.type,
            error=str(e),
        )
        raise HTTPException(status_code=400, detail="Invalid payload format") from e

    # Step 4: Apply (ClientError → 400 and UncorrelatedEventError → 409 via app handlers)
    result = await reconcile_event(session, event)

    await session.commit()

    if result.outcome is PatchOutcome.DELETED and result.thumbnail_ref:
        background_tasks.add_task(discard_thumbnail_file, result.thumbnail_ref)

    elapsed_ms = (time.time() - start_time) * 1000
    log.info(
        "webhook_accepted",
        event_type=event.type,
        outcome=result.outcome.value,
        elapsed_ms=elapsed_ms,
    )

    return JSONResponse(
        status_code=200,
        content={"status": result.outcome.value, "event_type": event.type},
    )
