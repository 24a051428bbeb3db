"""Encoding provider webhook reconciler.

This module maps provider lifecycle events onto Asset transitions:
- HMAC-SHA256 signature verification (precondition, before any parsing)
- Pure event → AssetPatch functions, one per event kind
- A single idempotent apply step (app.services.upsert_gateway)

Event kinds are independent partial transitions:

    created      upload_token        external_asset_ref, encoding_status=preparing
                                     (status only advances from waiting)
    ready        upload_token        encoding_status=ready, playback_ref, locators, duration
    errored      upload_token        encoding_status=errored
    deleted      upload_token        row removed
    track-ready  external_asset_ref  track_ref, track_status

`ready` and `track-ready` come from different provider subsystems with no
ordering guarantee; they write disjoint columns, so either order converges.
A track-ready that arrives before created/ready has bound the provider asset
id is rejected (UncorrelatedEventError, 409) so the provider redelivers it.
A late `created` never moves an asset back from ready/errored to preparing.
"""

import hashlib
import hmac
import time
from collections.abc import Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.mux import preview_locator_for, thumbnail_locator_for
from app.exceptions import ClientError, UncorrelatedEventError, WebhookSignatureError
from app.models import EncodingStatus
from app.schemas.webhook import (
    AssetCreatedEvent,
    AssetDeletedEvent,
    AssetErroredEvent,
    AssetReadyEvent,
    TrackReadyEvent,
    WebhookEvent,
)
from app.services.upsert_gateway import (
    AssetPatch,
    LookupKey,
    PatchOutcome,
    PatchResult,
    apply_patch,
)

log = structlog.get_logger()


def duration_to_ms(duration: float | None) -> int:
    """Normalize a provider duration in seconds to integer milliseconds."""
    if not duration:
        return 0
    return round(duration * 1000)


def _parse_signature_header(header: str) -> tuple[str, list[str]]:
    timestamp = ""
    signatures: list[str] = []
    for part in header.split(","):
        name, _, value = part.strip().partition("=")
        if name == "t":
            timestamp = value
        elif name == "v1":
            signatures.append(value)
    return timestamp, signatures


def verify_webhook_signature(
    body: bytes,
    signature_header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Verify a provider webhook signature.

    Header format: ``t=<unix seconds>,v1=<hex hmac>``. The signed payload is
    ``"<t>.<raw body>"`` with HMAC-SHA256 under the shared secret.

    Args:
        body: Raw request body (bytes, not re-serialized JSON)
        signature_header: Value of the Mux-Signature header
        secret: Shared webhook secret
        tolerance_seconds: Maximum accepted timestamp age
        now: Current unix time (for tests)

    Raises:
        WebhookSignatureError: Missing secret (fail closed), malformed header,
            stale timestamp, or no matching signature.

    Security:
        Uses constant-time comparison to prevent timing attacks
    """
    if not secret:
        log.warning("webhook_secret_not_configured")
        raise WebhookSignatureError("Webhook secret not configured")

    if not signature_header:
        raise WebhookSignatureError("Missing signature header")

    timestamp, signatures = _parse_signature_header(signature_header)
    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    try:
        signed_at = int(timestamp)
    except ValueError as e:
        raise WebhookSignatureError("Malformed signature timestamp") from e

    current = time.time() if now is None else now
    if abs(current - signed_at) > tolerance_seconds:
        log.warning(
            "webhook_signature_stale", signed_at=signed_at, tolerance_seconds=tolerance_seconds
        )
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    signed_payload = timestamp.encode() + b"." + body
    computed = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()

    if not any(hmac.compare_digest(computed, candidate) for candidate in signatures):
        log.warning(
            "webhook_signature_verification_failed",
            signature_provided=signatures[0][:8] + "...",
            computed_signature=computed[:8] + "...",
        )
        raise WebhookSignatureError("Invalid webhook signature")


def patch_for_created(event: AssetCreatedEvent) -> AssetPatch:
    return AssetPatch(
        lookup=LookupKey.UPLOAD_TOKEN,
        key=event.data.upload_id,
        values={
            "external_asset_ref": event.data.id,
            "encoding_status": EncodingStatus.PREPARING,
        },
    )


def patch_for_ready(event: AssetReadyEvent) -> AssetPatch:
    """Ready carries everything needed to make the asset playable.

    Raises:
        ClientError: If no playback id is present (ready implies playback_ref).
    """
    if not event.data.playback_ids:
        raise ClientError("No playback ID found in payload")

    playback_ref = event.data.playback_ids[0].id
    return AssetPatch(
        lookup=LookupKey.UPLOAD_TOKEN,
        key=event.data.upload_id,
        values={
            "encoding_status": EncodingStatus.READY,
            "external_asset_ref": event.data.id,
            "playback_ref": playback_ref,
            "thumbnail_locator": thumbnail_locator_for(playback_ref),
            "preview_locator": preview_locator_for(playback_ref),
            "duration": duration_to_ms(event.data.duration),
        },
    )


def patch_for_errored(event: AssetErroredEvent) -> AssetPatch:
    return AssetPatch(
        lookup=LookupKey.UPLOAD_TOKEN,
        key=event.data.upload_id,
        values={"encoding_status": EncodingStatus.ERRORED},
    )


def patch_for_deleted(event: AssetDeletedEvent) -> AssetPatch:
    return AssetPatch(lookup=LookupKey.UPLOAD_TOKEN, key=event.data.upload_id, delete=True)


def patch_for_track_ready(event: TrackReadyEvent) -> AssetPatch:
    return AssetPatch(
        lookup=LookupKey.EXTERNAL_ASSET_REF,
        key=event.data.asset_id,
        values={
            "track_ref": event.data.id,
            "track_status": event.data.status,
        },
    )


PATCH_BUILDERS: dict[type, Callable[[Any], AssetPatch]] = {
    AssetCreatedEvent: patch_for_created,
    AssetReadyEvent: patch_for_ready,
    AssetErroredEvent: patch_for_errored,
    AssetDeletedEvent: patch_for_deleted,
    TrackReadyEvent: patch_for_track_ready,
}


def build_patch(event: WebhookEvent) -> AssetPatch:
    """Translate a validated event into the AssetPatch it implies (pure)."""
    return PATCH_BUILDERS[type(event)](event)


async def reconcile_event(session: AsyncSession, event: WebhookEvent) -> PatchResult:
    """Apply one provider event to the asset store.

    Args:
        session: Database session (caller commits)
        event: Validated webhook event

    Returns:
        PatchResult (applied / deleted / not_found)

    Raises:
        ClientError: If the event is missing data its transition requires.
        UncorrelatedEventError: If an event keyed on the provider asset id
            arrived before created/ready bound that id to an asset.
    """
    patch = build_patch(event)
    result = await apply_patch(session, patch)

    if result.outcome is PatchOutcome.NOT_FOUND and patch.lookup is LookupKey.EXTERNAL_ASSET_REF:
        log.warning(
            "webhook_uncorrelated",
            event_type=event.type,
            external_asset_ref=patch.key,
        )
        raise UncorrelatedEventError(patch.lookup.value, patch.key)

    log.info(
        "webhook_reconciled",
        event_type=event.type,
        lookup=patch.lookup.value,
        key=patch.key,
        outcome=result.outcome.value,
    )
    return result
