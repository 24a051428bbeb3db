"""Tests for the webhook reconciler.

Test Coverage:
- Signature verification (valid, tampered, stale, malformed, missing secret)
- Pure event → AssetPatch mapping for all five event kinds
- Idempotence: delivering an event twice equals delivering it once
- Commutativity of ready and track-ready, and of created and ready
- Track-ready before its asset id is bound is rejected for redelivery
- Deleted events never resurrect an asset
"""

import hashlib
import hmac
import time

import pytest
from sqlalchemy import select

from app.clients.mux import preview_locator_for, thumbnail_locator_for
from app.exceptions import ClientError, UncorrelatedEventError, WebhookSignatureError
from app.models import Asset, EncodingStatus
from app.services.upsert_gateway import LookupKey, PatchOutcome
from app.services.webhook_reconciler import (
    build_patch,
    duration_to_ms,
    reconcile_event,
    verify_webhook_signature,
)
from tests.support.factories import insert_asset, ready_event, track_ready_event, webhook_event

SECRET = "test_webhook_secret_abc123"


def sign(body: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    t = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{t}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={t},v1={digest}"


def asset_state(asset: Asset) -> dict:
    """Observable asset state, excluding the updated_at bookkeeping column."""
    return {
        column.key: getattr(asset, column.key)
        for column in Asset.__table__.columns
        if column.key != "updated_at"
    }


async def load_by_token(session, upload_token: str) -> Asset | None:
    session.expire_all()
    result = await session.execute(select(Asset).where(Asset.upload_token == upload_token))
    return result.scalar_one_or_none()


async def deliver_to_fresh_asset(session_factory, owner_id, upload_token: str, events) -> dict:
    """Deliver events to a new waiting asset the way the provider does.

    An event rejected as uncorrelated is redelivered after the others, and the
    resulting state is returned without identity columns.
    """
    async with session_factory() as session:
        await insert_asset(session, owner_id, upload_token=upload_token)
        pending = list(events)
        redeliveries = 0
        while pending:
            event = pending.pop(0)
            try:
                await reconcile_event(session, event)
            except UncorrelatedEventError:
                await session.rollback()
                redeliveries += 1
                assert redeliveries <= len(events), "event never correlated"
                pending.append(event)
                continue
            await session.commit()
        state = asset_state(await load_by_token(session, upload_token))
    for key in ("id", "upload_token", "external_asset_ref", "created_at"):
        state.pop(key)
    return state


class TestVerifyWebhookSignature:
    def test_valid_signature_passes(self):
        body = b'{"type": "video.asset.ready"}'
        verify_webhook_signature(body, sign(body), SECRET)

    def test_tampered_body_rejected(self):
        body = b'{"type": "video.asset.ready"}'
        header = sign(body)

        with pytest.raises(WebhookSignatureError, match="Invalid webhook signature"):
            verify_webhook_signature(body + b" ", header, SECRET)

    def test_wrong_secret_rejected(self):
        body = b"{}"
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(body, sign(body, secret="other"), SECRET)

    def test_stale_timestamp_rejected(self):
        body = b"{}"
        header = sign(body, timestamp=1_000_000)

        with pytest.raises(WebhookSignatureError, match="tolerance"):
            verify_webhook_signature(body, header, SECRET, tolerance_seconds=300, now=1_000_301)

    def test_timestamp_within_tolerance_accepted(self):
        body = b"{}"
        header = sign(body, timestamp=1_000_000)
        verify_webhook_signature(body, header, SECRET, tolerance_seconds=300, now=1_000_299)

    def test_any_matching_v1_signature_accepted(self):
        body = b"{}"
        t = int(time.time())
        valid = sign(body, timestamp=t).split("v1=")[1]
        header = f"t={t},v1=deadbeef,v1={valid}"

        verify_webhook_signature(body, header, SECRET)

    @pytest.mark.parametrize("header", ["", "garbage", "t=123", "v1=abc", "t=abc,v1=abc"])
    def test_malformed_header_rejected(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(b"{}", header, SECRET)

    def test_missing_secret_fails_closed(self):
        body = b"{}"
        with pytest.raises(WebhookSignatureError, match="not configured"):
            verify_webhook_signature(body, sign(body, secret=""), "")

    def test_signature_error_is_client_error(self):
        with pytest.raises(ClientError):
            verify_webhook_signature(b"{}", "", SECRET)


class TestBuildPatch:
    def test_created_sets_external_ref_and_preparing(self):
        patch = build_patch(webhook_event("video.asset.created", id="ext1", upload_id="tok1"))

        assert patch.lookup is LookupKey.UPLOAD_TOKEN
        assert patch.key == "tok1"
        assert patch.values == {
            "external_asset_ref": "ext1",
            "encoding_status": EncodingStatus.PREPARING,
        }

    def test_ready_derives_locators_and_duration(self):
        patch = build_patch(ready_event(upload_id="tok1", playback_id="pb1", duration=12.5))

        assert patch.key == "tok1"
        assert patch.values["encoding_status"] is EncodingStatus.READY
        assert patch.values["playback_ref"] == "pb1"
        assert patch.values["external_asset_ref"] == "ext1"
        assert patch.values["thumbnail_locator"] == "https://image.mux.com/pb1/thumbnail.jpg"
        assert patch.values["preview_locator"] == "https://image.mux.com/pb1/animated.gif"
        assert patch.values["duration"] == 12500

    def test_ready_without_duration_normalizes_to_zero(self):
        patch = build_patch(ready_event(duration=None))
        assert patch.values["duration"] == 0

    def test_ready_without_playback_id_is_client_error(self):
        event = webhook_event("video.asset.ready", id="ext1", upload_id="tok1", playback_ids=[])

        with pytest.raises(ClientError, match="playback"):
            build_patch(event)

    def test_errored_sets_status_only(self):
        patch = build_patch(webhook_event("video.asset.errored", upload_id="tok1"))
        assert patch.values == {"encoding_status": EncodingStatus.ERRORED}

    def test_deleted_is_delete_patch(self):
        patch = build_patch(webhook_event("video.asset.deleted", upload_id="tok1", id="ext1"))

        assert patch.delete is True
        assert patch.values == {}

    def test_track_ready_correlates_by_external_ref(self):
        patch = build_patch(track_ready_event(asset_id="ext1", track_id="trk1"))

        assert patch.lookup is LookupKey.EXTERNAL_ASSET_REF
        assert patch.key == "ext1"
        assert patch.values == {"track_ref": "trk1", "track_status": "ready"}

    def test_build_patch_is_pure(self):
        event = ready_event()
        assert build_patch(event) == build_patch(event)


class TestLocatorHelpers:
    def test_locators_are_deterministic(self):
        assert thumbnail_locator_for("abc") == "https://image.mux.com/abc/thumbnail.jpg"
        assert preview_locator_for("abc") == "https://image.mux.com/abc/animated.gif"

    @pytest.mark.parametrize(
        "seconds,expected",
        [(None, 0), (0, 0), (12.5, 12500), (1.0004, 1000), (0.0006, 1)],
    )
    def test_duration_to_ms(self, seconds, expected):
        assert duration_to_ms(seconds) == expected


class TestReconcileEvent:
    @pytest.mark.asyncio
    async def test_ready_scenario(self, async_session, owner_id):
        await insert_asset(async_session, owner_id, upload_token="tok1")

        result = await reconcile_event(async_session, ready_event())
        await async_session.commit()

        assert result.outcome is PatchOutcome.APPLIED
        asset = await load_by_token(async_session, "tok1")
        assert asset.encoding_status is EncodingStatus.READY
        assert asset.playback_ref == "pb1"
        assert asset.duration == 12500
        assert asset.thumbnail_locator == "https://image.mux.com/pb1/thumbnail.jpg"
        assert asset.preview_locator == "https://image.mux.com/pb1/animated.gif"

    @pytest.mark.asyncio
    async def test_unknown_upload_token_reports_not_found(self, async_session):
        result = await reconcile_event(async_session, ready_event(upload_id="missing"))

        assert result.outcome is PatchOutcome.NOT_FOUND
        assert await load_by_token(async_session, "missing") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_factory",
        [
            lambda: webhook_event("video.asset.created", id="ext1", upload_id="tok1"),
            lambda: ready_event(),
            lambda: webhook_event("video.asset.errored", upload_id="tok1"),
            lambda: track_ready_event(),
        ],
    )
    async def test_duplicate_delivery_is_idempotent(self, async_session, owner_id, event_factory):
        await insert_asset(async_session, owner_id, upload_token="tok1", external_asset_ref="ext1")

        await reconcile_event(async_session, event_factory())
        await async_session.commit()
        once = asset_state(await load_by_token(async_session, "tok1"))

        await reconcile_event(async_session, event_factory())
        await async_session.commit()
        twice = asset_state(await load_by_token(async_session, "tok1"))

        assert once == twice

    @pytest.mark.asyncio
    async def test_ready_and_track_ready_commute(self, session_factory, owner_id):
        """Neither row knows its provider asset id up front; track-ready may come first."""
        ready_first = await deliver_to_fresh_asset(
            session_factory,
            owner_id,
            "tok_a",
            [ready_event(upload_id="tok_a", asset_id="ext_a"), track_ready_event(asset_id="ext_a")],
        )
        track_first = await deliver_to_fresh_asset(
            session_factory,
            owner_id,
            "tok_b",
            [track_ready_event(asset_id="ext_b"), ready_event(upload_id="tok_b", asset_id="ext_b")],
        )

        assert ready_first == track_first
        assert ready_first["track_ref"] == "trk1"
        assert ready_first["playback_ref"] == "pb1"
        assert ready_first["encoding_status"] is EncodingStatus.READY

    @pytest.mark.asyncio
    async def test_created_and_ready_commute(self, session_factory, owner_id):
        created_first = await deliver_to_fresh_asset(
            session_factory,
            owner_id,
            "tok_a",
            [
                webhook_event("video.asset.created", id="ext_a", upload_id="tok_a"),
                ready_event(upload_id="tok_a", asset_id="ext_a"),
            ],
        )
        ready_first = await deliver_to_fresh_asset(
            session_factory,
            owner_id,
            "tok_b",
            [
                ready_event(upload_id="tok_b", asset_id="ext_b"),
                webhook_event("video.asset.created", id="ext_b", upload_id="tok_b"),
            ],
        )

        assert created_first == ready_first
        assert ready_first["encoding_status"] is EncodingStatus.READY

    @pytest.mark.asyncio
    async def test_track_ready_before_binding_is_rejected(self, async_session, owner_id):
        await insert_asset(async_session, owner_id, upload_token="tok1")

        with pytest.raises(UncorrelatedEventError) as exc_info:
            await reconcile_event(async_session, track_ready_event(asset_id="ext1"))

        assert exc_info.value.key == "ext1"
        assert (await load_by_token(async_session, "tok1")).track_ref is None

    @pytest.mark.asyncio
    async def test_deleted_then_late_events_do_not_resurrect(self, async_session, owner_id):
        await insert_asset(async_session, owner_id, upload_token="tok1", external_asset_ref="ext1")

        deleted = await reconcile_event(
            async_session, webhook_event("video.asset.deleted", upload_id="tok1")
        )
        await async_session.commit()
        assert deleted.outcome is PatchOutcome.DELETED

        late_ready = await reconcile_event(async_session, ready_event())
        with pytest.raises(UncorrelatedEventError):
            await reconcile_event(async_session, track_ready_event())
        duplicate_delete = await reconcile_event(
            async_session, webhook_event("video.asset.deleted", upload_id="tok1")
        )
        await async_session.commit()

        assert late_ready.outcome is PatchOutcome.NOT_FOUND
        assert duplicate_delete.outcome is PatchOutcome.NOT_FOUND
        assert await load_by_token(async_session, "tok1") is None

    @pytest.mark.asyncio
    async def test_deleted_returns_thumbnail_ref_for_cleanup(self, async_session, owner_id):
        await insert_asset(async_session, owner_id, upload_token="tok1", thumbnail_ref="abc123.png")

        result = await reconcile_event(
            async_session, webhook_event("video.asset.deleted", upload_id="tok1")
        )

        assert result.outcome is PatchOutcome.DELETED
        assert result.thumbnail_ref == "abc123.png"

    @pytest.mark.asyncio
    async def test_ready_keeps_stored_thumbnail(self, async_session, owner_id):
        await insert_asset(
            async_session,
            owner_id,
            upload_token="tok1",
            thumbnail_ref="abc123.png",
            thumbnail_locator="https://files.catbox.moe/abc123.png",
        )

        await reconcile_event(async_session, ready_event())
        await async_session.commit()

        asset = await load_by_token(async_session, "tok1")
        assert asset.thumbnail_locator == "https://files.catbox.moe/abc123.png"
        assert asset.preview_locator == "https://image.mux.com/pb1/animated.gif"
