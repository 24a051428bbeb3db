"""Idempotent upsert gateway for webhook-driven asset transitions.

Applies an AssetPatch to the asset matching a provider correlation key, if and
only if that asset exists. A missing asset is reported as NOT_FOUND; no
placeholder row is ever created, so a late event for a deleted asset cannot
resurrect it.

Idempotency without a dedup table:
    Every patch sets columns to the values carried by the event (no increments,
    no appends), and is applied as a single targeted UPDATE. Applying the same
    patch twice yields the same row; patches from different event families
    touch disjoint columns and commute.
"""

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import case, delete, literal, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Asset, EncodingStatus, utcnow

log = structlog.get_logger()

ENCODING_STATUS_TYPE = Asset.__table__.c.encoding_status.type

# Columns a provider event may write
PATCHABLE_COLUMNS = frozenset(
    {
        "encoding_status",
        "external_asset_ref",
        "playback_ref",
        "thumbnail_locator",
        "preview_locator",
        "duration",
        "track_ref",
        "track_status",
    }
)


class LookupKey(enum.Enum):
    """Correlation column used to find the target asset."""

    UPLOAD_TOKEN = "upload_token"
    EXTERNAL_ASSET_REF = "external_asset_ref"


class PatchOutcome(enum.Enum):
    APPLIED = "applied"
    DELETED = "deleted"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class AssetPatch:
    """Partial state for one asset, addressed by a correlation key.

    Attributes:
        lookup: Which correlation column `key` refers to.
        key: Correlation value (upload token or provider asset id).
        values: Column → value. Total overwrite of each listed column.
        delete: Remove the row instead of updating it.
    """

    lookup: LookupKey
    key: str
    values: Mapping[str, Any] = field(default_factory=dict)
    delete: bool = False

    def __post_init__(self) -> None:
        unknown = set(self.values) - PATCHABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not patchable from provider events: {sorted(unknown)}")
        if self.delete and self.values:
            raise ValueError("A delete patch cannot carry column values")


@dataclass(frozen=True)
class PatchResult:
    outcome: PatchOutcome
    thumbnail_ref: str | None = None


def _lookup_column(lookup: LookupKey) -> Any:
    if lookup is LookupKey.UPLOAD_TOKEN:
        return Asset.upload_token
    return Asset.external_asset_ref


def _update_values(values: Mapping[str, Any]) -> dict[str, Any]:
    resolved: dict[str, Any] = dict(values)
    # A derived provider thumbnail never replaces a stored (uploaded/generated) one
    if "thumbnail_locator" in resolved:
        resolved["thumbnail_locator"] = case(
            (Asset.thumbnail_ref.is_(None), resolved["thumbnail_locator"]),
            else_=Asset.thumbnail_locator,
        )
    # preparing only advances from waiting; a late `created` never undoes ready/errored
    if resolved.get("encoding_status") is EncodingStatus.PREPARING:
        resolved["encoding_status"] = case(
            (
                Asset.encoding_status == EncodingStatus.WAITING,
                literal(EncodingStatus.PREPARING, ENCODING_STATUS_TYPE),
            ),
            else_=Asset.encoding_status,
        )
    resolved["updated_at"] = utcnow()
    return resolved


async def apply_patch(session: AsyncSession, patch: AssetPatch) -> PatchResult:
    """Apply a patch to the matching asset.

    Args:
        session: Database session (caller owns the transaction)
        patch: Patch produced by the webhook reconciler

    Returns:
        PatchResult. For deletions, thumbnail_ref carries the storage key of the
        removed row so the caller can clean the file up best-effort.
    """
    column = _lookup_column(patch.lookup)

    if patch.delete:
        result = await session.execute(
            delete(Asset)
            .where(column == patch.key)
            .returning(Asset.thumbnail_ref)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            log.info(
                "patch_target_not_found", lookup=patch.lookup.value, key=patch.key, delete=True
            )
            return PatchResult(PatchOutcome.NOT_FOUND)
        return PatchResult(PatchOutcome.DELETED, thumbnail_ref=row.thumbnail_ref)

    result = await session.execute(
        update(Asset)
        .where(column == patch.key)
        .values(**_update_values(patch.values))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:  # type: ignore[attr-defined]
        log.info("patch_target_not_found", lookup=patch.lookup.value, key=patch.key)
        return PatchResult(PatchOutcome.NOT_FOUND)

    return PatchResult(PatchOutcome.APPLIED)
