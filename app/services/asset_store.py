"""Asset store: durable, owner-scoped access to Asset rows.

Every read and write is scoped by (id, owner_id). A lookup that matches no row
raises NotFoundError instead of returning None, so cross-owner access fails
loudly rather than looking like an empty result.

Writes are targeted column UPDATEs (never load-modify-save of the full row) and
always bump updated_at, the listing sort key. Two workflows touching disjoint
columns of the same asset therefore cannot lose each other's updates.
"""

import uuid
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.catbox import CatboxClient
from app.exceptions import ClientError, NotFoundError
from app.models import Asset, EncodingStatus, utcnow
from app.pagination import Cursor, fetch_keyset_page

log = structlog.get_logger()

DEFAULT_TITLE = "Untitled"

# Columns that callers may set through update_asset_fields
MUTABLE_COLUMNS = frozenset(
    {
        "title",
        "description",
        "thumbnail_ref",
        "thumbnail_locator",
    }
)


async def create_asset(
    session: AsyncSession,
    owner_id: uuid.UUID,
    upload_token: str,
    title: str = DEFAULT_TITLE,
) -> Asset:
    """Create an asset in `waiting` for a freshly issued upload token.

    Args:
        session: Database session (caller owns the transaction)
        owner_id: Owning user
        upload_token: Provider upload id; must be stored before the client
            uploads, since every webhook correlates on it.
        title: Initial title

    Returns:
        The flushed Asset (id and timestamps populated)
    """
    now = utcnow()
    asset = Asset(
        owner_id=owner_id,
        upload_token=upload_token,
        encoding_status=EncodingStatus.WAITING,
        title=title,
        created_at=now,
        updated_at=now,
    )
    session.add(asset)
    await session.flush()

    log.info(
        "asset_created",
        asset_id=str(asset.id),
        owner_id=str(owner_id),
        upload_token=upload_token,
    )
    return asset


async def get_asset(session: AsyncSession, asset_id: uuid.UUID, owner_id: uuid.UUID) -> Asset:
    """Load an asset scoped by owner.

    Raises:
        NotFoundError: If the asset does not exist or belongs to another owner.
    """
    result = await session.execute(
        select(Asset).where(Asset.id == asset_id, Asset.owner_id == owner_id)
    )
    asset = result.scalar_one_or_none()
    if asset is None:
        log.warning("asset_not_found", asset_id=str(asset_id), owner_id=str(owner_id))
        raise NotFoundError("asset", asset_id)
    return asset


async def update_asset_fields(
    session: AsyncSession,
    asset_id: uuid.UUID,
    owner_id: uuid.UUID,
    **values: Any,
) -> None:
    """Set the given columns on one owner-scoped asset.

    Args:
        session: Database session
        asset_id: Asset id
        owner_id: Owning user
        **values: Column values; only MUTABLE_COLUMNS are accepted.

    Raises:
        ClientError: If a column outside MUTABLE_COLUMNS is given.
        NotFoundError: If no row matched (absent or other owner).
    """
    unknown = set(values) - MUTABLE_COLUMNS
    if unknown:
        raise ClientError(f"Columns not updatable: {sorted(unknown)}")

    result = await session.execute(
        update(Asset)
        .where(Asset.id == asset_id, Asset.owner_id == owner_id)
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:  # type: ignore[attr-defined]
        raise NotFoundError("asset", asset_id)

    log.info(
        "asset_fields_updated",
        asset_id=str(asset_id),
        columns=sorted(values),
    )


async def delete_asset(
    session: AsyncSession,
    asset_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> str | None:
    """Delete an owner's asset.

    Returns:
        The thumbnail storage key that was attached (for best-effort file
        cleanup by the caller), or None.

    Raises:
        NotFoundError: If the asset does not exist or belongs to another owner.
    """
    result = await session.execute(
        delete(Asset)
        .where(Asset.id == asset_id, Asset.owner_id == owner_id)
        .returning(Asset.thumbnail_ref)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError("asset", asset_id)

    log.info("asset_deleted", asset_id=str(asset_id), owner_id=str(owner_id))
    return row.thumbnail_ref


async def list_assets(
    session: AsyncSession,
    owner_id: uuid.UUID,
    limit: int,
    cursor: Cursor | None = None,
) -> tuple[list[Asset], Cursor | None]:
    """List an owner's assets newest-updated first (keyset pagination).

    Returns:
        (items, next_cursor); next_cursor is None on the last page.
    """
    return await fetch_keyset_page(
        session,
        select(Asset).where(Asset.owner_id == owner_id),
        updated_at_col=Asset.updated_at,
        id_col=Asset.id,
        limit=limit,
        cursor=cursor,
    )


async def discard_thumbnail_file(
    thumbnail_ref: str | None,
    storage: CatboxClient | None = None,
) -> None:
    """Best-effort deletion of a stored thumbnail file after its row is gone.

    Runs after the response (FastAPI BackgroundTasks). The row no longer
    references the file, so a failure only leaks storage; it is logged with
    the key and never raised.
    """
    if not thumbnail_ref:
        return

    owns_client = storage is None
    client = storage or CatboxClient()
    try:
        await client.delete_file(thumbnail_ref)
    except Exception as e:
        log.warning(
            "thumbnail_cleanup_failed",
            thumbnail_ref=thumbnail_ref,
            error_type=type(e).__name__,
            error=str(e),
        )
    finally:
        if owns_client:
            await client.close()
