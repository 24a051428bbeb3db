"""Asset routes.

- POST   /api/v1/assets            Create an asset and its direct upload
- GET    /api/v1/assets            Keyset-paginated listing (newest updated first)
- GET    /api/v1/assets/{asset_id} Read one asset
- DELETE /api/v1/assets/{asset_id} Delete an asset (thumbnail file cleaned up after)

All routes are scoped to the caller from X-Owner-Id.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.mux import MuxClient
from app.database import get_session
from app.exceptions import ClientError
from app.pagination import Cursor
from app.routes.dependencies import get_mux_client, get_owner_id
from app.schemas.asset import AssetCreateResponse, AssetPage, AssetRead
from app.services.asset_store import (
    create_asset,
    delete_asset,
    discard_thumbnail_file,
    get_asset,
    list_assets,
)

router = APIRouter(prefix="/api/v1/assets", tags=["assets"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AssetCreateResponse)
async def create_asset_upload(
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
    mux: MuxClient = Depends(get_mux_client),
) -> AssetCreateResponse:
    """Create a direct upload and the `waiting` asset that tracks it.

    The asset (and its upload token) is committed before the upload URL is
    returned, so no webhook can reference an unknown token.
    """
    upload = await mux.create_upload()
    asset = await create_asset(session, owner_id, upload.upload_id)
    await session.commit()

    return AssetCreateResponse(asset=AssetRead.model_validate(asset), upload_url=upload.url)


@router.get("", response_model=AssetPage)
async def list_owner_assets(
    limit: int = Query(default=20),
    cursor_id: uuid.UUID | None = Query(default=None),
    cursor_updated_at: datetime | None = Query(default=None),
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
) -> AssetPage:
    if (cursor_id is None) != (cursor_updated_at is None):
        raise ClientError("cursor_id and cursor_updated_at must be given together")

    cursor = None
    if cursor_id is not None and cursor_updated_at is not None:
        cursor = Cursor(id=cursor_id, updated_at=cursor_updated_at)

    items, next_cursor = await list_assets(session, owner_id, limit, cursor)
    return AssetPage(
        items=[AssetRead.model_validate(item) for item in items],
        next_cursor=next_cursor,
    )


@router.get("/{asset_id}", response_model=AssetRead)
async def read_asset(
    asset_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
) -> AssetRead:
    asset = await get_asset(session, asset_id, owner_id)
    return AssetRead.model_validate(asset)


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_asset(
    asset_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
) -> Response:
    thumbnail_ref = await delete_asset(session, asset_id, owner_id)
    await session.commit()

    if thumbnail_ref:
        background_tasks.add_task(discard_thumbnail_file, thumbnail_ref)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
