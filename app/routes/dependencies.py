"""Shared FastAPI dependencies for the asset and workflow routes."""

import uuid
from collections.abc import AsyncIterator

from fastapi import Header

from app.clients.mux import MuxClient
from app.exceptions import ClientError


async def get_owner_id(x_owner_id: str | None = Header(default=None)) -> uuid.UUID:
    """Resolve the calling owner from the X-Owner-Id header.

    Authentication happens upstream; this service trusts the header.

    Raises:
        ClientError: Header missing or not a UUID
    """
    if not x_owner_id:
        raise ClientError("X-Owner-Id header is required")
    try:
        return uuid.UUID(x_owner_id)
    except ValueError as e:
        raise ClientError("X-Owner-Id header must be a UUID") from e


async def get_mux_client() -> AsyncIterator[MuxClient]:
    client = MuxClient()
    try:
        yield client
    finally:
        await client.close()
