# Data factories for test data generation

from tests.support.factories.asset_factory import (
    create_asset_row,
    insert_asset,
    ready_event,
    track_ready_event,
    webhook_event,
)

__all__ = [
    "create_asset_row",
    "insert_asset",
    "webhook_event",
    "ready_event",
    "track_ready_event",
]
