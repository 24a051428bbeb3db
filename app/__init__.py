"""Media Asset Pipeline.

This package contains the FastAPI service that reconciles encoding provider
webhooks into the asset store, and the worker that runs the durable AI
enrichment workflows (title, description, thumbnail) for those assets.
"""

from app.database import get_session, get_session_factory
from app.models import Asset, Base, WorkflowRun, WorkflowStep

__all__ = [
    "Asset",
    "Base",
    "WorkflowRun",
    "WorkflowStep",
    "get_session",
    "get_session_factory",
]
