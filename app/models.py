"""SQLAlchemy 2.0 ORM models.

This module contains all SQLAlchemy models for the media asset service.
All models use the Mapped[type] annotation pattern required by SQLAlchemy 2.0.

Models:
    Asset: A user-uploaded video and its provider-derived / generated fields.
    WorkflowRun: One enrichment workflow instance (title, description, thumbnail).
    WorkflowStep: Durable step log of a workflow run ("resume, don't repeat").

Write Discipline:
    Asset rows are mutated with targeted column UPDATEs (see
    app.services.asset_store), never by loading and re-saving the full row, so
    concurrent webhook events and workflows touching disjoint columns cannot
    clobber each other.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from app.exceptions import InvalidStateTransitionError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class EncodingStatus(enum.Enum):
    """Encoding lifecycle of an asset, driven only by provider webhooks.

    Flow:
        waiting (upload initiated) → preparing (asset created at provider)
        → ready (playable) | errored
    """

    WAITING = "waiting"
    PREPARING = "preparing"
    READY = "ready"
    ERRORED = "errored"


class WorkflowKind(enum.Enum):
    """Enrichment workflow definitions."""

    TITLE = "title"
    DESCRIPTION = "description"
    THUMBNAIL = "thumbnail"


class RunStatus(enum.Enum):
    """Workflow run lifecycle.

    Flow:
        pending → running → completed | failed
        failed → pending (re-enqueued) | running (resumed in-process)
        running → running (resumed after a worker crash)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Asset(Base):
    """Media asset owned by a single user.

    Every mutation is scoped by (id, owner_id), or by a provider correlation key
    (upload_token / external_asset_ref) for webhook transitions.

    Attributes:
        id: Internal UUID primary key, never reused.
        owner_id: Owning user. Cross-owner reads/writes fail with NotFoundError.
        upload_token: Provider upload id, echoed by every webhook. Unique.
        encoding_status: EncodingStatus (waiting/preparing/ready/errored).
        external_asset_ref: Provider asset id, set once encoding starts.
        playback_ref: Provider playback id. Non-null whenever status is ready.
        track_ref / track_status: Auto-generated subtitle track, set by track-ready.
        thumbnail_ref: File storage key (needed to delete/replace the file).
        thumbnail_locator: Public thumbnail URL.
        preview_locator: Animated preview URL derived from playback_ref.
        duration: Duration in milliseconds.
        title / description: Generated or user-edited text.
        created_at / updated_at: updated_at is the listing sort key and is
            bumped on every mutating write.
    """

    __tablename__ = "assets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )

    # Provider correlation keys
    upload_token: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    external_asset_ref: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    encoding_status: Mapped[EncodingStatus] = mapped_column(
        Enum(
            EncodingStatus,
            native_enum=True,
            name="encodingstatus",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=EncodingStatus.WAITING,
    )

    playback_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Track-ready arrives on its own schedule, independent of encoding_status
    track_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    track_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    thumbnail_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    thumbnail_locator: Mapped[str | None] = mapped_column(String(500), nullable=True)
    preview_locator: Mapped[str | None] = mapped_column(String(500), nullable=True)

    duration: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        # Keyset listing: WHERE owner_id = ? ORDER BY updated_at DESC, id DESC
        Index("ix_assets_owner_updated_at_id", "owner_id", "updated_at", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Asset(id={self.id!s:.8}, upload_token={self.upload_token!r}, "
            f"encoding_status={self.encoding_status.value!r})>"
        )


class WorkflowRun(Base):
    """One enrichment workflow instance.

    A run is executed by the StepOrchestrator. Re-executing the same run id
    (worker retry, manual retry, process restart) resumes at the first step
    without a recorded result.

    Attributes:
        id: Run UUID (the workflow-instance id used in logs).
        kind: WorkflowKind.
        owner_id / asset_id: Target asset, always loaded scoped by owner.
        input: Workflow-specific input (e.g. {"prompt": "..."} for thumbnails).
        status: RunStatus (validated transitions).
        attempts: Number of executions started for this run.
        error: Last failure message (None once completed).
    """

    __tablename__ = "workflow_runs"

    VALID_TRANSITIONS = {
        RunStatus.PENDING: [RunStatus.RUNNING],
        RunStatus.RUNNING: [RunStatus.RUNNING, RunStatus.COMPLETED, RunStatus.FAILED],
        RunStatus.FAILED: [RunStatus.PENDING, RunStatus.RUNNING],
        RunStatus.COMPLETED: [],  # Terminal state
    }

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    kind: Mapped[WorkflowKind] = mapped_column(
        Enum(
            WorkflowKind,
            native_enum=True,
            name="workflowkind",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # No FK: a run outlives its asset so the failure stays inspectable
    asset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )

    input: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    status: Mapped[RunStatus] = mapped_column(
        Enum(
            RunStatus,
            native_enum=True,
            name="runstatus",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=RunStatus.PENDING,
        index=True,
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.completed_at",
    )

    @validates("status")
    def validate_status_change(self, key: str, value: RunStatus) -> RunStatus:
        """Validate status transition before committing to database.

        Raises:
            InvalidStateTransitionError: If the transition is not listed in
                VALID_TRANSITIONS.

        Note:
            Validation is skipped on initial creation (status is None).
        """
        if self.status is None:
            return value

        allowed_transitions = self.VALID_TRANSITIONS.get(self.status, [])
        if value not in allowed_transitions:
            raise InvalidStateTransitionError(
                f"Invalid transition: {self.status.value} -> {value.value}",
                from_status=self.status,
                to_status=value,
            )

        return value

    def __repr__(self) -> str:
        return (
            f"<WorkflowRun(id={self.id!s:.8}, kind={self.kind.value!r}, "
            f"status={self.status.value!r}, attempts={self.attempts})>"
        )


class WorkflowStep(Base):
    """Recorded result of one workflow step.

    The presence of a row is the proof that the step's side effect happened;
    the orchestrator returns `result` instead of re-running the step.

    Attributes:
        run_id: Owning WorkflowRun.
        step_name: Human-readable step name ("get-asset", "upload-thumbnail").
        step_key: SHA-256 over step name and JSON-encoded resolved inputs.
        result: JSON-encoded return value of the step.
        attempts: Attempts the step needed before succeeding.
        duration_seconds: Wall time of the successful attempt sequence.
    """

    __tablename__ = "workflow_steps"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    step_name: Mapped[str] = mapped_column(String(100), nullable=False)
    step_key: Mapped[str] = mapped_column(String(64), nullable=False)

    result: Mapped[Any] = mapped_column(JSON, nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    duration_seconds: Mapped[float | None] = mapped_column(nullable=True)

    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    run: Mapped["WorkflowRun"] = relationship("WorkflowRun", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("run_id", "step_key", name="uq_workflow_steps_run_step_key"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep(run_id={self.run_id!s:.8}, step_name={self.step_name!r})>"
