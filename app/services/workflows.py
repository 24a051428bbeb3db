"""Enrichment workflows: title, description and thumbnail generation.

Each workflow is a fixed sequence of Step Orchestrator steps for one
WorkflowRun. Only the final persist step writes to the asset (plus the
thumbnail cleanup step, which must null the old reference before a new file
is attached), so a failed run leaves the asset's prior metadata untouched.

Workflows:
    title:       get-asset → generate-title → persist-title
    description: get-asset → get-transcript → generate-description → persist-description
    thumbnail:   get-asset → generate-image → cleanup-previous-thumbnail
                 → upload-thumbnail → persist-thumbnail

Run Lifecycle ("Short Transaction + State Machine"):
    1. Claim: status → running, attempts += 1 (short transaction)
    2. Execute steps OUTSIDE any transaction
    3. Finish: status → completed | failed (short transaction)

Re-executing a failed run with the same id resumes at the first unrecorded
step (see app.services.step_orchestrator).

Usage:
    # Background (API + worker)
    run = await create_workflow_run(session, WorkflowKind.TITLE, owner_id, asset_id)
    await enqueue_workflow_run(run.id)

    # In-process, returns once the run completed or failed
    run = await trigger_workflow(owner_id, asset_id, WorkflowKind.THUMBNAIL, prompt="...")
"""

import asyncio
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.clients.catbox import CatboxClient
from app.clients.mux import MuxClient
from app.clients.openai import OpenAIClient
from app.database import get_session_factory
from app.exceptions import ClientError, NotFoundError, TerminalWorkflowError
from app.models import RunStatus, WorkflowKind, WorkflowRun, WorkflowStep, utcnow
from app.schemas.asset import AssetRead
from app.services.asset_store import get_asset, update_asset_fields
from app.services.step_orchestrator import StepOrchestrator
from app.utils.logging import get_logger

log = get_logger(__name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 200

TITLE_SYSTEM_PROMPT = (
    "You are a video editor writing titles for a video library. "
    "Write one SEO-focused title of 3 to 8 words, at most 100 characters, "
    "based on the provided context. Return only the title."
)

DESCRIPTION_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes video transcripts. "
    "Summarize the transcript in 3 to 5 sentences, at most 200 characters. "
    "Return only the summary."
)

_QUOTE_CHARS = "\"'“”‘’`"


class TextGenerator(Protocol):
    async def complete_text(self, system_prompt: str, user_content: str) -> str: ...


class ImageGenerator(Protocol):
    async def generate_image(self, prompt: str) -> str: ...


class TranscriptSource(Protocol):
    async def fetch_transcript(self, playback_ref: str, track_ref: str) -> str: ...


class FileStorage(Protocol):
    async def upload_from_url(self, source_url: str) -> Any: ...

    async def delete_file(self, key: str) -> None: ...


@dataclass
class WorkflowServices:
    """External dependencies of the workflow steps."""

    text: TextGenerator
    images: ImageGenerator
    transcripts: TranscriptSource
    storage: FileStorage

    @classmethod
    def from_config(cls) -> "WorkflowServices":
        openai = OpenAIClient()
        return cls(text=openai, images=openai, transcripts=MuxClient(), storage=CatboxClient())

    async def close(self) -> None:
        closed: set[int] = set()
        for client in (self.text, self.images, self.transcripts, self.storage):
            close = getattr(client, "close", None)
            if close is not None and id(client) not in closed:
                closed.add(id(client))
                await close()


@dataclass(frozen=True)
class WorkflowContext:
    run_id: uuid.UUID
    owner_id: uuid.UUID
    asset_id: uuid.UUID
    input: dict[str, Any]
    session_factory: async_sessionmaker[AsyncSession]
    services: WorkflowServices
    orchestrator: StepOrchestrator


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _truncate_at_word(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    boundary = cut.rfind(" ")
    if boundary > 0:
        cut = cut[:boundary]
    return cut.rstrip(" ,;:-")


def normalize_title(text: str) -> str:
    """Collapse whitespace, strip surrounding quotes, cap at 100 characters."""
    title = _collapse_whitespace(text).strip(_QUOTE_CHARS).strip()
    return _truncate_at_word(title, MAX_TITLE_LENGTH)


def normalize_description(text: str) -> str:
    """Collapse whitespace, cap at 200 characters on a word boundary."""
    return _truncate_at_word(_collapse_whitespace(text), MAX_DESCRIPTION_LENGTH)


# Shared steps


async def _get_asset_step(ctx: WorkflowContext) -> dict[str, Any]:
    async def load_asset(asset_id: str, owner_id: str) -> dict[str, Any]:
        async with ctx.session_factory() as session:
            asset = await get_asset(session, uuid.UUID(asset_id), uuid.UUID(owner_id))
            return AssetRead.model_validate(asset).model_dump(mode="json")

    return await ctx.orchestrator.run(
        "get-asset", load_asset, str(ctx.asset_id), str(ctx.owner_id)
    )


def _persist(ctx: WorkflowContext) -> Callable[..., Awaitable[dict[str, Any]]]:
    async def persist(**values: Any) -> dict[str, Any]:
        async with ctx.session_factory() as session, session.begin():
            await update_asset_fields(session, ctx.asset_id, ctx.owner_id, **values)
        return values

    return persist


# Workflow definitions


async def run_title_workflow(ctx: WorkflowContext) -> None:
    orchestrator = ctx.orchestrator
    asset = await _get_asset_step(ctx)

    context = asset.get("description") or asset.get("title")
    if not context:
        raise TerminalWorkflowError(
            "Asset has no description or title to work from", step="generate-title"
        )

    async def generate_title(prompt_context: str) -> str:
        return await ctx.services.text.complete_text(TITLE_SYSTEM_PROMPT, prompt_context)

    generated = await orchestrator.run("generate-title", generate_title, context)
    title = normalize_title(generated) or asset.get("title")

    persist = _persist(ctx)

    async def persist_title(value: str | None) -> dict[str, Any]:
        return await persist(title=value)

    await orchestrator.run("persist-title", persist_title, title)


async def run_description_workflow(ctx: WorkflowContext) -> None:
    orchestrator = ctx.orchestrator
    asset = await _get_asset_step(ctx)

    playback_ref = asset.get("playback_ref")
    track_ref = asset.get("track_ref")
    if not playback_ref or not track_ref:
        raise TerminalWorkflowError("Asset has no transcript track yet", step="get-transcript")

    async def get_transcript(playback: str, track: str) -> str:
        return await ctx.services.transcripts.fetch_transcript(playback, track)

    transcript = await orchestrator.run("get-transcript", get_transcript, playback_ref, track_ref)

    async def generate_description(text: str) -> str:
        generated = normalize_description(
            await ctx.services.text.complete_text(DESCRIPTION_SYSTEM_PROMPT, text)
        )
        if not generated:
            raise TerminalWorkflowError(
                "Failed to generate description", step="generate-description"
            )
        return generated

    description = await orchestrator.run("generate-description", generate_description, transcript)

    persist = _persist(ctx)

    async def persist_description(value: str | None) -> dict[str, Any]:
        return await persist(description=value)

    await orchestrator.run("persist-description", persist_description, description)


async def run_thumbnail_workflow(ctx: WorkflowContext) -> None:
    orchestrator = ctx.orchestrator
    prompt = ctx.input.get("prompt")
    if not prompt:
        raise TerminalWorkflowError("Thumbnail workflow requires a prompt", step="generate-image")

    asset = await _get_asset_step(ctx)

    async def generate_image(image_prompt: str) -> str:
        return await ctx.services.images.generate_image(image_prompt)

    image_url = await orchestrator.run("generate-image", generate_image, prompt)

    persist = _persist(ctx)

    async def cleanup_previous_thumbnail(previous_key: str | None) -> dict[str, Any]:
        # File first, then the reference, all in one step
        if not previous_key:
            return {"deleted": None}
        await ctx.services.storage.delete_file(previous_key)
        await persist(thumbnail_ref=None, thumbnail_locator=None)
        return {"deleted": previous_key}

    await orchestrator.run(
        "cleanup-previous-thumbnail", cleanup_previous_thumbnail, asset.get("thumbnail_ref")
    )

    async def upload_thumbnail(source_url: str) -> dict[str, str]:
        stored = await ctx.services.storage.upload_from_url(source_url)
        return {"key": stored.key, "url": stored.url}

    uploaded = await orchestrator.run("upload-thumbnail", upload_thumbnail, image_url)

    async def persist_thumbnail(key: str, url: str) -> dict[str, Any]:
        return await persist(thumbnail_ref=key, thumbnail_locator=url)

    await orchestrator.run(
        "persist-thumbnail", persist_thumbnail, uploaded["key"], uploaded["url"]
    )


WORKFLOWS: dict[WorkflowKind, Callable[[WorkflowContext], Awaitable[None]]] = {
    WorkflowKind.TITLE: run_title_workflow,
    WorkflowKind.DESCRIPTION: run_description_workflow,
    WorkflowKind.THUMBNAIL: run_thumbnail_workflow,
}


# Run lifecycle


async def create_workflow_run(
    session: AsyncSession,
    kind: WorkflowKind,
    owner_id: uuid.UUID,
    asset_id: uuid.UUID,
    prompt: str | None = None,
) -> WorkflowRun:
    """Create a pending run after checking the asset belongs to the caller.

    Raises:
        NotFoundError: Asset absent or owned by someone else
        ClientError: Thumbnail run without a prompt
    """
    await get_asset(session, asset_id, owner_id)

    if kind is WorkflowKind.THUMBNAIL and not prompt:
        raise ClientError("A prompt is required for thumbnail generation")

    run = WorkflowRun(
        kind=kind,
        owner_id=owner_id,
        asset_id=asset_id,
        input={"prompt": prompt} if prompt else {},
        status=RunStatus.PENDING,
    )
    session.add(run)
    await session.flush()

    log.info(
        "workflow_run_created",
        run_id=str(run.id),
        kind=kind.value,
        asset_id=str(asset_id),
    )
    return run


async def get_workflow_run(
    session: AsyncSession,
    run_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> tuple[WorkflowRun, list[str]]:
    """Load a run scoped by owner, with the names of its recorded steps.

    Raises:
        NotFoundError: Run absent or owned by someone else
    """
    run = await session.get(WorkflowRun, run_id)
    if run is None or run.owner_id != owner_id:
        raise NotFoundError("workflow_run", run_id)

    result = await session.execute(
        select(WorkflowStep.step_name)
        .where(WorkflowStep.run_id == run_id)
        .order_by(WorkflowStep.completed_at)
    )
    return run, list(result.scalars().all())


async def retry_workflow_run(
    session: AsyncSession,
    run_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> WorkflowRun:
    """Move a failed run back to pending so it can be re-enqueued.

    Raises:
        NotFoundError: Run absent or owned by someone else
        InvalidStateTransitionError: Run is not failed (completed runs are final)
    """
    run, _ = await get_workflow_run(session, run_id, owner_id)
    run.status = RunStatus.PENDING
    await session.flush()

    log.info("workflow_run_retry_requested", run_id=str(run_id), attempts=run.attempts)
    return run


async def _claim_run(
    session_factory: async_sessionmaker[AsyncSession],
    run_id: uuid.UUID,
) -> WorkflowRun:
    async with session_factory() as session, session.begin():
        run = await session.get(WorkflowRun, run_id)
        if run is None:
            log.error("workflow_run_not_found", run_id=str(run_id))
            raise NotFoundError("workflow_run", run_id)

        if run.status is RunStatus.COMPLETED:
            return run

        run.status = RunStatus.RUNNING
        run.attempts += 1
        run.error = None
        return run


async def _finish_run(
    session_factory: async_sessionmaker[AsyncSession],
    run_id: uuid.UUID,
    status: RunStatus,
    error: str | None = None,
) -> WorkflowRun:
    async with session_factory() as session, session.begin():
        run = await session.get(WorkflowRun, run_id)
        if run is None:
            raise NotFoundError("workflow_run", run_id)
        run.status = status
        run.error = error
        if status is RunStatus.COMPLETED:
            run.completed_at = utcnow()
        return run


async def execute_workflow_run(
    run_id: uuid.UUID,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    services: WorkflowServices | None = None,
    max_attempts: int | None = None,
    backoff_max_seconds: float | None = None,
) -> WorkflowRun:
    """Execute (or resume) a workflow run to completion or failure.

    Args:
        run_id: WorkflowRun id
        session_factory: Session factory (production factory by default)
        services: External clients (built from config by default and closed
            afterwards)
        max_attempts / backoff_max_seconds: Per-step retry policy overrides

    Returns:
        The finished WorkflowRun (completed)

    Raises:
        NotFoundError: Run does not exist
        Exception: The error that failed the run, after it was recorded
    """
    session_factory = session_factory or get_session_factory()

    run = await _claim_run(session_factory, run_id)
    if run.status is RunStatus.COMPLETED:
        log.info("workflow_already_completed", run_id=str(run_id))
        return run

    owns_services = services is None
    services = services or WorkflowServices.from_config()

    orchestrator = StepOrchestrator(
        run.id,
        session_factory,
        max_attempts=max_attempts,
        backoff_max_seconds=backoff_max_seconds,
    )
    ctx = WorkflowContext(
        run_id=run.id,
        owner_id=run.owner_id,
        asset_id=run.asset_id,
        input=dict(run.input or {}),
        session_factory=session_factory,
        services=services,
        orchestrator=orchestrator,
    )

    log.info(
        "workflow_started",
        run_id=str(run.id),
        kind=run.kind.value,
        asset_id=str(run.asset_id),
        attempt=run.attempts,
    )

    try:
        await WORKFLOWS[run.kind](ctx)
    except asyncio.CancelledError:
        # Worker shutdown; record the failure so the run can be retried and resumed
        await _finish_run(session_factory, run_id, RunStatus.FAILED, error="Cancelled")
        log.warning(
            "workflow_cancelled",
            run_id=str(run_id),
            kind=run.kind.value,
            asset_id=str(run.asset_id),
            executed_steps=orchestrator.executed_steps,
        )
        raise
    except Exception as e:
        await _finish_run(session_factory, run_id, RunStatus.FAILED, error=str(e))
        log.error(
            "workflow_failed",
            run_id=str(run_id),
            kind=run.kind.value,
            asset_id=str(run.asset_id),
            error_type=type(e).__name__,
            error=str(e),
            executed_steps=orchestrator.executed_steps,
        )
        raise
    finally:
        if owns_services:
            await services.close()

    finished = await _finish_run(session_factory, run_id, RunStatus.COMPLETED)
    log.info(
        "workflow_completed",
        run_id=str(run_id),
        kind=run.kind.value,
        asset_id=str(run.asset_id),
        executed_steps=orchestrator.executed_steps,
        skipped_steps=orchestrator.skipped_steps,
    )
    return finished


async def trigger_workflow(
    owner_id: uuid.UUID,
    asset_id: uuid.UUID,
    kind: WorkflowKind,
    prompt: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    services: WorkflowServices | None = None,
    **policy: Any,
) -> WorkflowRun:
    """Create a run and execute it in-process.

    Returns only after every step completed, or raises the error that failed
    the run (the run row records it).
    """
    session_factory = session_factory or get_session_factory()

    async with session_factory() as session, session.begin():
        run = await create_workflow_run(session, kind, owner_id, asset_id, prompt=prompt)
        run_id = run.id

    return await execute_workflow_run(run_id, session_factory, services, **policy)
