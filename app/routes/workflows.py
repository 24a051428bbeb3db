"""Enrichment workflow routes.

- POST /api/v1/assets/{asset_id}/workflows/{kind}  Create + enqueue a run (202)
- POST /api/v1/workflows/runs/{run_id}/retry       Re-enqueue a failed run (202)
- GET  /api/v1/workflows/runs/{run_id}             Run status and recorded steps

Runs execute in the worker (app.worker). The run row is committed before the
job is enqueued, so the worker can always load it.
"""

import uuid

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_session
from app.models import WorkflowKind
from app.queue import enqueue_workflow_run
from app.routes.dependencies import get_owner_id
from app.schemas.asset import WorkflowRunRead, WorkflowTriggerRequest, WorkflowTriggerResponse
from app.services.workflows import create_workflow_run, get_workflow_run, retry_workflow_run

router = APIRouter(prefix="/api/v1", tags=["workflows"])


@router.post(
    "/assets/{asset_id}/workflows/{kind}",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WorkflowTriggerResponse,
)
async def trigger_asset_workflow(
    asset_id: uuid.UUID,
    kind: WorkflowKind,
    request: WorkflowTriggerRequest | None = Body(default=None),
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
) -> WorkflowTriggerResponse:
    prompt = request.prompt if request else None
    run = await create_workflow_run(session, kind, owner_id, asset_id, prompt=prompt)
    await session.commit()

    await enqueue_workflow_run(run.id)
    return WorkflowTriggerResponse(run_id=run.id, status=run.status)


@router.post(
    "/workflows/runs/{run_id}/retry",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WorkflowTriggerResponse,
)
async def retry_run(
    run_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
) -> WorkflowTriggerResponse:
    run = await retry_workflow_run(session, run_id, owner_id)
    await session.commit()

    await enqueue_workflow_run(run.id)
    return WorkflowTriggerResponse(run_id=run.id, status=run.status)


@router.get("/workflows/runs/{run_id}", response_model=WorkflowRunRead)
async def read_run(
    run_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    session: AsyncSession = Depends(get_session),
) -> WorkflowRunRead:
    run, completed_steps = await get_workflow_run(session, run_id, owner_id)
    return WorkflowRunRead(
        id=run.id,
        kind=run.kind,
        asset_id=run.asset_id,
        status=run.status,
        attempts=run.attempts,
        error=run.error,
        input=run.input or {},
        completed_steps=completed_steps,
        created_at=run.created_at,
        completed_at=run.completed_at,
    )
