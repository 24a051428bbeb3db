"""Tests for SQLAlchemy models.

Tests the Asset, WorkflowRun and WorkflowStep models including defaults,
constraints, and WorkflowRun status transition validation.
"""

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.exceptions import InvalidStateTransitionError
from app.models import Asset, EncodingStatus, RunStatus, WorkflowKind, WorkflowRun, WorkflowStep
from tests.support.factories import create_asset_row


def make_run(status: RunStatus = RunStatus.PENDING) -> WorkflowRun:
    return WorkflowRun(
        kind=WorkflowKind.TITLE,
        owner_id=uuid.uuid4(),
        asset_id=uuid.uuid4(),
        input={},
        status=status,
    )


@pytest.mark.asyncio
async def test_asset_defaults(async_session):
    asset = Asset(owner_id=uuid.uuid4(), upload_token="upl_defaults")
    async_session.add(asset)
    await async_session.commit()

    assert isinstance(asset.id, uuid.UUID)
    assert asset.encoding_status is EncodingStatus.WAITING
    assert asset.duration == 0
    assert asset.created_at is not None
    assert asset.updated_at is not None


@pytest.mark.asyncio
async def test_upload_token_unique(async_session):
    owner_id = uuid.uuid4()
    async_session.add(create_asset_row(owner_id, upload_token="upl_dup"))
    await async_session.commit()

    async_session.add(create_asset_row(owner_id, upload_token="upl_dup"))
    with pytest.raises(IntegrityError):
        await async_session.commit()


@pytest.mark.asyncio
async def test_step_key_unique_per_run(async_session):
    run = make_run()
    async_session.add(run)
    await async_session.commit()

    async_session.add(WorkflowStep(run_id=run.id, step_name="get-asset", step_key="k" * 64))
    await async_session.commit()

    async_session.add(WorkflowStep(run_id=run.id, step_name="get-asset", step_key="k" * 64))
    with pytest.raises(IntegrityError):
        await async_session.commit()


@pytest.mark.asyncio
async def test_run_defaults_and_json_input(async_session):
    run = make_run()
    run.input = {"prompt": "a bowl of pasta"}
    async_session.add(run)
    await async_session.commit()

    loaded = (
        await async_session.execute(select(WorkflowRun).where(WorkflowRun.id == run.id))
    ).scalar_one()

    assert loaded.status is RunStatus.PENDING
    assert loaded.attempts == 0
    assert loaded.input == {"prompt": "a bowl of pasta"}
    assert loaded.completed_at is None


class TestRunStatusTransitions:
    @pytest.mark.parametrize(
        "start,target",
        [
            (RunStatus.PENDING, RunStatus.RUNNING),
            (RunStatus.RUNNING, RunStatus.RUNNING),
            (RunStatus.RUNNING, RunStatus.COMPLETED),
            (RunStatus.RUNNING, RunStatus.FAILED),
            (RunStatus.FAILED, RunStatus.PENDING),
            (RunStatus.FAILED, RunStatus.RUNNING),
        ],
    )
    def test_valid_transitions(self, start, target):
        run = make_run(start)

        run.status = target

        assert run.status is target

    @pytest.mark.parametrize(
        "start,target",
        [
            (RunStatus.PENDING, RunStatus.COMPLETED),
            (RunStatus.PENDING, RunStatus.FAILED),
            (RunStatus.PENDING, RunStatus.PENDING),
            (RunStatus.COMPLETED, RunStatus.RUNNING),
            (RunStatus.COMPLETED, RunStatus.PENDING),
            (RunStatus.FAILED, RunStatus.COMPLETED),
        ],
    )
    def test_invalid_transitions(self, start, target):
        run = make_run(start)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            run.status = target

        assert exc_info.value.from_status is start
        assert exc_info.value.to_status is target
        assert run.status is start
