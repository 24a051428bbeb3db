"""Tests for the Step Orchestrator (durable "resume, don't repeat" steps).

Test Coverage:
- Recorded steps are skipped on re-execution of the same run
- Step keys include resolved inputs
- Transient errors are retried per step, then become terminal
- Non-transient errors are not retried
- Steps of one run never overlap
"""

import asyncio
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.exceptions import ExternalServiceError, TerminalWorkflowError, TransientExternalError
from app.models import RunStatus, WorkflowKind, WorkflowRun, WorkflowStep
from app.services.step_orchestrator import StepOrchestrator, compute_step_key


@pytest.fixture
def make_orchestrator(session_factory):
    def factory(run_id: uuid.UUID, max_attempts: int = 3) -> StepOrchestrator:
        return StepOrchestrator(
            run_id, session_factory, max_attempts=max_attempts, backoff_max_seconds=0
        )

    return factory


@pytest_asyncio.fixture
async def run_id(session_factory, owner_id):
    async with session_factory() as session, session.begin():
        run = WorkflowRun(
            kind=WorkflowKind.TITLE,
            owner_id=owner_id,
            asset_id=uuid.uuid4(),
            input={},
            status=RunStatus.PENDING,
        )
        session.add(run)
    return run.id


class Counter:
    """Async step function that counts its side effects."""

    def __init__(self, result=None, failures: list[Exception] | None = None):
        self.calls = 0
        self.result = result
        self.failures = list(failures or [])

    async def __call__(self, *args):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result if self.result is not None else {"args": list(args)}


class TestComputeStepKey:
    def test_same_inputs_same_key(self):
        assert compute_step_key("upload", ("a", 1)) == compute_step_key("upload", ("a", 1))

    def test_inputs_change_key(self):
        assert compute_step_key("upload", ("a",)) != compute_step_key("upload", ("b",))

    def test_name_changes_key(self):
        assert compute_step_key("upload", ("a",)) != compute_step_key("delete", ("a",))

    def test_uuid_inputs_are_serializable(self):
        value = uuid.uuid4()
        assert compute_step_key("s", (value,)) == compute_step_key("s", (str(value),))

    def test_key_is_sha256_hex(self):
        assert len(compute_step_key("s", ())) == 64


class TestStepOrchestrator:
    @pytest.mark.asyncio
    async def test_runs_step_and_records_result(self, make_orchestrator, run_id, session_factory):
        step = Counter(result={"value": 42})

        result = await make_orchestrator(run_id).run("compute", step, "x")

        assert result == {"value": 42}
        async with session_factory() as session:
            recorded = (await session.execute(select(WorkflowStep))).scalars().all()
        assert [(s.step_name, s.result, s.attempts) for s in recorded] == [
            ("compute", {"value": 42}, 1)
        ]

    @pytest.mark.asyncio
    async def test_resume_does_not_repeat_recorded_steps(self, make_orchestrator, run_id):
        """Step 2 fails after step 1 recorded; the retry runs step 1 once in total."""
        step1 = Counter(result="one")
        step2 = Counter(result="two", failures=[ExternalServiceError("openai", "HTTP 400")])
        step3 = Counter(result="three")

        async def workflow(orchestrator):
            a = await orchestrator.run("step-1", step1)
            b = await orchestrator.run("step-2", step2, a)
            return await orchestrator.run("step-3", step3, b)

        first = make_orchestrator(run_id)
        with pytest.raises(ExternalServiceError):
            await workflow(first)

        assert (step1.calls, step2.calls, step3.calls) == (1, 1, 0)

        second = make_orchestrator(run_id)
        assert await workflow(second) == "three"

        assert (step1.calls, step2.calls, step3.calls) == (1, 2, 1)
        assert second.skipped_steps == ["step-1"]
        assert second.executed_steps == ["step-2", "step-3"]

    @pytest.mark.asyncio
    async def test_recorded_result_returned_verbatim(self, make_orchestrator, run_id):
        await make_orchestrator(run_id).run("upload", Counter(result={"key": "abc.png"}))

        again = Counter(result={"key": "different.png"})
        result = await make_orchestrator(run_id).run("upload", again)

        assert result == {"key": "abc.png"}
        assert again.calls == 0

    @pytest.mark.asyncio
    async def test_different_inputs_run_again(self, make_orchestrator, run_id):
        step = Counter()
        orchestrator = make_orchestrator(run_id)

        await orchestrator.run("upload", step, "https://a.example/1.png")
        await orchestrator.run("upload", step, "https://a.example/2.png")

        assert step.calls == 2

    @pytest.mark.asyncio
    async def test_steps_are_scoped_to_their_run(
        self, make_orchestrator, run_id, session_factory, owner_id
    ):
        async with session_factory() as session, session.begin():
            other = WorkflowRun(
                kind=WorkflowKind.TITLE,
                owner_id=owner_id,
                asset_id=uuid.uuid4(),
                input={},
                status=RunStatus.PENDING,
            )
            session.add(other)

        step = Counter(result="x")
        await make_orchestrator(run_id).run("get-asset", step)
        await make_orchestrator(other.id).run("get-asset", step)

        assert step.calls == 2

    @pytest.mark.asyncio
    async def test_transient_error_retried_then_succeeds(
        self, make_orchestrator, run_id, session_factory
    ):
        step = Counter(
            result="ok",
            failures=[
                TransientExternalError("openai", "HTTP 503", status_code=503),
                TransientExternalError("openai", "Timeout"),
            ],
        )

        result = await make_orchestrator(run_id, max_attempts=3).run("generate", step)

        assert result == "ok"
        assert step.calls == 3
        async with session_factory() as session:
            recorded = (await session.execute(select(WorkflowStep))).scalar_one()
        assert recorded.attempts == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted_is_terminal(self, make_orchestrator, run_id, session_factory):
        step = Counter(
            failures=[TransientExternalError("catbox", "HTTP 502", status_code=502)] * 5
        )

        with pytest.raises(TerminalWorkflowError) as exc_info:
            await make_orchestrator(run_id, max_attempts=3).run("upload-thumbnail", step)

        assert step.calls == 3
        assert exc_info.value.step == "upload-thumbnail"
        assert isinstance(exc_info.value.__cause__, TransientExternalError)
        async with session_factory() as session:
            assert (await session.execute(select(WorkflowStep))).first() is None

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, make_orchestrator, run_id):
        step = Counter(failures=[ExternalServiceError("openai", "HTTP 400", status_code=400)])

        with pytest.raises(ExternalServiceError):
            await make_orchestrator(run_id, max_attempts=5).run("generate", step)

        assert step.calls == 1

    @pytest.mark.asyncio
    async def test_steps_never_overlap(self, make_orchestrator, run_id):
        orchestrator = make_orchestrator(run_id)
        active = 0
        max_active = 0

        async def slow_step(name):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1
            return name

        results = await asyncio.gather(
            orchestrator.run("a", slow_step, "a"),
            orchestrator.run("b", slow_step, "b"),
            orchestrator.run("c", slow_step, "c"),
        )

        assert sorted(results) == ["a", "b", "c"]
        assert max_active == 1
