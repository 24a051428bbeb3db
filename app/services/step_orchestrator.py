"""Step Orchestrator: durable "resume, don't repeat" execution of workflow steps.

A workflow run is a fixed, ordered sequence of named steps. Each step's result
is written to the workflow_steps table as soon as the step succeeds. When the
same run id is executed again (worker retry, manual retry, process restart),
steps with a recorded result are not re-executed; the recorded result is
returned and execution continues at the first unrecorded step.

Architecture Pattern: "Short Transaction per Step"
- The orchestrator never holds a database transaction across an external call
- Recorded steps are loaded once per orchestrator instance
- Each successful step is persisted in its own short transaction

Step Identity:
    step_key = sha256(step name + JSON-encoded resolved inputs)

    Inputs are the positional arguments handed to the step function, so a step
    fed a different upstream result (e.g. a regenerated image URL) is a
    different step and will run.

Retry Policy (per step, never per workflow):
    TransientExternalError  → retried with exponential backoff, bounded attempts
    anything else           → propagates immediately
    retries exhausted       → TerminalWorkflowError (step name attached)

Usage:
    orchestrator = StepOrchestrator(run_id, session_factory)
    asset = await orchestrator.run("get-asset", load_asset, asset_id, owner_id)
    text = await orchestrator.run("generate-title", generate, asset["description"])
"""

import asyncio
import hashlib
import json
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_step_backoff_max_seconds, get_step_max_attempts
from app.exceptions import TerminalWorkflowError, TransientExternalError
from app.models import WorkflowStep
from app.utils.logging import get_logger

log = get_logger(__name__)


def compute_step_key(step_name: str, inputs: tuple[Any, ...]) -> str:
    """Hash a step name and its resolved inputs into a stable step key.

    Raises:
        TypeError: If an input is not JSON-serializable (after str() fallback
            for UUIDs and datetimes).
    """
    payload = json.dumps(
        {"step": step_name, "inputs": list(inputs)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StepOrchestrator:
    """Execute the steps of one workflow run at most once each.

    Steps run sequentially: `run` holds a per-instance lock, so even callers
    that gather() several steps cannot interleave two steps of the same run.

    Attributes:
        run_id: WorkflowRun id (the workflow-instance id used in logs)
        executed_steps: Names of steps actually executed by this instance
        skipped_steps: Names of steps answered from the step log
    """

    def __init__(
        self,
        run_id: uuid.UUID,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int | None = None,
        backoff_max_seconds: float | None = None,
    ):
        self.run_id = run_id
        self.session_factory = session_factory
        self.max_attempts = max_attempts if max_attempts is not None else get_step_max_attempts()
        self.backoff_max_seconds = (
            backoff_max_seconds
            if backoff_max_seconds is not None
            else get_step_backoff_max_seconds()
        )
        self.executed_steps: list[str] = []
        self.skipped_steps: list[str] = []
        self._recorded: dict[str, Any] | None = None
        self._lock = asyncio.Lock()
        self.log = log.bind(run_id=str(run_id))

    async def _load_recorded(self) -> dict[str, Any]:
        if self._recorded is None:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(WorkflowStep.step_key, WorkflowStep.result).where(
                        WorkflowStep.run_id == self.run_id
                    )
                )
                self._recorded = {row.step_key: row.result for row in result}
        return self._recorded

    async def _record(
        self,
        step_name: str,
        step_key: str,
        result: Any,
        attempts: int,
        duration_seconds: float,
    ) -> Any:
        """Persist a step result. Returns the result that is now on record."""
        try:
            async with self.session_factory() as session, session.begin():
                session.add(
                    WorkflowStep(
                        run_id=self.run_id,
                        step_name=step_name,
                        step_key=step_key,
                        result=result,
                        attempts=attempts,
                        duration_seconds=duration_seconds,
                    )
                )
        except IntegrityError:
            # Another execution of this run recorded the step first
            self.log.warning("step_already_recorded", step=step_name, step_key=step_key)
            async with self.session_factory() as session:
                existing = await session.execute(
                    select(WorkflowStep.result).where(
                        WorkflowStep.run_id == self.run_id,
                        WorkflowStep.step_key == step_key,
                    )
                )
                result = existing.scalar_one()

        assert self._recorded is not None
        self._recorded[step_key] = result
        return result

    async def run(
        self,
        step_name: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run one step, or return its recorded result.

        Args:
            step_name: Stable step name ("get-asset", "upload-thumbnail")
            fn: Async step function; its return value must be JSON-serializable
            *args: Resolved step inputs (part of the step key)

        Returns:
            The step result (fresh or recorded)

        Raises:
            TerminalWorkflowError: If transient failures exhausted max_attempts.
            Exception: Any non-transient error raised by `fn`, unchanged.
        """
        async with self._lock:
            step_key = compute_step_key(step_name, args)
            recorded = await self._load_recorded()

            if step_key in recorded:
                self.skipped_steps.append(step_name)
                self.log.info("step_skipped", step=step_name, reason="already_recorded")
                return recorded[step_key]

            self.log.info("step_started", step=step_name)
            start_time = time.time()
            attempts = 0

            try:
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception_type(TransientExternalError),
                    stop=stop_after_attempt(self.max_attempts),
                    wait=wait_exponential(multiplier=1, min=0, max=self.backoff_max_seconds),
                    before_sleep=lambda retry_state: self.log.warning(
                        "step_retry",
                        step=step_name,
                        attempt=retry_state.attempt_number,
                        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
                    ),
                    reraise=True,
                ):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        result = await fn(*args)
            except TransientExternalError as e:
                self.log.error(
                    "step_retries_exhausted",
                    step=step_name,
                    attempts=attempts,
                    error=str(e),
                )
                raise TerminalWorkflowError(
                    f"Retries exhausted after {attempts} attempts: {e}", step=step_name
                ) from e
            except RetryError as e:
                raise TerminalWorkflowError("Retries exhausted", step=step_name) from e
            except Exception as e:
                self.log.error(
                    "step_failed",
                    step=step_name,
                    attempts=attempts,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

            duration = time.time() - start_time
            result = await self._record(step_name, step_key, result, attempts, duration)
            self.executed_steps.append(step_name)

            self.log.info(
                "step_completed",
                step=step_name,
                attempts=attempts,
                duration_seconds=round(duration, 3),
            )
            return result
