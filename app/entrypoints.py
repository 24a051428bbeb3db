"""PgQueuer entrypoint definitions for enrichment workflows.

Each job carries one WorkflowRun id. The entrypoint follows the short
transaction pattern through app.services.workflows.execute_workflow_run:
    1. Claim job (PgQueuer automatic)
    2. Mark run running (short transaction)
    3. Execute steps OUTSIDE any transaction
    4. Mark run completed or failed (short transaction)

A failed job leaves the run in `failed` with its error recorded; retrying it
(POST /api/v1/workflows/runs/{id}/retry) enqueues the same run id, which
resumes at the first unrecorded step.
"""

from pgqueuer import PgQueuer
from pgqueuer.models import Job

from app.queue import WORKFLOW_ENTRYPOINT, decode_run_id
from app.services.workflows import execute_workflow_run
from app.utils.logging import get_logger

log = get_logger(__name__)


async def run_enrichment_workflow(job: Job) -> None:
    """Execute the workflow run referenced by the job payload.

    Raises:
        ValueError: Invalid payload
        Exception: The error that failed the run (marks the job failed)
    """
    run_id = decode_run_id(job.payload)
    log.info("workflow_job_claimed", run_id=str(run_id), pgqueuer_job_id=str(job.id))
    await execute_workflow_run(run_id)


def register_entrypoints(pgq: PgQueuer) -> None:
    """Register all entrypoints with a PgQueuer instance.

    Args:
        pgq: Initialized PgQueuer instance
    """
    pgq.entrypoint(WORKFLOW_ENTRYPOINT)(run_enrichment_workflow)
