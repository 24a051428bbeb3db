"""PgQueuer initialization and job enqueueing.

Workflow runs execute in a separate worker process. The API enqueues a job
whose payload is the WorkflowRun id; the worker claims it atomically via
FOR UPDATE SKIP LOCKED (PgQueuer automatic) and executes the run.

Architecture Pattern:
    - AsyncpgPoolDriver: Connection pool for the worker
    - AsyncpgDriver: Single short-lived connection for API-side enqueue
    - QueueManager: Schema installation
    - Entrypoint Registration: app.entrypoints

Usage:
    from app.queue import initialize_pgqueuer, enqueue_workflow_run

    pgq, pool = await initialize_pgqueuer()   # worker
    await enqueue_workflow_run(run.id)        # API
"""

import uuid

import asyncpg
from pgqueuer import PgQueuer
from pgqueuer.db import AsyncpgDriver, AsyncpgPoolDriver
from pgqueuer.qm import QueueManager
from pgqueuer.queries import Queries

from app.config import get_queue_dsn
from app.utils.logging import get_logger

log = get_logger(__name__)

WORKFLOW_ENTRYPOINT = "run_enrichment_workflow"


def encode_run_id(run_id: uuid.UUID) -> bytes:
    return str(run_id).encode()


def decode_run_id(payload: bytes | None) -> uuid.UUID:
    """Decode a job payload into a run id.

    Raises:
        ValueError: Payload missing or not a UUID
    """
    if payload is None:
        raise ValueError("Job payload is None")
    if not isinstance(payload, bytes):
        raise ValueError(f"Job payload must be bytes, got {type(payload)}")
    return uuid.UUID(payload.decode())


async def initialize_pgqueuer() -> tuple[PgQueuer, asyncpg.Pool]:
    """Create the asyncpg pool, install the queue schema and build PgQueuer.

    Returns:
        tuple[PgQueuer, asyncpg.Pool]

    Raises:
        ConfigurationError: If DATABASE_URL not set
        asyncpg.PostgresError: If database connection fails
    """
    log.info("initializing_asyncpg_pool", min_size=2, max_size=10, timeout=30)

    pool = await asyncpg.create_pool(
        dsn=get_queue_dsn(),
        min_size=2,
        max_size=10,
        timeout=30,
        command_timeout=1800,
    )

    driver = AsyncpgPoolDriver(pool)

    # Schema install is not idempotent; an existing schema is fine
    try:
        await QueueManager(driver).queries.install()
        log.info("pgqueuer_schema_installed")
    except (asyncpg.exceptions.DuplicateObjectError, asyncpg.exceptions.DuplicateTableError):
        log.info("pgqueuer_schema_exists")

    pgq = PgQueuer(driver)
    log.info("pgqueuer_initialized", entrypoint=WORKFLOW_ENTRYPOINT)
    return pgq, pool


async def enqueue_workflow_run(run_id: uuid.UUID) -> None:
    """Enqueue one workflow run for the worker.

    Re-enqueueing the same run id is safe: execution resumes from the step log.
    """
    connection = await asyncpg.connect(dsn=get_queue_dsn())
    try:
        queries = Queries(AsyncpgDriver(connection))
        await queries.enqueue(WORKFLOW_ENTRYPOINT, encode_run_id(run_id), 0)
    finally:
        await connection.close()

    log.info("workflow_run_enqueued", run_id=str(run_id), entrypoint=WORKFLOW_ENTRYPOINT)
