"""Worker process entry point for enrichment workflows.

Architecture Pattern:
    - Separate Process: runs independently of the API (python -m app.worker)
    - Async Execution: all database operations use async/await
    - Short Transactions: claim → close DB → run steps → reopen DB → update
    - Graceful Shutdown: SIGTERM/SIGINT stop the loop, connections are closed

Usage:
    python -m app.worker
"""

import asyncio
import os
import signal
import sys

import asyncpg

from app.config import get_database_url
from app.database import dispose_engine
from app.utils.logging import configure_logging, get_logger

log = get_logger(__name__)

# Global asyncpg pool reference (for cleanup in shutdown)
asyncpg_pool: asyncpg.Pool | None = None


def request_shutdown(signum: int, task: asyncio.Task) -> None:
    """Stop the claim loop on SIGTERM/SIGINT.

    The in-flight job is cancelled; its run is recorded as `failed` and resumes
    from the step log when retried.
    """
    log.info(
        "shutdown_signal_received",
        signal=signum,
        signal_name=signal.Signals(signum).name,
    )
    task.cancel()


async def worker_main_loop() -> None:
    """Initialize PgQueuer, register entrypoints and run the claim loop."""
    global asyncpg_pool

    worker_id = os.getenv("WORKER_ID", "worker-local")
    log.info("worker_started_with_pgqueuer", worker_id=worker_id)

    try:
        from app.entrypoints import register_entrypoints
        from app.queue import initialize_pgqueuer

        pgq, pool = await initialize_pgqueuer()
        asyncpg_pool = pool

        register_entrypoints(pgq)

        task = asyncio.create_task(pgq.run())
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, request_shutdown, signum, task)

        await task

    except asyncio.CancelledError:
        log.info("worker_cancelled", worker_id=worker_id)
    except Exception as e:
        log.error(
            "worker_fatal_error",
            worker_id=worker_id,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise
    finally:
        await shutdown_worker()
        log.info("worker_shutdown", worker_id=worker_id)


async def shutdown_worker() -> None:
    """Close the queue pool and the SQLAlchemy engine."""
    log.info("closing_database_connections")

    if asyncpg_pool:
        await asyncpg_pool.close()
        log.info("asyncpg_pool_closed")

    await dispose_engine()
    log.info("database_connections_closed")


def main() -> None:
    """Worker process entry point.

    Exit Codes:
        0: Successful shutdown
        1: Fatal error (configuration invalid, database unreachable)
    """
    configure_logging()

    try:
        database_url = get_database_url()
        database_host = (
            database_url.split("@")[-1].split("/")[0] if "@" in database_url else "local"
        )
        log.info("worker_configuration_loaded", database_url_host=database_host)
    except Exception as e:
        log.error("configuration_load_failed", error=str(e), exc_info=True)
        sys.exit(1)

    exit_code = 0
    try:
        asyncio.run(worker_main_loop())
    except KeyboardInterrupt:
        log.info("worker_interrupted_by_user")
    except Exception as e:
        log.error("worker_fatal_error", error=str(e), exc_info=True)
        exit_code = 1

    log.info("worker_exited", exit_code=exit_code)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
