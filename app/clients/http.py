"""Shared HTTP error classification for external service clients.

Every client routes its requests through `send`, so the retry decision made by
the Step Orchestrator depends only on the exception type:

    timeout / connection failure   → TransientExternalError (retried)
    429, 5xx                       → TransientExternalError (retried)
    any other 4xx                  → ExternalServiceError (terminal)
"""

from collections.abc import Awaitable

import httpx

from app.exceptions import ExternalServiceError, TransientExternalError
from app.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def is_retriable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def raise_for_service_status(service: str, response: httpx.Response) -> None:
    """Raise the classified error for a non-2xx response.

    Raises:
        TransientExternalError: On 429 or 5xx.
        ExternalServiceError: On any other 4xx.
    """
    status_code = response.status_code
    if status_code < 400:
        return

    message = f"HTTP {status_code}: {response.text[:200]}"
    if is_retriable_status(status_code):
        log.warning("external_service_retriable_error", service=service, status_code=status_code)
        raise TransientExternalError(service, message, status_code=status_code)

    log.error("external_service_error", service=service, status_code=status_code)
    raise ExternalServiceError(service, message, status_code=status_code)


async def send(service: str, request: Awaitable[httpx.Response]) -> httpx.Response:
    """Await an httpx request and classify any failure.

    Args:
        service: Dependency name used in errors and logs
        request: Pending request, e.g. ``client.post(url, json=...)``

    Returns:
        The successful response

    Raises:
        TransientExternalError: Timeouts, transport failures, 429, 5xx
        ExternalServiceError: Other 4xx responses
    """
    try:
        response = await request
    except httpx.TimeoutException as e:
        log.warning("external_service_timeout", service=service, error=str(e))
        raise TransientExternalError(service, f"Timeout: {e}") from e
    except httpx.TransportError as e:
        log.warning("external_service_unreachable", service=service, error=str(e))
        raise TransientExternalError(service, f"Network error: {e}") from e

    raise_for_service_status(service, response)
    return response
