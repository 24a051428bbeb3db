"""Shared exceptions for the application.

This module contains exception classes used across the webhook reconciler,
the step orchestrator, the external clients and the HTTP layer, so that
services never import each other just to share an error type.

Taxonomy:
    ClientError: malformed or unauthenticated request, never retried.
    NotFoundError: referenced asset absent or owned by someone else.
    UncorrelatedEventError: provider event not matchable yet, redelivered.
    TransientExternalError: timeout / 429 / 5xx from a dependency, retried.
    ExternalServiceError: any other dependency failure, terminal.
    TerminalWorkflowError: retries exhausted or empty/invalid result.
"""


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    This error indicates a configuration problem that prevents an operation
    from proceeding (e.g., MUX_WEBHOOK_SECRET or OPENAI_API_KEY not set).
    """

    pass


class ClientError(Exception):
    """Raised for malformed requests (HTTP 400 semantics, never retried)."""

    pass


class WebhookSignatureError(ClientError):
    """Raised when an inbound webhook signature is missing, stale or invalid."""

    pass


class NotFoundError(Exception):
    """Raised when an asset (or workflow run) is absent or not owned by the caller.

    Attributes:
        resource: Resource kind ("asset", "workflow_run").
        identifier: Identifier that was looked up.
    """

    def __init__(self, resource: str, identifier: object):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class UncorrelatedEventError(Exception):
    """Raised when a provider event cannot be matched to an asset yet.

    A track-ready event correlates on the provider asset id, which only
    created/ready bind to the row. Answered with a non-2xx status so the
    provider redelivers it.

    Attributes:
        lookup: Correlation column that was searched.
        key: Correlation value that matched no row.
    """

    def __init__(self, lookup: str, key: str):
        self.lookup = lookup
        self.key = key
        super().__init__(f"No asset matches {lookup}={key} yet")


class ExternalServiceError(Exception):
    """Raised for non-retriable failures of an external dependency (4xx-class).

    Attributes:
        service: Dependency name ("openai", "mux", "catbox").
        status_code: HTTP status code when the failure came from a response.
    """

    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class TransientExternalError(ExternalServiceError):
    """Raised for retriable dependency failures (timeouts, 429, 5xx)."""

    pass


class TerminalWorkflowError(Exception):
    """Raised when a workflow run cannot complete.

    Either a step exhausted its retries, or a dependency returned an
    empty/invalid result. The run is marked failed and no partial metadata
    is committed by the persist steps.

    Attributes:
        step: Name of the step that failed, if known.
    """

    def __init__(self, message: str, step: str | None = None):
        self.step = step
        super().__init__(message)

    def __str__(self) -> str:
        base_message = super().__str__()
        if self.step:
            return f"{base_message} (step={self.step})"
        return base_message


class InvalidStateTransitionError(Exception):
    """Raised when attempting an invalid WorkflowRun status transition.

    Attributes:
        from_status: The current RunStatus before the attempted transition.
        to_status: The RunStatus that was attempted but is not valid.

    Example:
        >>> run.status = RunStatus.COMPLETED
        >>> run.status = RunStatus.RUNNING  # completed runs are terminal
        InvalidStateTransitionError: Invalid transition: completed -> running
    """

    def __init__(self, message: str, from_status: "RunStatus", to_status: "RunStatus"):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message)

    def __str__(self) -> str:
        base_message = super().__str__()
        return f"{base_message} (from={self.from_status.value}, to={self.to_status.value})"
