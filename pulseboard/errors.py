"""Error taxonomy shared by the pipeline, the workers and the API."""

from typing import Optional


class PulseboardError(Exception):
    """Base exception for pipeline errors."""
    pass


class TransportError(PulseboardError):
    """Network or HTTP failure talking to an external provider. Retryable."""
    pass


class ParseError(PulseboardError):
    """Model returned output that does not match the extraction contract."""
    pass


class ValidationError(PulseboardError):
    """Malformed inbound event or request. Never retried."""
    pass


class LimitError(PulseboardError):
    """Rate limit hit for a call class. The job is requeued, not failed."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFoundError(PulseboardError):
    """Referenced project, item, cluster or message does not exist."""
    pass


class ConflictError(PulseboardError):
    """Maintenance request that cannot be applied to the current state."""
    pass
