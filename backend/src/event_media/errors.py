"""Error taxonomy shared by every pipeline component.

Adapters translate backend exceptions (botocore, SQLAlchemy, filesystem) into
these types so callers never see a backend-specific error class.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""
    pass


class InvalidInput(PipelineError):
    """Raised when a request is missing or has an invalid parameter.

    The operation is never attempted.
    """
    pass


class Unauthorized(PipelineError):
    """Raised when the shared admin or cron secret does not match."""
    pass


class RemoteError(PipelineError):
    """Raised when a backend call fails.

    Attributes:
        backend: Name of the failing backend ('object_store', 'metadata', 'biometrics')
        transient: True if retrying the call may succeed (timeouts, 5xx, throttling)
    """

    def __init__(self, message: str, backend: str = "unknown", transient: bool = False):
        super().__init__(message)
        self.backend = backend
        self.transient = transient

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"{self.__class__.__name__}({str(self)!r}, "
            f"backend={self.backend!r}, transient={self.transient})"
        )


class ObjectNotFound(RemoteError):
    """Raised when an object, row or collection does not exist.

    Deletes and layout fallbacks treat this as "nothing to do".
    """

    def __init__(self, message: str, backend: str = "object_store", path: Optional[str] = None):
        super().__init__(message, backend=backend, transient=False)
        self.path = path


class LockTimeout(PipelineError):
    """Raised when the per-event lock cannot be acquired in time."""
    pass
