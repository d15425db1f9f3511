"""
Lens Errors

Only usage and environment problems are raised to the caller.
Exporter, listener and plugin failures are logged, never raised.
"""


class LensError(Exception):
    """Base class for all tylo-lens errors."""


class TraceNotStartedError(LensError):
    """A trace was requested before start_trace() with auto-start disabled."""

    def __init__(self, message: str = "Trace not started. Call lens.start_trace() or enable auto_start_trace."):
        super().__init__(message)


class UnsupportedEnvironmentError(LensError):
    """The transport primitive an interceptor needs is not available."""
