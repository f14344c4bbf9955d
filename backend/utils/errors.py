"""Exception types for the upload server.

Handler-level failures never surface as exceptions: each handler resolves
them to an HTTP response at the point of detection. The classes here cover
the process-level failures that happen outside a request.
"""


class UploadServerError(Exception):
    """Base exception for upload server errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StartupError(UploadServerError):
    """Raised when the server cannot reach the listening state.

    Fatal: the bootstrap reports it and exits non-zero.
    """

    pass


class ShutdownTimeoutError(UploadServerError):
    """Raised when draining in-flight requests exceeds the shutdown ceiling."""

    pass
