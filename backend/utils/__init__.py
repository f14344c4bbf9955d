"""Utility modules for the upload server backend."""

from utils.errors import (
    ShutdownTimeoutError,
    StartupError,
    UploadServerError,
)
from utils.logging import configure_logging, get_logger

__all__ = [
    # Exceptions
    "ShutdownTimeoutError",
    "StartupError",
    "UploadServerError",
    # Logging
    "configure_logging",
    "get_logger",
]
