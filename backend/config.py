"""Configuration module for the upload server.

Defaults are read from environment variables (a ``.env`` file is honored),
and the CLI in ``run_server.py`` may override any of them. The resulting
``Config`` is immutable and is handed to the server as an opaque object.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from utils.errors import StartupError

# Load environment variables from .env file
load_dotenv()

DEFAULT_DIR = "/tmp"
DEFAULT_LISTEN_ADDR = ":3000"
DEFAULT_FORM_FIELD = "upload"
DEFAULT_UPLOAD_ENDPOINT = "/upload"
DEFAULT_MAX_SIZE_MB = 10
DEFAULT_READ_TIMEOUT = "15s"
DEFAULT_WRITE_TIMEOUT = "15s"
DEFAULT_IDLE_TIMEOUT = "60s"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(StartupError):
    """Raised when a configuration value is invalid."""

    pass


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style duration strings such as
    ``"500ms"``, ``"15s"`` or ``"1m30s"``.

    Raises:
        ConfigError: If the value is not a valid non-negative duration.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos == 0 or pos != len(text):
                raise ConfigError(
                    f"Invalid duration: {value!r}",
                    details={"value": value},
                ) from None

    if seconds < 0:
        raise ConfigError(f"Duration must not be negative: {value!r}", details={"value": value})
    return seconds


def format_duration(seconds: float) -> str:
    """Render seconds the way durations are written on the command line."""
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds:g}s"


@dataclass(frozen=True)
class Config:
    """Server configuration.

    Attributes:
        dir: Directory where uploaded files are saved.
        listen_addr: Address to listen on, in the form ``host:port``.
        form_upload_field: Name of the form field carrying the upload.
        upload_endpoint: Path of the upload endpoint.
        max_in_memory_size: Bytes of each part held in memory; larger parts
            are staged in temporary files.
        read_timeout: Seconds allowed for reading the request body.
        write_timeout: Seconds allowed for persisting the upload.
        idle_timeout: Seconds an idle keep-alive connection is kept open.
    """

    dir: str = DEFAULT_DIR
    listen_addr: str = DEFAULT_LISTEN_ADDR
    form_upload_field: str = DEFAULT_FORM_FIELD
    upload_endpoint: str = DEFAULT_UPLOAD_ENDPOINT
    max_in_memory_size: int = DEFAULT_MAX_SIZE_MB << 20
    read_timeout: float = 15.0
    write_timeout: float = 15.0
    idle_timeout: float = 60.0

    def __str__(self) -> str:
        return (
            f"Config{{dir: {self.dir}, listenAddr: {self.listen_addr}, "
            f"formUploadField: {self.form_upload_field}, uploadEndpoint: {self.upload_endpoint}, "
            f"maxInMemorySize: {self.max_in_memory_size}B, "
            f"readTimeout: {format_duration(self.read_timeout)}, "
            f"writeTimeout: {format_duration(self.write_timeout)}, "
            f"idleTimeout: {format_duration(self.idle_timeout)}}}"
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Build a configuration from environment variables.

        Raises:
            ConfigError: If a numeric or duration variable cannot be parsed.
        """
        max_size_mb = os.getenv("MAX_SIZE_MB", str(DEFAULT_MAX_SIZE_MB))
        try:
            max_size = int(max_size_mb) << 20
        except ValueError:
            raise ConfigError(
                f"MAX_SIZE_MB must be an integer, got {max_size_mb!r}",
                details={"field": "MAX_SIZE_MB", "value": max_size_mb},
            ) from None

        return cls(
            dir=os.getenv("UPLOAD_DIR", DEFAULT_DIR),
            listen_addr=os.getenv("LISTEN_ADDR", DEFAULT_LISTEN_ADDR),
            form_upload_field=os.getenv("FORM_FIELD", DEFAULT_FORM_FIELD),
            upload_endpoint=os.getenv("UPLOAD_ENDPOINT", DEFAULT_UPLOAD_ENDPOINT),
            max_in_memory_size=max_size,
            read_timeout=parse_duration(os.getenv("READ_TIMEOUT", DEFAULT_READ_TIMEOUT)),
            write_timeout=parse_duration(os.getenv("WRITE_TIMEOUT", DEFAULT_WRITE_TIMEOUT)),
            idle_timeout=parse_duration(os.getenv("IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT)),
        )


def validate_directory(path: str) -> Path:
    """Check that *path* exists and is a directory.

    Returns:
        The directory as a ``Path``.

    Raises:
        ConfigError: If the path cannot be inspected or is not a directory.
    """
    directory = Path(path)
    try:
        directory.stat()
    except OSError as e:
        raise ConfigError(
            f"Error checking configured directory: {e}",
            details={"dir": path},
        ) from e

    if not directory.is_dir():
        raise ConfigError(
            f"Configured path is not a directory: {path}",
            details={"dir": path},
        )
    return directory
