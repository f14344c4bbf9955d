"""Server lifecycle: startup, signal-triggered graceful shutdown.

``ServerLifecycle`` drives one server through
``INITIALIZING -> LISTENING -> DRAINING -> STOPPED`` exactly once:

- binds the listen socket and starts uvicorn on it as a background task,
  then marks the health gate ready;
- waits for the first SIGINT/SIGTERM (or ``request_shutdown()``);
- marks the gate not ready, stops accepting connections and gives
  in-flight requests up to ``shutdown_timeout`` seconds to finish before
  they are cancelled.

uvicorn's own signal handling is disabled so the controller is the only
place a shutdown can start from.
"""

import asyncio
import contextlib
import signal
import socket
from enum import Enum
from typing import Iterator

import structlog
import uvicorn
from starlette.types import ASGIApp

from api.health import HealthGate
from config import Config
from utils.errors import ShutdownTimeoutError, StartupError

logger = structlog.get_logger(__name__)

SHUTDOWN_TIMEOUT = 10.0  # seconds

# Extra time granted to uvicorn to cancel leftover requests after the
# ceiling before the serve task itself is cancelled.
_FORCE_CLOSE_GRACE = 1.0

_STARTUP_POLL_INTERVAL = 0.01

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerState(str, Enum):
    """Lifecycle states, in the only order they can occur."""

    INITIALIZING = "initializing"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


def parse_listen_addr(listen_addr: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    An empty host means all interfaces. IPv6 hosts are written in brackets,
    e.g. ``[::1]:3000``.

    Raises:
        StartupError: If the address has no valid port.
    """
    host, sep, port = listen_addr.rpartition(":")
    if not sep:
        raise StartupError(
            f"Invalid listen address {listen_addr!r}: missing port",
            details={"listen_addr": listen_addr},
        )
    try:
        port_number = int(port)
    except ValueError:
        raise StartupError(
            f"Invalid listen address {listen_addr!r}: bad port",
            details={"listen_addr": listen_addr},
        ) from None
    if not 0 <= port_number <= 65535:
        raise StartupError(
            f"Invalid listen address {listen_addr!r}: port out of range",
            details={"listen_addr": listen_addr},
        )
    return host.strip("[]") or "0.0.0.0", port_number


def bind_socket(listen_addr: str) -> socket.socket:
    """Bind and listen on *listen_addr*.

    Raises:
        StartupError: If the address is invalid or cannot be bound.
    """
    host, port = parse_listen_addr(listen_addr)
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        sock = socket.create_server((host, port), family=family, reuse_port=False)
    except OSError as e:
        raise StartupError(
            f"error listening on {listen_addr}: {e}",
            details={"listen_addr": listen_addr},
        ) from e
    sock.setblocking(False)
    return sock


class _Server(uvicorn.Server):
    """uvicorn server that leaves signal handling to ``ServerLifecycle``."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


class ServerLifecycle:
    """One-shot controller for a uvicorn server.

    Attributes:
        state: Current lifecycle state.
        address: ``(host, port)`` actually bound, once listening.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: Config,
        health_gate: HealthGate,
        *,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    ) -> None:
        self._app = app
        self._config = config
        self._health_gate = health_gate
        self._shutdown_timeout = shutdown_timeout
        self._stop = asyncio.Event()
        self._server: _Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._signals_installed: list[signal.Signals] = []
        self.state = ServerState.INITIALIZING
        self.address: tuple[str, int] | None = None

    @property
    def signals_installed(self) -> bool:
        return bool(self._signals_installed)

    async def run(self) -> None:
        """Start, wait for a shutdown request, then drain and stop.

        Raises:
            StartupError: If the server never reaches ``LISTENING``.
        """
        await self.start()
        self._install_signal_handlers()
        try:
            await self._stop.wait()
        finally:
            self._remove_signal_handlers()
        await self.shutdown()

    async def start(self) -> None:
        """Bind the socket and start serving in the background."""
        if self.state is not ServerState.INITIALIZING:
            raise StartupError(f"Cannot start a server in state {self.state.value}")

        sock = bind_socket(self._config.listen_addr)
        self.address = sock.getsockname()[:2]

        uvicorn_config = uvicorn.Config(
            self._app,
            timeout_keep_alive=self._config.idle_timeout,
            timeout_graceful_shutdown=self._shutdown_timeout,
            log_config=None,
            access_log=False,
            server_header=False,
        )

        self._server = _Server(uvicorn_config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                sock.close()
                exc = None if self._serve_task.cancelled() else self._serve_task.exception()
                raise StartupError(
                    f"server on {self._config.listen_addr} exited during startup",
                    details={"listen_addr": self._config.listen_addr},
                ) from exc
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)

        self.state = ServerState.LISTENING
        self._health_gate.mark_healthy()
        logger.info("server_listening", address=f"{self.address[0]}:{self.address[1]}")

    def request_shutdown(self) -> None:
        """Ask a running server to drain and stop. Idempotent."""
        self._stop.set()

    async def shutdown(self) -> None:
        """Drain in-flight requests within the ceiling and stop."""
        if self.state is not ServerState.LISTENING:
            return

        self.state = ServerState.DRAINING
        self._health_gate.mark_unhealthy()
        logger.info("Shutting down gracefully, press Ctrl+C again to force")

        try:
            await self._drain()
        except ShutdownTimeoutError as e:
            logger.error("error shutting down http server", error=e.message, **e.details)

        if not self._serve_task.cancelled() and self._serve_task.exception() is not None:
            logger.error("error shutting down http server", error=repr(self._serve_task.exception()))

        self.state = ServerState.STOPPED
        logger.info("Server shut down")

    async def _drain(self) -> None:
        assert self._server is not None and self._serve_task is not None
        self._server.should_exit = True

        loop = asyncio.get_running_loop()
        started = loop.time()
        done, _ = await asyncio.wait(
            {self._serve_task},
            timeout=self._shutdown_timeout + _FORCE_CLOSE_GRACE,
        )
        if not done:
            self._server.force_exit = True
            self._serve_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._serve_task
            raise ShutdownTimeoutError(
                "graceful shutdown ceiling exceeded",
                details={"timeout": self._shutdown_timeout},
            )

        # uvicorn cancels whatever is still running once the ceiling passes
        # and then returns normally.
        elapsed = loop.time() - started
        if elapsed >= self._shutdown_timeout:
            raise ShutdownTimeoutError(
                "graceful shutdown ceiling exceeded",
                details={"timeout": self._shutdown_timeout, "elapsed": round(elapsed, 3)},
            )

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        # Listen once: a second interrupt gets the default behaviour.
        self._remove_signal_handlers()
        self.request_shutdown()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Windows, or not running in the main thread
                continue
            self._signals_installed.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        while self._signals_installed:
            loop.remove_signal_handler(self._signals_installed.pop())
