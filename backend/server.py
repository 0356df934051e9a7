"""
Process entrypoint: instance guard, serve loop and shutdown handling.

Startup: release our own stale lock, acquire the lock (killing whatever
sits on PORT and PORT+1 once if another instance holds it), pick a free
port, bind, record the port in the lock file and serve until a signal.
"""
from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from dotenv import load_dotenv

# --- Load env BEFORE importing config (so config sees env) ---
ENV_PATH = Path(__file__).with_name(".env")
load_dotenv(ENV_PATH)

from werkzeug.serving import BaseWSGIServer

from answer_cache import AnswerCache
from app import build_pipeline, create_app
from config import get_config, validate_required_secrets
from errors import ConfigError, LockContention, PortBindError
from helpers import RuntimeInfo
from instance_guard import InstanceGuard, find_available_port, kill_port_occupants

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)
RESTART_SIGNAL = getattr(signal, "SIGUSR2", None)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


class AnswerServer(BaseWSGIServer):
    """
    Single-threaded WSGI server with an idle hook.

    `maintenance` runs from serve_forever's loop between requests, which is
    where the answer cache gets swept.
    """

    def __init__(self, host: str, port: int, app, maintenance: Optional[Callable[[], object]] = None):
        self._maintenance = maintenance
        super().__init__(host, port, app)

    def server_bind(self):
        # werkzeug turns bind errors into sys.exit(); surface them as PortBindError instead
        try:
            super().server_bind()
        except OSError as e:
            raise PortBindError(f"Could not bind {self.server_address}: {e}") from e

    def server_activate(self):
        try:
            super().server_activate()
        except OSError as e:
            raise PortBindError(f"Could not listen on {self.server_address}: {e}") from e

    def service_actions(self):
        super().service_actions()
        if self._maintenance is not None:
            try:
                self._maintenance()
            except Exception:
                logger.exception("Maintenance task failed")


def acquire_instance_lock(
    guard: InstanceGuard,
    port: int,
    kill_ports: Callable[[Iterable[int]], List[int]] = kill_port_occupants,
) -> None:
    """
    Startup half of the instance guard. Raises LockContention when the lock
    is still held after one forced recovery attempt.
    """
    guard.release()
    if guard.acquire():
        return

    holder = guard.read()
    logger.error("Could not acquire server lock. Another instance might be running or lock file is stuck.")
    logger.error("Attempting to kill process on port %s and fallback %s...", port, port + 1)
    killed = kill_ports([port, port + 1])
    logger.info("Killed %d process(es) on ports %s and %s", len(killed), port, port + 1)

    if not guard.acquire():
        raise LockContention(
            "Still could not acquire lock after killing ports. Please check manually.",
            owner_pid=holder.pid if holder else None,
        )


class ServerLifecycle:
    """
    Owns the bound server and the lock for the life of the process.

    Shutdown is requested from signal handlers or the app's fatal-error
    hook; the actual socket shutdown runs on a helper thread because
    serve_forever cannot stop itself from inside its own loop.
    """

    def __init__(self, guard: InstanceGuard, shutdown_timeout: float = 10.0):
        self.guard = guard
        self.shutdown_timeout = shutdown_timeout
        self.server: Optional[BaseWSGIServer] = None
        self.exit_code = 0
        self.restart_signal: Optional[int] = None
        self._stopping = threading.Event()
        self._closer: Optional[threading.Thread] = None
        self._watchdog: Optional[threading.Timer] = None

    def install_signal_handlers(self) -> None:
        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, self._on_shutdown_signal)
        if RESTART_SIGNAL is not None:
            signal.signal(RESTART_SIGNAL, self._on_restart_signal)

    def _on_shutdown_signal(self, signum, frame):
        logger.info("Received %s, closing server gracefully...", signal.Signals(signum).name)
        self.request_shutdown(exit_code=0)

    def _on_restart_signal(self, signum, frame):
        logger.info("Restart signal received")
        self.restart_signal = signum
        self.request_shutdown(exit_code=0)

    def on_fatal(self, exc: BaseException) -> None:
        logger.critical("Uncaught exception, shutting down: %r", exc)
        self.request_shutdown(exit_code=1)

    def request_shutdown(self, exit_code: int = 0) -> None:
        if self._stopping.is_set():
            return
        self._stopping.set()
        self.exit_code = exit_code

        self._watchdog = threading.Timer(self.shutdown_timeout, self._force_exit)
        self._watchdog.daemon = True
        self._watchdog.start()

        self._closer = threading.Thread(target=self._close, name="server-shutdown", daemon=True)
        self._closer.start()

    def _close(self) -> None:
        if self.server is not None:
            self.server.shutdown()  # returns once serve_forever has left its loop
            self.server.server_close()
            logger.info("Server closed successfully")
        if self.guard.release():
            logger.info("Removed server lock file")

    def _force_exit(self) -> None:
        logger.error("Could not close connections in time, forcefully shutting down")
        self.guard.release()
        os._exit(1)

    def serve(self) -> int:
        """Run the serve loop until shutdown; returns the exit code."""
        try:
            self.server.serve_forever()
        except Exception:
            logger.exception("Server loop crashed")
            self.exit_code = 1
        finally:
            if self._closer is not None:
                self._closer.join()
            else:
                self.server.server_close()
                self.guard.release()
            if self._watchdog is not None:
                self._watchdog.cancel()
        return self.exit_code

    def redeliver_restart_signal(self) -> None:
        """Hand the restart signal back to the supervisor with its default action."""
        if self.restart_signal is None:
            return
        signal.signal(self.restart_signal, signal.SIG_DFL)
        os.kill(os.getpid(), self.restart_signal)


def run(config=None) -> int:
    try:
        config = config or get_config()
    except ConfigError as e:
        configure_logging()
        logger.critical("ERROR: %s", e)
        return 1
    configure_logging(config.LOG_LEVEL)

    try:
        validate_required_secrets(config)
    except ConfigError as e:
        logger.critical("ERROR: %s", e)
        return 1

    guard = InstanceGuard(config.LOCK_FILE)
    try:
        acquire_instance_lock(guard, config.PORT)
    except LockContention as e:
        logger.critical("%s (lock held by pid %s)", e, e.owner_pid)
        return 1

    lifecycle = ServerLifecycle(guard, shutdown_timeout=config.SHUTDOWN_TIMEOUT_SECONDS)
    cache = AnswerCache.from_config(config)
    runtime = RuntimeInfo()
    try:
        app = create_app(
            config,
            pipeline=build_pipeline(config, cache),
            runtime=runtime,
            on_fatal=lifecycle.on_fatal,
        )

        port = find_available_port(config.PORT, max_attempts=config.PORT_SEARCH_ATTEMPTS)
        logger.info("Attempting to start server on port: %s", port)
        lifecycle.server = AnswerServer(config.HOST, port, app, maintenance=cache.sweep_if_due)
    except (PortBindError, ConfigError) as e:
        logger.critical("Fatal error during server startup: %s", e)
        guard.release()
        return 1

    runtime.port = lifecycle.server.port
    guard.record_port(runtime.port)
    lifecycle.install_signal_handlers()
    logger.info(
        "Server running at http://localhost:%s (PID: %s, env: %s)",
        runtime.port, runtime.pid, "production" if config.IS_PROD else "development",
    )

    exit_code = lifecycle.serve()
    lifecycle.redeliver_restart_signal()
    return exit_code


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
