"""Background uvicorn server for the observer app.

The observer server must never take the host down: a port that is
already bound, or any other startup failure, is logged and the engine
carries on capturing without a live push channel.
"""
from __future__ import annotations

import threading
import time

import uvicorn
from fastapi import FastAPI

from ..observability.logging import get_logger

logger = get_logger(__name__)

STARTUP_TIMEOUT = 5.0  # seconds
SHUTDOWN_TIMEOUT = 5.0  # seconds


class ObserverServer:
    """Runs one uvicorn server on a daemon thread."""

    def __init__(self, app: FastAPI, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self._config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,
            access_log=False,
            lifespan='on',
        )
        self._server = uvicorn.Server(self._config)
        self._thread: threading.Thread | None = None
        self.failed = False

    @property
    def started(self) -> bool:
        return bool(self._server.started)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f'debugtap-observer-{self.port}',
            daemon=True,
        )
        self._thread.start()

    def _run(self) -> None:
        try:
            self._server.run()
        except (OSError, SystemExit) as exc:
            # uvicorn exits the serving thread on bind failure
            self.failed = True
            logger.error('observer_server_failed', host=self.host, port=self.port, error=repr(exc))
        except Exception:
            self.failed = True
            logger.exception('observer_server_crashed', host=self.host, port=self.port)

    def wait_started(self, timeout: float = STARTUP_TIMEOUT) -> bool:
        """Block until the server is accepting connections or has failed."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.started:
                return True
            if self.failed or not self.running:
                return False
            time.sleep(0.05)
        return self.started

    def stop(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        if self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning('observer_server_stop_timeout', timeout=timeout)
        self._thread = None
