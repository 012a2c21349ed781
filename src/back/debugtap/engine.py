"""Engine handle: owns the buffers, hub, route inventory and observer server.

A ``DebugEngine`` is constructed explicitly and passed to whatever needs
to record or query diagnostics. Activation is decided once, at
construction, from ``EngineConfig.mode``. A deactivated engine owns
nothing: it hands back the original console, leaves piped apps
untouched and answers every other call as a no-op.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from .api.config import EngineConfig
from .api.file_tree import snapshot_file_tree
from .buffers import BufferSet
from .exchanges import RequestObserverMiddleware
from .hub import BroadcastHub
from .observability.logging import configure_logging, get_logger
from .recorder import ChannelLogHandler, Console, EventRecorder
from .routes import RouteInventory
from .wire import TOPIC_ROUTES

logger = get_logger(__name__)


class DebugEngine:
    """Capture, buffer and broadcast for one or more target ASGI apps."""

    def __init__(self, config: EngineConfig | None = None, *, console: Any = None) -> None:
        self.config = config or EngineConfig()
        self.original_console = console if console is not None else Console()
        self.target_apps: list[Any] = []
        self.server = None
        self._log_handler: ChannelLogHandler | None = None
        self._captured_loggers: list[logging.Logger] = []

        if not self.config.is_active:
            self.buffers: BufferSet | None = None
            self.inventory: RouteInventory | None = None
            self.hub: BroadcastHub | None = None
            self.recorder: EventRecorder | None = None
            self._console = self.original_console
            return

        configure_logging()
        root = self.config.file_tree_root
        self.buffers = BufferSet(max_items=self.config.max_retained_events)
        self.inventory = RouteInventory()
        self.hub = BroadcastHub(
            self.buffers,
            self.inventory,
            file_tree=lambda: snapshot_file_tree(root).tree,
        )
        self.recorder = EventRecorder(self.hub, self.buffers)
        self._console = self.recorder.wrap(self.original_console)
        logger.info(
            'engine_activated',
            mode=self.config.mode.value,
            observer_url=self.config.observer_url,
            max_retained_events=self.config.max_retained_events,
        )

    @property
    def deactivated(self) -> bool:
        return self.hub is None

    @property
    def console(self) -> Any:
        """Log entry points for the host to use in place of its own."""
        return self._console

    # ------------------------------------------------------------------
    # Target application wiring
    # ------------------------------------------------------------------

    def pipe(self, app: Any) -> Any:
        """Observe ``app``: install the request observer and listening hook.

        May be called for several apps; the route inventory covers all
        of them. Returns ``app`` so it can be used inline.
        """
        if self.deactivated:
            return app
        if app in self.target_apps:
            return app
        try:
            app.add_middleware(
                RequestObserverMiddleware,
                hub=self.hub,
                buffer=self.buffers.exchanges,
                max_body_bytes=self.config.max_body_bytes,
            )
        except (AttributeError, RuntimeError):
            logger.warning('pipe_failed', app=repr(app), exc_info=True)
            return app
        self.target_apps.append(app)
        self._hook_listening(app)
        logger.info('app_piped', app=type(app).__name__, apps=len(self.target_apps))
        return app

    def _hook_listening(self, app: Any) -> None:
        router = getattr(app, 'router', None)
        original = getattr(router, 'lifespan_context', None)
        if original is None:
            return
        engine = self

        @asynccontextmanager
        async def lifespan_with_listening(app_: Any):
            async with original(app_) as state:
                engine.on_listening()
                yield state

        router.lifespan_context = lifespan_with_listening

    def on_listening(self) -> None:
        """Snapshot the routes of every piped app.

        ``pipe`` calls this from the target's lifespan startup, once the
        app's own startup has run. Under uvicorn that is just before the
        listening socket is bound, not after. A host serving with the
        lifespan protocol disabled never reaches that hook and should call
        this itself once its server is up.
        """
        if self.deactivated:
            return
        self.inventory.take(self.target_apps)

    def capture_logging(self, target: logging.Logger | None = None) -> ChannelLogHandler | None:
        """Record stdlib logging output from ``target`` (default: root logger).

        Installs at most one handler per logger; repeat calls are no-ops.
        """
        if self.deactivated:
            return None
        target = target if target is not None else logging.getLogger()
        if self._log_handler is None:
            self._log_handler = ChannelLogHandler(self.recorder)
        if target not in self._captured_loggers:
            target.addHandler(self._log_handler)
            self._captured_loggers.append(target)
        return self._log_handler

    def release_logging(self) -> None:
        """Remove the capture handler from every logger it was added to."""
        for target in self._captured_loggers:
            target.removeHandler(self._log_handler)
        self._captured_loggers.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def history(self, topic: str) -> tuple:
        """Read-only snapshot of what has been buffered under ``topic``."""
        if self.deactivated:
            return ()
        if topic == TOPIC_ROUTES:
            return self.inventory.routes
        buffer = self.buffers.for_topic(topic)
        return buffer.snapshot() if buffer is not None else ()

    # ------------------------------------------------------------------
    # Observer server lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Serve the observer app on the configured address (background thread)."""
        if self.deactivated or self.server is not None:
            return
        from .api.app import create_observer_app
        from .api.server import ObserverServer

        self.server = ObserverServer(
            create_observer_app(self),
            host=self.config.host,
            port=self.config.port,
        )
        self.server.start()

    def stop(self) -> None:
        if self.server is None:
            return
        self.server.stop()
        self.server = None


def attach(app: Any, config: EngineConfig | None = None, *, console: Any = None) -> DebugEngine:
    """Build an engine, pipe ``app`` into it and start the observer server."""
    engine = DebugEngine(config, console=console)
    engine.pipe(app)
    engine.start()
    return engine
