"""Observer application factory.

Serves the push channel at ``/ws`` plus a few read-only side endpoints.
It runs on its own server (see ``api.server``), never inside the target
application.
"""
import asyncio
import webbrowser
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, WebSocket
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from ..hub import WebSocketObserver
from ..observability.logging import get_logger, observer_id_ctx
from ..observability.metrics import metrics_text
from .file_tree import snapshot_file_tree

if TYPE_CHECKING:
    from ..engine import DebugEngine

logger = get_logger(__name__)


def create_observer_router(engine: 'DebugEngine') -> APIRouter:
    """Create the router for observer connections and side endpoints.

    Args:
        engine: Active engine whose hub and buffers are served
    """
    router = APIRouter()

    @router.websocket('/ws')
    async def observer_socket(websocket: WebSocket):
        """Replay buffered history, then stream live events until disconnect.

        Inbound frames are read only to notice the disconnect.
        """
        observer = WebSocketObserver(websocket)
        token = observer_id_ctx.set(observer.observer_id)
        # Registered before accept so nothing published in between is lost.
        registered = await run_in_threadpool(engine.hub.connect, observer)
        pump = None
        try:
            await websocket.accept()
            if not registered:
                await websocket.close(code=1011)
                return
            pump = asyncio.create_task(observer.pump())
            while True:
                message = await websocket.receive()
                if message['type'] == 'websocket.disconnect':
                    break
        except Exception:
            logger.debug('observer_socket_closed', exc_info=True)
        finally:
            engine.hub.disconnect(observer)
            observer.close()
            if pump is not None:
                pump.cancel()
                with suppress(asyncio.CancelledError):
                    await pump
            observer_id_ctx.reset(token)

    @router.get('/api/routes')
    async def list_routes():
        """Route inventory snapshot (empty until the target has started up)."""
        return {
            'taken': engine.inventory.taken,
            'routes': engine.inventory.to_payload(),
        }

    @router.get('/api/file-tree')
    async def get_file_tree():
        """Point-in-time file-tree snapshot with truncation info."""
        result = await run_in_threadpool(snapshot_file_tree, engine.config.file_tree_root)
        return result.to_response()

    @router.get('/metrics')
    async def prometheus_metrics():
        """Prometheus metrics exposition endpoint."""
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    return router


def create_observer_app(engine: 'DebugEngine') -> FastAPI:
    """Create the observer FastAPI application for an active engine.

    Args:
        engine: The engine to expose. Its config supplies the static UI
            directory and the browser-open flag.
    """
    config = engine.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info('observer_server_started', url=config.observer_url)
        if config.open_browser:
            try:
                webbrowser.open(config.observer_url)
            except Exception:
                logger.warning('browser_open_failed', url=config.observer_url, exc_info=True)
        yield
        logger.info('observer_server_stopped')

    app = FastAPI(
        title='debugtap observer',
        version='0.1.0',
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.engine = engine

    app.include_router(create_observer_router(engine))

    @app.get('/health')
    async def health():
        """Health check endpoint."""
        return {
            'status': 'ok',
            'mode': config.mode.value,
            'observers': engine.hub.observer_count,
            'apps': len(engine.target_apps),
        }

    # Mounted last so API routes take precedence
    static_dir = config.static_dir
    if static_dir is not None:
        if static_dir.is_dir():
            app.mount('/', StaticFiles(directory=static_dir, html=True), name='observer-ui')
        else:
            logger.warning('static_dir_missing', path=str(static_dir))

    return app
