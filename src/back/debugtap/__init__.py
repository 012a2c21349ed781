"""In-process diagnostic sidecar for ASGI web apps.

Captures log calls and request/response exchanges from a running app,
buffers them, and streams them to any number of observers over a
WebSocket on a separate port.

Example:
    from fastapi import FastAPI
    import debugtap

    app = FastAPI()
    engine = debugtap.attach(app)   # inert unless DEBUGTAP_ENV=development
    console = engine.console
    console.log('hello', {'user': 1})
"""
from .api.config import ActivationMode, EngineConfig
from .engine import DebugEngine, attach
from .recorder import Channel, Console, LogEvent
from .exchanges import RequestExchange, RequestObserverMiddleware
from .routes import RouteDescriptor
from .wire import (
    TOPIC_ERROR,
    TOPIC_FILE_TREE,
    TOPIC_LOG,
    TOPIC_REQUEST,
    TOPIC_ROUTES,
    TOPIC_WARN,
    Envelope,
)

__version__ = '0.1.0'

__all__ = [
    'ActivationMode',
    'Channel',
    'Console',
    'DebugEngine',
    'EngineConfig',
    'Envelope',
    'LogEvent',
    'RequestExchange',
    'RequestObserverMiddleware',
    'RouteDescriptor',
    'TOPIC_ERROR',
    'TOPIC_FILE_TREE',
    'TOPIC_LOG',
    'TOPIC_REQUEST',
    'TOPIC_ROUTES',
    'TOPIC_WARN',
    'attach',
]
