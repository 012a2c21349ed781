"""Integration tests for DebugEngine wired to a real FastAPI target app.

These tests validate that capture, buffering, route inventory and the
observer server work together, and that a deactivated engine leaves the
target completely untouched.
"""
import asyncio
import logging
import socket

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

import debugtap
from debugtap import (
    TOPIC_ERROR,
    TOPIC_LOG,
    TOPIC_REQUEST,
    TOPIC_ROUTES,
    TOPIC_WARN,
    ActivationMode,
    Console,
    DebugEngine,
)
from debugtap.api.server import ObserverServer
from debugtap.exchanges import RequestObserverMiddleware


def target_app():
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.post('/orders')
    async def create_order(request: Request):
        order = await request.json()
        await asyncio.sleep(0.05)
        return {'created': order}

    @app.get('/orders/{order_id}')
    async def get_order(order_id: str):
        return {'id': order_id}

    return app


def free_port():
    with socket.socket() as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


@pytest.fixture
def engine(dev_config):
    engine = DebugEngine(dev_config, console=Console())
    yield engine
    engine.release_logging()
    engine.stop()


class TestDeactivatedEngine:
    """Production and test modes install nothing."""

    @pytest.fixture(params=[ActivationMode.PRODUCTION, ActivationMode.TEST])
    def inert(self, request, dev_config):
        dev_config.mode = request.param
        return DebugEngine(dev_config)

    def test_owns_nothing(self, inert):
        assert inert.deactivated
        assert inert.hub is None
        assert inert.buffers is None
        assert inert.inventory is None

    def test_pipe_leaves_app_untouched(self, inert):
        app = target_app()
        lifespan = app.router.lifespan_context
        assert inert.pipe(app) is app
        assert app.user_middleware == []
        assert app.router.lifespan_context is lifespan
        assert inert.target_apps == []

    def test_console_is_the_original(self, dev_config, capsys):
        original = Console()
        dev_config.mode = ActivationMode.PRODUCTION
        inert = DebugEngine(dev_config, console=original)
        assert inert.console is original
        inert.console.log('plain')
        assert capsys.readouterr().out == 'plain\n'
        assert inert.history(TOPIC_LOG) == ()

    def test_other_operations_are_noops(self, inert):
        assert inert.capture_logging() is None
        inert.on_listening()
        inert.start()
        assert inert.server is None
        inert.stop()
        for topic in (TOPIC_LOG, TOPIC_WARN, TOPIC_ERROR, TOPIC_REQUEST, TOPIC_ROUTES):
            assert inert.history(topic) == ()

    def test_requests_not_captured(self, inert):
        app = inert.pipe(target_app())
        response = TestClient(app).post('/orders', json={'a': 1})
        assert response.status_code == 200
        assert inert.history(TOPIC_REQUEST) == ()

    def test_attach_is_inert(self, dev_config):
        dev_config.mode = ActivationMode.PRODUCTION
        engine = debugtap.attach(target_app(), dev_config)
        assert engine.deactivated
        assert engine.server is None


class TestActiveEngine:
    """Development mode captures logs, exchanges and routes."""

    def test_pipe_installs_observer_once(self, engine):
        app = target_app()
        engine.pipe(app)
        engine.pipe(app)
        observers = [m for m in app.user_middleware if m.cls is RequestObserverMiddleware]
        assert len(observers) == 1
        assert engine.target_apps == [app]

    def test_exchange_captured(self, engine):
        app = engine.pipe(target_app())
        with TestClient(app) as client:
            response = client.post('/orders', json={'a': 1})
        assert response.json() == {'created': {'a': 1}}

        [exchange] = engine.history(TOPIC_REQUEST)
        assert exchange.response.status_code == 200
        assert exchange.body['a'] == 1
        assert 45 <= exchange.response.duration_ms < 2000

    def test_routes_snapshot_on_startup(self, engine):
        app = engine.pipe(target_app())
        assert engine.history(TOPIC_ROUTES) == ()
        with TestClient(app):
            pass
        routes = engine.history(TOPIC_ROUTES)
        assert [(r.path, r.methods) for r in routes] == [
            ('/orders', 'POST'),
            ('/orders/{order_id}', 'GET'),
        ]

    def test_routes_taken_during_lifespan_startup(self, engine):
        app = engine.pipe(target_app())
        with TestClient(app):
            assert engine.inventory.taken

    def test_without_lifespan_host_calls_on_listening(self, engine):
        app = engine.pipe(target_app())
        client = TestClient(app)
        assert client.get('/orders/1').status_code == 200
        assert engine.history(TOPIC_ROUTES) == ()

        engine.on_listening()
        assert [r.path for r in engine.history(TOPIC_ROUTES)] == ['/orders', '/orders/{order_id}']

    def test_routes_across_multiple_apps(self, engine):
        first = engine.pipe(target_app())
        second = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @second.put('/admin')
        async def admin():
            return None

        engine.pipe(second)
        engine.on_listening()
        assert [r.path for r in engine.history(TOPIC_ROUTES)] == [
            '/orders', '/orders/{order_id}', '/admin',
        ]
        assert first in engine.target_apps

    def test_console_transparent_and_recorded(self, engine, capsys):
        engine.console.log('a', 1)
        engine.console.log('b')
        out = capsys.readouterr().out
        assert out == 'a 1\nb\n'
        assert [e.args for e in engine.history(TOPIC_LOG)] == [('a', 1), ('b',)]

    def test_capture_logging(self, engine):
        host_logger = logging.getLogger('tests.integration.host')
        host_logger.setLevel(logging.INFO)
        first = engine.capture_logging(host_logger)
        second = engine.capture_logging(host_logger)
        assert first is second
        assert host_logger.handlers.count(first) == 1

        host_logger.warning('disk %s', 'low')
        host_logger.info('ready')
        assert [e.args for e in engine.history(TOPIC_WARN)] == [('disk low',)]
        assert [e.args for e in engine.history(TOPIC_LOG)] == [('ready',)]

        engine.release_logging()
        assert first not in host_logger.handlers

    def test_engine_logs_never_captured(self, engine):
        engine.capture_logging(logging.getLogger('debugtap'))
        logging.getLogger('debugtap.tests').warning('internal')
        assert engine.history(TOPIC_WARN) == ()

    def test_retention_cap(self, dev_config):
        dev_config.max_retained_events = 2
        engine = DebugEngine(dev_config, console=Console())
        for i in range(5):
            engine.console.error(i)
        assert [e.args for e in engine.history(TOPIC_ERROR)] == [(3,), (4,)]

    def test_unknown_topic_history(self, engine):
        assert engine.history('nope') == ()

    @pytest.mark.asyncio
    async def test_async_client_exchange(self, engine):
        app = engine.pipe(target_app())
        transport = ASGITransport(app=app, client=('198.51.100.4', 1234))
        async with AsyncClient(transport=transport, base_url='http://target') as client:
            response = await client.get('/orders/42?expand=items')
        assert response.status_code == 200

        [exchange] = engine.history(TOPIC_REQUEST)
        assert exchange.ip == '198.51.100.4'
        assert exchange.params == {'order_id': '42'}
        assert exchange.query == {'expand': 'items'}
        assert exchange.full_url == 'target/orders/42?expand=items'


class TestObserverServer:
    """The observer app on a real socket."""

    def test_start_and_stop(self, engine):
        engine.config.port = free_port()
        engine.start()
        server = engine.server
        assert server is not None
        assert server.wait_started()
        engine.start()
        assert engine.server is server

        engine.stop()
        assert engine.server is None
        assert not server.running

    def test_bind_failure_is_not_fatal(self):
        with socket.socket() as sock:
            sock.bind(('127.0.0.1', 0))
            sock.listen()
            port = sock.getsockname()[1]

            server = ObserverServer(FastAPI(), host='127.0.0.1', port=port)
            server.start()
            assert server.wait_started() is False
            server.stop()
            assert server.failed

    def test_attach_starts_server(self, dev_config):
        dev_config.port = free_port()
        engine = debugtap.attach(target_app(), dev_config)
        try:
            assert not engine.deactivated
            assert engine.server.wait_started()
            assert len(engine.target_apps) == 1
        finally:
            engine.stop()
