"""Route inventory: a one-time snapshot of the target apps' route tables.

Taken on the first ``DebugEngine.on_listening`` call (the target's
lifespan startup, or an explicit call from the host) and never
recomputed, so routes registered afterwards are not reflected.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable

from .observability.logging import get_logger
from .recorder import callable_source

logger = get_logger(__name__)


@dataclass(frozen=True)
class RouteDescriptor:
    """One registered route."""
    path: str
    methods: str
    handler_source: str

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'methods': self.methods,
            'handler': self.handler_source,
        }


def join_methods(methods: Iterable[str]) -> str:
    """Deduplicate, uppercase and comma-join a verb set (sorted for stability)."""
    return ','.join(sorted({m.upper() for m in methods if m}))


def describe_route(route: Any) -> RouteDescriptor | None:
    """Build a descriptor for a concrete verb route.

    Mounts, websocket routes and anything else without both a path and
    a verb set yield None.
    """
    path = getattr(route, 'path', None)
    methods = getattr(route, 'methods', None)
    if not path or not methods:
        return None
    endpoint = getattr(route, 'endpoint', None)
    source = callable_source(endpoint) if endpoint is not None else ''
    return RouteDescriptor(path=path, methods=join_methods(methods), handler_source=source)


class RouteInventory:
    """Holds the route snapshot; ``take`` only has an effect once."""

    def __init__(self) -> None:
        self._routes: tuple[RouteDescriptor, ...] = ()
        self._taken = False
        self._lock = threading.Lock()

    @property
    def taken(self) -> bool:
        return self._taken

    @property
    def routes(self) -> tuple[RouteDescriptor, ...]:
        return self._routes

    def take(self, apps: Iterable[Any]) -> tuple[RouteDescriptor, ...]:
        """Walk every app's ``routes`` and freeze the result.

        Entries that fail to introspect are skipped; the rest of the
        snapshot still goes through.
        """
        with self._lock:
            if self._taken:
                return self._routes
            collected: list[RouteDescriptor] = []
            for app in apps:
                try:
                    table = list(getattr(app, 'routes', None) or ())
                except Exception:
                    logger.warning('route_table_unreadable', app=repr(app), exc_info=True)
                    continue
                for route in table:
                    try:
                        descriptor = describe_route(route)
                    except Exception:
                        logger.warning('route_skipped', route=repr(route), exc_info=True)
                        continue
                    if descriptor is not None:
                        collected.append(descriptor)
            self._routes = tuple(collected)
            self._taken = True
        logger.info('route_inventory_taken', routes=len(self._routes))
        return self._routes

    def to_payload(self) -> list[dict]:
        return [route.to_dict() for route in self._routes]
