"""Configuration, observer app and side collaborators for debugtap.

Example:
    # Serve an engine's observer app yourself
    from debugtap import DebugEngine
    from debugtap.api import create_observer_app
    engine = DebugEngine()
    observer_app = create_observer_app(engine)

    # Explicit configuration
    from debugtap.api import EngineConfig, ActivationMode
    config = EngineConfig(mode=ActivationMode.DEVELOPMENT, port=5151)
"""
from .config import ActivationMode, EngineConfig
from .file_tree import TraversalConfig, TraversalResult, TraversalStatus, snapshot_file_tree
from .app import create_observer_app, create_observer_router
from .server import ObserverServer

__all__ = [
    'ActivationMode',
    'EngineConfig',
    'ObserverServer',
    'TraversalConfig',
    'TraversalResult',
    'TraversalStatus',
    'create_observer_app',
    'create_observer_router',
    'snapshot_file_tree',
]
