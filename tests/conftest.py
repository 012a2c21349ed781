"""Pytest configuration for debugtap tests."""
import sys
from pathlib import Path

# Add src/back to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC_BACK = _PROJECT_ROOT / 'src' / 'back'
if str(_SRC_BACK) not in sys.path:
    sys.path.insert(0, str(_SRC_BACK))

import pytest

from debugtap.api.config import ActivationMode, EngineConfig
from debugtap.buffers import BufferSet
from debugtap.hub import BroadcastHub
from debugtap.routes import RouteInventory


class FakeObserver:
    """Observer that records every envelope it is offered."""

    def __init__(self, alive: bool = True, die_after: int | None = None):
        self.received = []
        self.alive = alive
        self.die_after = die_after

    def offer(self, envelope):
        if not self.alive:
            return False
        if self.die_after is not None and len(self.received) >= self.die_after:
            self.alive = False
            return False
        self.received.append(envelope)
        return True

    def topics(self):
        return [env.topic for env in self.received]


@pytest.fixture
def project_root(tmp_path):
    """A small project directory used as the file-tree root."""
    root = tmp_path / 'project'
    root.mkdir()
    (root / 'app.py').write_text('print("hi")\n')
    (root / 'pkg').mkdir()
    (root / 'pkg' / 'util.py').write_text('X = 1\n')
    return root


@pytest.fixture
def dev_config(project_root):
    """Active engine config that never touches a real port or browser."""
    return EngineConfig(
        mode=ActivationMode.DEVELOPMENT,
        port=0,
        max_retained_events=None,
        file_tree_root=project_root,
        open_browser=False,
        static_dir=None,
    )


@pytest.fixture
def buffers():
    return BufferSet()


@pytest.fixture
def inventory():
    return RouteInventory()


@pytest.fixture
def hub(buffers, inventory):
    return BroadcastHub(buffers, inventory, file_tree=lambda: {'app.py': 'print("hi")\n'})


@pytest.fixture
def observer_factory():
    return FakeObserver
