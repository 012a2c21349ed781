"""Bounded file-tree snapshot with predictable degradation.

Produces the nested ``name -> file text | subtree`` mapping sent to
observers on connect and served by ``GET /api/file-tree``. Enforces max
nodes, max depth, a time budget and a per-file size cap so that a large
project root cannot stall observer connection setup. Unreadable entries
are skipped; the rest of the snapshot still goes through.

Degradation modes:
  - COMPLETE: Full tree within all bounds
  - DEPTH_LIMITED: Max depth reached, deeper entries omitted
  - NODE_LIMITED: Max nodes reached, remaining entries omitted
  - TIME_LIMITED: Time budget exhausted, remaining entries omitted
  - ERROR: Root could not be listed
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 5_000
DEFAULT_MAX_DEPTH = 12
DEFAULT_TIME_BUDGET = 2.0  # seconds
DEFAULT_MAX_FILE_BYTES = 256 * 1024
DEFAULT_EXCLUDED_NAMES = frozenset({
    '.git', '__pycache__', '.venv', 'venv', 'node_modules', '.mypy_cache', '.pytest_cache',
})


class TraversalStatus(Enum):
    """Status of a tree snapshot."""
    COMPLETE = 'complete'
    DEPTH_LIMITED = 'depth_limited'
    NODE_LIMITED = 'node_limited'
    TIME_LIMITED = 'time_limited'
    ERROR = 'error'


@dataclass
class TraversalConfig:
    """Configuration for a bounded snapshot."""
    max_nodes: int = DEFAULT_MAX_NODES
    max_depth: int = DEFAULT_MAX_DEPTH
    time_budget: float = DEFAULT_TIME_BUDGET
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    excluded_names: frozenset[str] = DEFAULT_EXCLUDED_NAMES


@dataclass
class TraversalResult:
    """Result of a bounded snapshot."""
    tree: dict[str, Any] = field(default_factory=dict)
    status: TraversalStatus = TraversalStatus.COMPLETE
    root_path: str = '.'
    total_visited: int = 0
    skipped: int = 0
    elapsed_seconds: float = 0.0
    error_message: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.status == TraversalStatus.COMPLETE

    def to_response(self) -> dict:
        """Body for the side read-only endpoint."""
        body: dict = {
            'tree': self.tree,
            'path': self.root_path,
        }
        if not self.is_complete:
            body['truncated'] = True
            body['truncation_reason'] = self.status.value
            body['total_visited'] = self.total_visited
            body['elapsed_ms'] = round(self.elapsed_seconds * 1000, 1)
        if self.skipped:
            body['skipped'] = self.skipped
        if self.error_message:
            body['error'] = self.error_message
        return body


class TraversalBudget:
    """Tracks resource consumption during a snapshot.

    Check methods return False once any limit is exceeded.
    """

    def __init__(self, config: TraversalConfig | None = None) -> None:
        self._config = config or TraversalConfig()
        self._start_time = time.monotonic()
        self._node_count = 0
        self._exhausted_reason: TraversalStatus | None = None

    @property
    def config(self) -> TraversalConfig:
        return self._config

    @property
    def node_count(self) -> int:
        return self._node_count

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start_time

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted_reason is not None

    @property
    def exhaustion_reason(self) -> TraversalStatus | None:
        return self._exhausted_reason

    def check_depth(self, depth: int) -> bool:
        """Returns False if depth is beyond the limit (marks DEPTH_LIMITED)."""
        if depth > self._config.max_depth:
            if self._exhausted_reason is None:
                self._exhausted_reason = TraversalStatus.DEPTH_LIMITED
            return False
        return True

    def check_node(self) -> bool:
        """Record a node visit. Returns False if node limit exceeded."""
        self._node_count += 1
        if self._node_count > self._config.max_nodes:
            self._exhausted_reason = TraversalStatus.NODE_LIMITED
            return False
        return True

    def check_time(self) -> bool:
        """Returns False if the time budget is spent."""
        if self.elapsed > self._config.time_budget:
            self._exhausted_reason = TraversalStatus.TIME_LIMITED
            return False
        return True


def read_file_text(path: Path, max_bytes: int) -> str:
    """File contents as text; oversized files are cut at max_bytes."""
    with path.open('rb') as fh:
        data = fh.read(max_bytes + 1)
    text = data[:max_bytes].decode('utf-8', errors='replace')
    if len(data) > max_bytes:
        text += f'\n... [truncated at {max_bytes} bytes]'
    return text


def snapshot_file_tree(root: Path | str, config: TraversalConfig | None = None) -> TraversalResult:
    """Walk ``root`` into a nested mapping of file contents.

    Directories map to sub-mappings, files to their text. Never raises:
    an unlistable root yields an empty tree with ERROR status.
    """
    root = Path(root)
    budget = TraversalBudget(config)
    skipped = 0

    def walk(directory: Path, depth: int) -> dict[str, Any]:
        nonlocal skipped
        tree: dict[str, Any] = {}
        try:
            names = sorted(os.listdir(directory))
        except OSError:
            skipped += 1
            logger.debug('Skipping unlistable directory %s', directory)
            return tree
        for name in names:
            if budget.is_exhausted and budget.exhaustion_reason is not TraversalStatus.DEPTH_LIMITED:
                break
            if name in budget.config.excluded_names:
                continue
            if not budget.check_time() or not budget.check_node():
                break
            path = directory / name
            try:
                if path.is_dir():
                    if not budget.check_depth(depth + 1):
                        continue
                    tree[name] = walk(path, depth + 1)
                else:
                    tree[name] = read_file_text(path, budget.config.max_file_bytes)
            except OSError:
                skipped += 1
                logger.debug('Skipping unreadable entry %s', path)
        return tree

    if not root.is_dir():
        return TraversalResult(
            status=TraversalStatus.ERROR,
            root_path=str(root),
            error_message=f'Not a directory: {root}',
        )

    tree = walk(root, 0)
    return TraversalResult(
        tree=tree,
        status=budget.exhaustion_reason or TraversalStatus.COMPLETE,
        root_path=str(root),
        total_visited=budget.node_count,
        skipped=skipped,
        elapsed_seconds=budget.elapsed,
    )
