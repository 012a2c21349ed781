"""Configuration for the debugtap engine."""
import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 5050
DEFAULT_MAX_BODY_BYTES = 1024 * 1024


class ActivationMode(str, Enum):
    """Environment signal gating whether anything is installed at all.

    - DEVELOPMENT: capture, buffer and broadcast
    - PRODUCTION / TEST: fully inert engine
    """
    DEVELOPMENT = 'development'
    PRODUCTION = 'production'
    TEST = 'test'

    @property
    def is_active(self) -> bool:
        return self is ActivationMode.DEVELOPMENT

    @classmethod
    def from_env(cls) -> 'ActivationMode':
        """Get activation mode from DEBUGTAP_ENV env var.

        Defaults to DEVELOPMENT if not specified. Case-insensitive.
        Unknown values resolve to PRODUCTION so a typo can only ever
        switch the engine off.
        """
        mode_str = os.environ.get('DEBUGTAP_ENV', 'development').strip().lower()
        try:
            return cls(mode_str)
        except ValueError:
            logger.warning(
                "Invalid DEBUGTAP_ENV='%s' (expected one of: %s); engine stays inert",
                mode_str, ', '.join(m.value for m in cls),
            )
            return cls.PRODUCTION


def _env_int(name: str, default: int | None, minimum: int = 0) -> int | None:
    """Read an integer env var, ignoring malformed or out-of-range values."""
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s='%s'", name, raw)
        return default
    if value < minimum:
        logger.warning("Ignoring %s=%d (minimum is %d)", name, value, minimum)
        return default
    return value


def _env_flag(name: str) -> bool:
    raw = os.environ.get(name, '').strip().lower()
    return raw in {'1', 'true', 'yes', 'on'}


def default_file_tree_root() -> Path:
    """Directory of the host's entry script, else the working directory.

    DEBUGTAP_FILE_TREE_ROOT overrides both.
    """
    explicit = os.environ.get('DEBUGTAP_FILE_TREE_ROOT', '').strip()
    if explicit:
        return Path(explicit)
    main = sys.modules.get('__main__')
    main_file = getattr(main, '__file__', None)
    if main_file:
        return Path(main_file).resolve().parent
    return Path.cwd()


@dataclass
class EngineConfig:
    """Central configuration for a DebugEngine.

    Passed to the engine and to create_observer_app(), enabling
    dependency injection and avoiding global state.
    """
    mode: ActivationMode = field(default_factory=ActivationMode.from_env)

    # Observer server bind address
    host: str = field(default_factory=lambda: os.environ.get('DEBUGTAP_HOST', DEFAULT_HOST))
    port: int = field(default_factory=lambda: _env_int('DEBUGTAP_PORT', DEFAULT_PORT))

    # Per-buffer cap (drop oldest past N). None retains everything observed.
    max_retained_events: int | None = field(
        default_factory=lambda: _env_int('DEBUGTAP_MAX_EVENTS', None, minimum=1)
    )

    # Request bodies larger than this are captured truncated.
    max_body_bytes: int = field(
        default_factory=lambda: _env_int('DEBUGTAP_MAX_BODY_BYTES', DEFAULT_MAX_BODY_BYTES)
    )

    file_tree_root: Path = field(default_factory=default_file_tree_root)

    open_browser: bool = field(default_factory=lambda: _env_flag('DEBUGTAP_OPEN_BROWSER'))

    # Directory holding the built observer UI (optional)
    static_dir: Path | None = field(
        default_factory=lambda: Path(os.environ['DEBUGTAP_STATIC_DIR'])
        if os.environ.get('DEBUGTAP_STATIC_DIR') else None
    )

    def __post_init__(self) -> None:
        if isinstance(self.mode, str):
            self.mode = ActivationMode(self.mode.lower())
        if isinstance(self.file_tree_root, str):
            self.file_tree_root = Path(self.file_tree_root)
        if isinstance(self.static_dir, str):
            self.static_dir = Path(self.static_dir)
        self.validate()

    @property
    def is_active(self) -> bool:
        return self.mode.is_active

    @property
    def observer_url(self) -> str:
        return f'http://{self.host}:{self.port}'

    def validate(self) -> None:
        """Validate explicit wiring values.

        Raises:
            ValueError: If a numeric setting is out of range
        """
        problems = []
        if self.max_retained_events is not None and self.max_retained_events < 1:
            problems.append(f'max_retained_events must be >= 1 or None, got {self.max_retained_events}')
        if self.max_body_bytes < 0:
            problems.append(f'max_body_bytes must be >= 0, got {self.max_body_bytes}')
        if not 0 <= self.port <= 65535:
            problems.append(f'port must be in 0..65535, got {self.port}')
        if problems:
            raise ValueError('Invalid debugtap configuration: ' + '; '.join(problems))
