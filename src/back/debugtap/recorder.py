"""Event recorder: turns log calls into structured, replayable events.

The recorder never rebinds anything globally. It is built once by the
engine and hands back interceptors for the host to wire in:

- ``EventRecorder.wrap(console)`` returns a ``RecordingConsole`` whose
  ``log``/``warn``/``error`` forward the original arguments to the
  original console first, then record.
- ``ChannelLogHandler`` observes the stdlib ``logging`` tree and records
  each record on the channel matching its level. It writes nothing, so
  the host's own handlers keep producing exactly the same output.
"""
from __future__ import annotations

import inspect
import logging
import os
import sys
import textwrap
import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, TextIO

from .observability.logging import get_logger, is_engine_record
from .observability.metrics import LOG_EVENTS_CAPTURED
from .wire import degrade

if TYPE_CHECKING:
    from .buffers import BufferSet
    from .hub import BroadcastHub

logger = get_logger(__name__)

_LOGGING_DIR = os.path.dirname(logging.__file__)


class Channel(str, Enum):
    """Log severity channel. Each has its own buffer and topic."""
    LOG = 'log'
    WARN = 'warn'
    ERROR = 'error'

    @property
    def topic(self) -> str:
        return f'console.{self.value}-output'

    @classmethod
    def for_level(cls, levelno: int) -> 'Channel':
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARN
        return cls.LOG


# ---------------------------------------------------------------------------
# Argument normalization
# ---------------------------------------------------------------------------

def callable_source(fn: Any) -> str:
    """Source text of a callable, or its repr when no source is available."""
    try:
        return textwrap.dedent(inspect.getsource(fn)).rstrip('\n')
    except (OSError, TypeError):
        return repr(fn)


def serialize_args(args: tuple) -> tuple[list, bool, bool]:
    """Map log arguments to their transport form.

    Exceptions become ``"Error: <message>"``, callables become their
    source text. Everything else is copied through ``wire.degrade``, so
    the recorded value is frozen at call time and later mutation by the
    caller is not seen by replay or live observers.

    Returns:
        (serialized args, has_error_arg, has_callable_arg)
    """
    serialized = []
    has_error = False
    has_callable = False
    for arg in args:
        if isinstance(arg, BaseException):
            has_error = True
            serialized.append(f'Error: {arg}')
        elif callable(arg):
            has_callable = True
            serialized.append(callable_source(arg))
        else:
            serialized.append(degrade(arg))
    return serialized, has_error, has_callable


def capture_stack() -> str:
    """Format the current call stack, minus recorder and logging frames."""
    frames = [
        frame for frame in traceback.extract_stack()
        if frame.filename != __file__ and not frame.filename.startswith(_LOGGING_DIR)
    ]
    return ''.join(traceback.format_list(frames))


@dataclass(frozen=True)
class LogEvent:
    """One intercepted log call."""
    channel: Channel
    args: tuple
    has_error_arg: bool = False
    has_callable_arg: bool = False
    stack: str = ''
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            'channel': self.channel.value,
            'args': list(self.args),
            'has_error_arg': self.has_error_arg,
            'has_callable_arg': self.has_callable_arg,
            'stack': self.stack,
            'occurred_at': self.occurred_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Consoles
# ---------------------------------------------------------------------------

class Console:
    """The real output functions: ``log`` to stdout, ``warn``/``error`` to stderr.

    Streams default to whatever ``sys.stdout``/``sys.stderr`` are at call
    time, so redirections made after construction are honoured.
    """

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdout = stdout
        self._stderr = stderr

    def log(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault('file', self._stdout or sys.stdout)
        print(*args, **kwargs)

    def warn(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault('file', self._stderr or sys.stderr)
        print(*args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault('file', self._stderr or sys.stderr)
        print(*args, **kwargs)


class RecordingConsole:
    """Interceptor set returned by ``EventRecorder.wrap``.

    Same call surface as the wrapped console. Any attribute other than
    the three channels is looked up on the original.
    """

    def __init__(self, original: Any, recorder: EventRecorder) -> None:
        self._original = original
        self._recorder = recorder

    @property
    def original(self) -> Any:
        return self._original

    def log(self, *args: Any, **kwargs: Any) -> None:
        self._original.log(*args, **kwargs)
        self._recorder.record(Channel.LOG, args)

    def warn(self, *args: Any, **kwargs: Any) -> None:
        self._original.warn(*args, **kwargs)
        self._recorder.record(Channel.WARN, args)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self._original.error(*args, **kwargs)
        self._recorder.record(Channel.ERROR, args)

    def __getattr__(self, name: str) -> Any:
        if name.startswith('__') or name in ('_original', '_recorder'):
            raise AttributeError(name)
        return getattr(self._original, name)


class EventRecorder:
    """Builds LogEvents and hands them to the hub for buffering and fan-out."""

    def __init__(self, hub: BroadcastHub, buffers: BufferSet) -> None:
        self._hub = hub
        self._buffers = buffers
        self._local = threading.local()

    def wrap(self, console: Any) -> RecordingConsole:
        """Return interceptors for ``console``'s log/warn/error."""
        return RecordingConsole(console, self)

    def record(
        self,
        channel: Channel,
        args: tuple,
        *,
        stack: str | None = None,
    ) -> LogEvent | None:
        """Record one log call. Never raises into the caller.

        Returns the event, or None when nothing was recorded (a nested
        call made while this thread was already recording, or a failure).
        """
        if getattr(self._local, 'active', False):
            return None
        self._local.active = True
        try:
            serialized, has_error, has_callable = serialize_args(tuple(args))
            event = LogEvent(
                channel=channel,
                args=tuple(serialized),
                has_error_arg=has_error,
                has_callable_arg=has_callable,
                stack=stack if stack is not None else capture_stack(),
            )
            self._hub.publish(self._buffers.for_channel(channel), event)
            LOG_EVENTS_CAPTURED.labels(channel=channel.value).inc()
            return event
        except Exception:
            logger.exception('log_event_record_failed', channel=channel.value)
            return None
        finally:
            self._local.active = False


class ChannelLogHandler(logging.Handler):
    """Records stdlib logging records as LogEvents.

    DEBUG/INFO go to the log channel, WARNING to warn, ERROR and above
    to error. The formatted message is the first argument; an attached
    exception is appended as an error argument.
    """

    def __init__(self, recorder: EventRecorder, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._recorder = recorder

    def emit(self, record: logging.LogRecord) -> None:
        if is_engine_record(record.name):
            return
        try:
            args: list[Any] = [record.getMessage()]
            if record.exc_info and record.exc_info[1] is not None:
                args.append(record.exc_info[1])
                stack = ''.join(traceback.format_exception(*record.exc_info))
            elif record.stack_info:
                stack = record.stack_info
            else:
                stack = capture_stack()
            self._recorder.record(Channel.for_level(record.levelno), tuple(args), stack=stack)
        except Exception:
            self.handleError(record)
