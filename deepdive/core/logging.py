"""
Structured logging configuration using structlog.

Console output is pretty in debug mode and JSON otherwise; LOG_FILE adds a
JSON file sink. Two layers of context ride on every event:

- request_id, bound per HTTP request by the correlation middleware
- session_id, bound by the session services for the duration of
  one lifecycle operation (session_context)
"""

import functools
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, List, Optional, TypeVar

import structlog
from structlog.typing import Processor

from deepdive.core.config import settings

T = TypeVar("T")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog for the application.

    Call once at startup. Safe to call again (tests, reloads): existing
    root handlers are replaced, not duplicated.

    Args:
        level: Overrides settings.log_level
    """
    level_name = level or settings.log_level
    numeric_level = logging.getLevelName(level_name)

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.debug:
        renderers: List[Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def session_context(session_id: str, **extra: Any) -> Iterator[None]:
    """Tag every log event inside the block with the session it concerns.

    Previously bound values (an outer session, the request id) are restored
    on exit.

        with session_context(session.id, phase=session.phase.value):
            log.info("answer_received")
    """
    with structlog.contextvars.bound_contextvars(session_id=session_id, **extra):
        yield


def in_session_context(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Run a service coroutine inside session_context(session_id).

    The decorated method takes the session id as its first argument.
    """

    @functools.wraps(func)
    async def wrapper(self: Any, session_id: str, *args: Any, **kwargs: Any) -> T:
        with session_context(session_id):
            return await func(self, session_id, *args, **kwargs)

    return wrapper
