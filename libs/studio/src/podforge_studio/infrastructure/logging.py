from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator

from rich.logging import RichHandler

_episode_id: ContextVar[str | None] = ContextVar("podforge_episode_id", default=None)

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "pydub.converter")


class EpisodeContextFilter(logging.Filter):
    """Stamps every record with the episode id bound to the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.episode_id = _episode_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "episode_id": getattr(record, "episode_id", None),
            "event": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: int | str = logging.INFO, *, fmt: str = "plain") -> None:
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("[%(episode_id)s] %(message)s", datefmt="[%X]"))

    # Filter on the handler so records from child loggers get episode_id too.
    handler.addFilter(EpisodeContextFilter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_episode(episode_id: str | None) -> None:
    _episode_id.set(episode_id)


def bound_episode() -> str | None:
    return _episode_id.get()


def unbind_episode() -> None:
    _episode_id.set(None)


@contextmanager
def episode_context(episode_id: str) -> Iterator[None]:
    token = _episode_id.set(episode_id)
    try:
        yield
    finally:
        _episode_id.reset(token)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
