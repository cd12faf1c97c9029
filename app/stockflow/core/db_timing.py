from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass


@dataclass
class DbUsage:
    time_ms: float = 0.0
    queries: int = 0


_db_usage: ContextVar[DbUsage | None] = ContextVar("db_usage", default=None)


def start_db_timer() -> object:
    return _db_usage.set(DbUsage())


def stop_db_timer(token: object) -> None:
    _db_usage.reset(token)


def is_tracking() -> bool:
    return _db_usage.get() is not None


def add_db_time(delta_ms: float) -> None:
    usage = _db_usage.get()
    if usage is None:
        return
    usage.time_ms += delta_ms
    usage.queries += 1


def get_db_usage() -> DbUsage | None:
    return _db_usage.get()
