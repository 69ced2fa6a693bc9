from __future__ import annotations

from contextvars import ContextVar, Token


class QueryTimer:
    """Accumulates database time for the request running in the current context.

    The context variable holds a mutable cell so time spent in worker threads
    and child tasks (which run on copies of the context) reaches the request.
    """

    def __init__(self, name: str = "db_time_ms") -> None:
        self._cell: ContextVar[list[float] | None] = ContextVar(name, default=None)

    def start(self) -> Token:
        return self._cell.set([0.0])

    def stop(self, token: Token) -> None:
        self._cell.reset(token)

    @property
    def active(self) -> bool:
        return self._cell.get() is not None

    def add(self, delta_ms: float) -> None:
        cell = self._cell.get()
        if cell is not None:
            cell[0] += delta_ms

    def elapsed_ms(self) -> float | None:
        cell = self._cell.get()
        return cell[0] if cell is not None else None


query_timer = QueryTimer()
