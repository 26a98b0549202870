"""Periodic ticker used to keep an idle upstream stream alive."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class Ticker(Protocol):
    def cancel(self) -> None:  # pragma: no cover - protocol stub
        ...


TickerFactory = Callable[[float, Callable[[], None]], Ticker]


class KeepAliveTicker:
    """Calls ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self._interval = interval
        self._callback = callback
        self._task: asyncio.Task | None = asyncio.get_running_loop().create_task(self._loop())

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._callback()
            except Exception:
                LOGGER.exception("Keepalive callback failed")
