"""Request throttling shared by every agent in a process.

A tree of agents can have many children calling the model at once. The
``Throttle`` bounds how many requests are in flight and, optionally, how
closely request starts may follow each other. One instance is shared by
all clients built from the same settings.

Example:
    throttle = Throttle(max_concurrent=4, min_interval=0.25)

    async def chat(payload):
        async with throttle:
            return await http.post("/chat/completions", json=payload)
"""

import asyncio
import time
from types import TracebackType


class _LoopState:
    """Semaphore and spacing clock bound to one event loop."""

    __slots__ = ("semaphore", "lock", "last_start", "in_flight")

    def __init__(self, max_concurrent: int) -> None:
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.lock = asyncio.Lock()
        self.last_start = 0.0
        self.in_flight = 0


class Throttle:
    """Async context manager limiting concurrency and spacing request starts.

    State is created lazily per running event loop, so one module-level
    instance works across ``asyncio.run`` calls and test loops.

    Args:
        max_concurrent: Maximum simultaneous holders.
        min_interval: Minimum seconds between consecutive entries. ``0``
            disables spacing.
    """

    def __init__(self, max_concurrent: int, min_interval: float = 0.0) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._states: dict[int, _LoopState] = {}

    def _state(self) -> _LoopState:
        key = id(asyncio.get_running_loop())
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = _LoopState(self.max_concurrent)
        return state

    @property
    def in_flight(self) -> int:
        """Holders inside the throttle on the current loop."""
        return self._state().in_flight

    async def __aenter__(self) -> None:
        state = self._state()
        await state.semaphore.acquire()
        state.in_flight += 1
        if self.min_interval <= 0:
            return
        async with state.lock:
            if state.last_start:
                delay = self.min_interval - (time.monotonic() - state.last_start)
                if delay > 0:
                    await asyncio.sleep(delay)
            state.last_start = time.monotonic()

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        state = self._state()
        state.in_flight -= 1
        state.semaphore.release()
