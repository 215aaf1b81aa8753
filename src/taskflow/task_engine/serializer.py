"""Single-writer gate for task store operations.

Every operation that loads the document must run through a
:class:`MutationGate`.  The gate keeps one shared completion future: each
caller swaps in a fresh future, waits for the one it replaced, runs, and then
resolves its own future no matter how the body ended.  Operations therefore run
one at a time in the order they asked for admission.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from loguru import logger

T = TypeVar("T")


class MutationGate:
    """FIFO gate that admits one operation at a time.

    There is no timeout and no cancellation: an operation that never finishes
    holds the gate forever.  The gate must be used from a single event loop.

    Usage::

        gate = MutationGate()
        result = await gate.run(do_work, task_id)
    """

    def __init__(self) -> None:
        self._tail: Optional[asyncio.Future[None]] = None
        self._pending = 0

    @property
    def pending(self) -> int:
        """Operations admitted or waiting that have not finished yet."""
        return self._pending

    async def run(
        self,
        fn: Callable[..., Union[T, Awaitable[T]]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run ``fn(*args, **kwargs)`` once every earlier operation has finished.

        *fn* may be a plain callable or a coroutine function.  Its exception,
        if any, propagates to this caller only.
        """
        loop = asyncio.get_running_loop()
        previous = self._tail
        done: asyncio.Future[None] = loop.create_future()
        self._tail = done
        self._pending += 1
        name = getattr(fn, "__name__", repr(fn))
        try:
            if previous is not None:
                await asyncio.shield(previous)
            logger.debug("Gate admitted {} (pending={})", name, self._pending)
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result  # type: ignore[return-value]
        finally:
            self._pending -= 1
            if previous is not None and not previous.done():
                # Caller was cancelled while queued: keep the chain ordered.
                previous.add_done_callback(lambda _: _resolve(done))
            else:
                _resolve(done)


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)
