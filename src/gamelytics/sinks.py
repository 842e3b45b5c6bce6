"""Flush sinks: where a tracker hands its buffered batches.

A sink is any callable taking ``list[DecisionEvent]``. It may be a coroutine
function. Raising signals failure; the tracker then drops the batch, so any
retry policy belongs in a wrapper such as ``RetryingSink``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Union

from .constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_BACKOFF_MS

if TYPE_CHECKING:
    from .events import EventStore
    from .models import DecisionEvent

logger = logging.getLogger(__name__)

Sink = Callable[[list["DecisionEvent"]], Union[Awaitable[None], None]]


async def deliver(sink: Sink, events: list[DecisionEvent]) -> None:
    """Call a sync or async sink and wait for it."""
    result = sink(events)
    if inspect.isawaitable(result):
        await result


def store_sink(store: EventStore) -> Sink:
    """Sink that appends batches to an event store off the event loop."""

    async def _sink(events: list[DecisionEvent]) -> None:
        await asyncio.to_thread(store.append_batch, events)

    return _sink


class RetryingSink:
    """Retry a failing sink with linear backoff.

    The wrapped sink must tolerate seeing the same batch more than once.
    After the last attempt the final error propagates to the caller.
    """

    def __init__(
        self,
        sink: Sink,
        attempts: int = DEFAULT_RETRY_ATTEMPTS,
        backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
    ):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        if backoff_ms < 0:
            raise ValueError("backoff_ms must be >= 0")
        self.sink = sink
        self.attempts = attempts
        self.backoff_ms = backoff_ms

    async def __call__(self, events: list[DecisionEvent]) -> None:
        for attempt in range(1, self.attempts + 1):
            try:
                await deliver(self.sink, events)
                return
            except Exception as e:
                if attempt == self.attempts:
                    raise
                logger.info(
                    f"Sink attempt {attempt}/{self.attempts} failed for "
                    f"{len(events)} events: {e}; retrying"
                )
                await asyncio.sleep(self.backoff_ms * attempt / 1000)
