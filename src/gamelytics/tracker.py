"""Decision tracker: buffers events for one session and flushes them to a sink.

A flush is triggered when the buffer reaches ``buffer_size`` or when the
periodic timer fires, whichever comes first. Flushing swaps the buffer for a
fresh list in one synchronous step, so appends made while a batch is being
delivered land in the next batch. Delivery is at-most-once: if the sink
raises, the batch is logged and dropped, never re-buffered.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .models import DecisionEvent, SessionSummary, TrackerConfig, generate_id
from .sessions import summarize_events
from .sinks import deliver
from .timeutil import now_ms

logger = logging.getLogger(__name__)


@dataclass
class TrackerStats:
    """Counters for one tracker's lifetime."""

    tracked: int = 0
    flushed_batches: int = 0
    flushed_events: int = 0
    dropped_events: int = 0


class AnalyticsTracker:
    """Buffers decision events for a single tracking session.

    Usage:
        tracker = AnalyticsTracker(on_flush=store_sink(store))
        async with tracker:
            tracker.track_decision(user_id="u1", game_id="chess", ...)

    ``start()`` and ``stop()`` need a running event loop. ``track_decision``
    is synchronous and never waits for a delivery; without a running loop a
    size-triggered delivery runs to completion before it returns.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        session_id: str | None = None,
        clock: Callable[[], int] = now_ms,
        **overrides: Any,
    ):
        if config is not None and overrides:
            raise TypeError("pass either a TrackerConfig or keyword settings, not both")
        self.config = config or TrackerConfig(**overrides)
        self.session_id = session_id or f"ses_{generate_id()}"
        self.stats = TrackerStats()

        self._clock = clock
        self._buffer: list[DecisionEvent] = []
        self._timer: asyncio.Task | None = None
        self._deliveries: set[asyncio.Task] = set()

        if self.config.endpoint:
            logger.info(f"Tracker {self.session_id} configured for endpoint {self.config.endpoint}")

    @property
    def buffer(self) -> tuple[DecisionEvent, ...]:
        """Snapshot of the events not yet flushed."""
        return tuple(self._buffer)

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the periodic flush timer on the running event loop.

        Raises:
            RuntimeError: If the timer is already running, or no loop is running
        """
        if self.running:
            raise RuntimeError(f"Tracker {self.session_id} already started")
        loop = asyncio.get_running_loop()
        self._timer = loop.create_task(
            self._flush_periodically(), name=f"gamelytics-flush-{self.session_id}"
        )
        logger.info(
            f"Tracker {self.session_id} started "
            f"(buffer_size={self.config.buffer_size}, interval={self.config.flush_interval_ms}ms)"
        )

    async def stop(self) -> None:
        """Cancel the timer, flush what is left, and wait for pending deliveries."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        await self.flush()

        # Deliveries may schedule more deliveries while we wait
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries))

        logger.info(
            f"Tracker {self.session_id} stopped: {self.stats.flushed_events} flushed, "
            f"{self.stats.dropped_events} dropped"
        )

    async def __aenter__(self) -> "AnalyticsTracker":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # --- Tracking ---

    def track_decision(
        self,
        *,
        user_id: str,
        game_id: str,
        position: str,
        available_actions: list[str] | tuple[str, ...],
        chosen_action: str,
        r_type: str,
        t_type: str,
        modal_operator: str,
        thinking_time_ms: int,
        metadata: dict[str, Any] | None = None,
    ) -> DecisionEvent:
        """Record a decision and return the event built for it.

        Raises:
            ValueError: If ``validate_actions`` is enabled and the chosen
                action is not among the available actions
        """
        event = DecisionEvent(
            timestamp=self._clock(),
            session_id=self.session_id,
            user_id=user_id,
            game_id=game_id,
            position=position,
            available_actions=tuple(available_actions),
            chosen_action=chosen_action,
            r_type=r_type,
            t_type=t_type,
            modal_operator=modal_operator,
            thinking_time_ms=thinking_time_ms,
            metadata=metadata or {},
        )

        if not event.is_consistent():
            if self.config.validate_actions:
                raise ValueError(
                    f"chosen action {chosen_action!r} is not among the available actions"
                )
            logger.debug(f"Event {event.id}: chosen action not among available actions")

        self._buffer.append(event)
        self.stats.tracked += 1

        if len(self._buffer) >= self.config.buffer_size:
            self._schedule(self._drain())

        return event

    def create_session_summary(
        self, user_id: str, game_id: str, outcome: str | None = None
    ) -> SessionSummary:
        """Summarize the buffered (not yet flushed) events for a user and game."""
        return summarize_events(
            self._buffer,
            user_id,
            game_id,
            session_id=self.session_id,
            outcome=outcome,
            now=self._clock(),
        )

    # --- Flushing ---

    async def flush(self) -> int:
        """Hand the current buffer to the sink. Returns the batch size (0 if empty)."""
        batch = self._drain()
        if not batch:
            return 0
        await self._deliver(batch)
        return len(batch)

    def _drain(self) -> list[DecisionEvent]:
        batch, self._buffer = self._buffer, []
        return batch

    def _schedule(self, batch: list[DecisionEvent]) -> None:
        if not batch:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._deliver(batch))
            return
        task = loop.create_task(self._deliver(batch))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _flush_periodically(self) -> None:
        interval = self.config.flush_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            # Delivery runs as its own task so cancelling the timer never
            # interrupts a batch in flight.
            self._schedule(self._drain())

    async def _deliver(self, batch: list[DecisionEvent]) -> None:
        sink = self.config.on_flush
        if sink is None:
            logger.debug(f"No sink configured; discarding {len(batch)} events")
        else:
            try:
                await deliver(sink, batch)
            except Exception as e:
                self.stats.dropped_events += len(batch)
                logger.warning(
                    f"Dropped {len(batch)} events from session {self.session_id}: sink failed: {e}"
                )
                return

        self.stats.flushed_batches += 1
        self.stats.flushed_events += len(batch)
        logger.debug(f"Flushed {len(batch)} events from session {self.session_id}")
