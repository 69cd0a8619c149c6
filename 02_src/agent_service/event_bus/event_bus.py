"""EventBus implementation for per-run event streams."""

import asyncio
import uuid
from collections import deque
from typing import Protocol

from ..logging_config import get_logger
from ..models import Event, EventKind

logger = get_logger(__name__)


class Subscription:
    """One live listener on a run's stream.

    Iterate it to receive events; iteration ends when the bus closes the
    subscription (terminal event plus grace delay, or unsubscribe).
    """

    def __init__(self, run_id: str, last_delivered_sequence: int = 0):
        self.id = str(uuid.uuid4())
        self.run_id = run_id
        self.last_delivered_sequence = last_delivered_sequence
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._heartbeat_task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: Event) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def _start_heartbeat(self, interval: float) -> None:
        self._heartbeat_task = asyncio.create_task(self._heartbeat(interval))

    async def _heartbeat(self, interval: float) -> None:
        while not self._closed:
            await asyncio.sleep(interval)
            self._deliver(Event(run_id=self.run_id, sequence=None, kind=EventKind.PING, payload={}))

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        if event.sequence is not None:
            self.last_delivered_sequence = event.sequence
        return event


class _RunChannel:
    """Ordered log and subscriber set for one run."""

    def __init__(self, run_id: str, max_history: int):
        self.run_id = run_id
        self.next_sequence = 1
        self.history: deque[Event] = deque(maxlen=max_history)
        self.subscribers: dict[str, Subscription] = {}
        self.buffering = True
        self.terminal = False
        self.idle_timer: asyncio.TimerHandle | None = None

    def cancel_idle_timer(self) -> None:
        if self.idle_timer is not None:
            self.idle_timer.cancel()
            self.idle_timer = None

    def backlog_after(self, last_seen: int | None) -> list[Event]:
        """Retained events a (re)connecting subscriber should get first."""
        if not self.history:
            return []
        if last_seen is None:
            return list(self.history)
        oldest = self.history[0].sequence
        if last_seen < oldest - 1 or last_seen >= self.next_sequence:
            # Marker points at discarded or unknown events: start fresh
            return []
        return [event for event in self.history if event.sequence > last_seen]


class IEventBus(Protocol):
    """In-memory per-run publish/subscribe."""

    def open(self, run_id: str) -> None:
        """Start buffering events for a run."""
        ...

    async def publish(self, run_id: str, kind: EventKind | str, payload: dict | None = None) -> Event | None:
        """Assign the next sequence number and fan the event out."""
        ...

    def subscribe(self, run_id: str, last_seen_sequence: int | None = None) -> Subscription:
        """Attach a listener, replaying retained events first."""
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a listener."""
        ...


class EventBus:
    """Per-run event streams with replay and heartbeats.

    Retention: a run's events are kept from the first publish until either
    the run has finished and its replay grace has passed, or every
    subscriber has left and nobody re-attached within the replay grace.
    A subscriber attaching without a resume marker receives the retained
    history first, so events published before anyone listens are not lost.
    """

    def __init__(
        self,
        heartbeat_interval: float = 15.0,
        terminal_grace: float = 0.25,
        replay_grace: float = 30.0,
        max_history: int = 1000,
    ):
        self._heartbeat_interval = heartbeat_interval
        self._terminal_grace = terminal_grace
        self._replay_grace = replay_grace
        self._max_history = max_history
        self._channels: dict[str, _RunChannel] = {}

    def open(self, run_id: str) -> None:
        """Start buffering events for a run."""
        self._channel(run_id)

    def has_run(self, run_id: str) -> bool:
        return run_id in self._channels

    def subscriber_count(self, run_id: str) -> int:
        channel = self._channels.get(run_id)
        return len(channel.subscribers) if channel else 0

    async def publish(
        self,
        run_id: str,
        kind: EventKind | str,
        payload: dict | None = None,
    ) -> Event | None:
        """Assign the next sequence number and fan the event out.

        Never blocks on readers. Returns None when the run already ended.
        """
        kind = EventKind(kind)
        if kind is EventKind.PING:
            raise ValueError("Heartbeats are emitted per subscription, not published")

        channel = self._channel(run_id)
        if channel.terminal:
            logger.warning(
                "Event published after terminal event dropped",
                extra={"context": {"run_id": run_id, "kind": kind.value}},
            )
            return None

        event = Event(
            run_id=run_id,
            sequence=channel.next_sequence,
            kind=kind,
            payload=payload or {},
        )
        channel.next_sequence += 1
        if channel.buffering:
            channel.history.append(event)

        for subscription in list(channel.subscribers.values()):
            subscription._deliver(event)

        if kind.is_terminal:
            channel.terminal = True
            asyncio.get_running_loop().call_later(
                self._terminal_grace, self._finish, run_id
            )

        logger.debug(
            "Event published",
            extra={
                "context": {
                    "run_id": run_id,
                    "kind": kind.value,
                    "sequence": event.sequence,
                    "subscribers": len(channel.subscribers),
                }
            },
        )
        return event

    def subscribe(self, run_id: str, last_seen_sequence: int | None = None) -> Subscription:
        """Attach a listener, replaying retained events after the marker."""
        channel = self._channel(run_id)
        backlog = channel.backlog_after(last_seen_sequence)
        start = last_seen_sequence if backlog and last_seen_sequence is not None else 0
        subscription = Subscription(run_id, last_delivered_sequence=start)
        for event in backlog:
            subscription._deliver(event)

        if channel.terminal:
            # Run already over: hand out what is retained, then end
            subscription._close()
            return subscription

        channel.cancel_idle_timer()
        channel.buffering = True
        channel.subscribers[subscription.id] = subscription
        subscription._start_heartbeat(self._heartbeat_interval)
        logger.info(
            "Subscriber attached",
            extra={
                "context": {
                    "run_id": run_id,
                    "subscription_id": subscription.id,
                    "replayed": len(backlog),
                }
            },
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a listener. Safe to call more than once."""
        subscription._close()
        channel = self._channels.get(subscription.run_id)
        if channel is None or channel.subscribers.pop(subscription.id, None) is None:
            return

        logger.info(
            "Subscriber detached",
            extra={"context": {"run_id": subscription.run_id, "subscription_id": subscription.id}},
        )
        if not channel.subscribers and not channel.terminal:
            self._schedule_idle(channel)

    async def close(self) -> None:
        """Close every subscription and forget all runs."""
        for channel in self._channels.values():
            channel.cancel_idle_timer()
            for subscription in channel.subscribers.values():
                subscription._close()
        self._channels.clear()

    def _channel(self, run_id: str) -> _RunChannel:
        channel = self._channels.get(run_id)
        if channel is None:
            channel = self._channels[run_id] = _RunChannel(run_id, self._max_history)
        return channel

    def _finish(self, run_id: str) -> None:
        """Close subscribers after the terminal grace delay."""
        channel = self._channels.get(run_id)
        if channel is None:
            return
        for subscription in list(channel.subscribers.values()):
            subscription._close()
        channel.subscribers.clear()
        self._schedule_idle(channel)

    def _schedule_idle(self, channel: _RunChannel) -> None:
        channel.cancel_idle_timer()
        channel.idle_timer = asyncio.get_running_loop().call_later(
            self._replay_grace, self._on_idle, channel.run_id
        )

    def _on_idle(self, run_id: str) -> None:
        channel = self._channels.get(run_id)
        if channel is None or channel.subscribers:
            return
        channel.idle_timer = None
        if channel.terminal:
            del self._channels[run_id]
            logger.debug("Run channel removed", extra={"context": {"run_id": run_id}})
        else:
            # Observers are gone; stop buffering, keep the sequence counter
            channel.history.clear()
            channel.buffering = False
            logger.debug("Run history discarded", extra={"context": {"run_id": run_id}})
