"""Run event data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class EventKind(str, Enum):
    """Named event kinds on a run's stream."""

    PLAN = "plan"
    TOOL_CALL = "tool_call"
    TOKEN = "token"
    MESSAGE = "message"
    DONE = "done"
    ERROR = "error"
    PING = "ping"

    @property
    def is_terminal(self) -> bool:
        return self in (EventKind.DONE, EventKind.ERROR)


@dataclass(frozen=True)
class Event:
    """A single event published for a run.

    ``sequence`` is assigned by the EventBus; heartbeat pings carry None.
    """

    run_id: str
    sequence: int | None
    kind: EventKind
    payload: dict
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
