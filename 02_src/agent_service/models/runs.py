"""Run-related data models."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from ..errors import InvalidTransition

RequesterProvider = Literal["discord", "web", "sms", "gmail"]
ReplyMode = Literal["inline", "thread", "auto"]


class RunStatus(str, Enum):
    """Lifecycle states of a Run."""

    CREATED = "created"
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.OK, RunStatus.ERROR, RunStatus.BLOCKED)


# One-way transitions; terminal states have no outgoing edges
_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.CREATED: frozenset({RunStatus.RUNNING, RunStatus.BLOCKED}),
    RunStatus.RUNNING: frozenset({RunStatus.OK, RunStatus.ERROR, RunStatus.BLOCKED}),
    RunStatus.OK: frozenset(),
    RunStatus.ERROR: frozenset(),
    RunStatus.BLOCKED: frozenset(),
}


@dataclass(frozen=True)
class Requester:
    """Who asked, and through which channel provider."""

    provider: RequesterProvider
    id: str


@dataclass(frozen=True)
class RunContext:
    """Where the request came from and how replies should be shaped."""

    channel_id: str | None = None
    thread_id: str | None = None
    reply_to_message_id: str | None = None
    reply_mode: ReplyMode | None = None


@dataclass(frozen=True)
class RunRequest:
    """A validated request to start a run."""

    prompt: str
    requester: Requester
    context: RunContext = field(default_factory=RunContext)
    profile_id: str | None = None


@dataclass
class Run:
    """One end-to-end processing of a request.

    Mutated only by the task that processes it.
    """

    id: str
    prompt: str
    requester: Requester
    context: RunContext
    profile_id: str
    status: RunStatus = RunStatus.CREATED
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tools_used: list[str] = field(default_factory=list)
    final_message: str | None = None
    error: str | None = None
    error_code: str | None = None
    latency_ms: int | None = None
    record_id: int | None = None

    def transition(self, new_status: RunStatus) -> None:
        """Move to ``new_status`` or raise InvalidTransition."""
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Run {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def to_dict(self) -> dict:
        """JSON-friendly snapshot."""
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat()
        return data


@dataclass
class RunRecord:
    """Audit row for a run, as persisted by the audit store."""

    id: int
    run_id: str
    requester_provider: str
    requester_id: str
    channel_id: str | None
    thread_id: str | None
    prompt: str
    profile_id: str
    tools_used: list[str]
    status: RunStatus
    error: str | None = None
    error_code: str | None = None
    final_message: str | None = None
    latency_ms: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
