"""Short-window deduplication of near-simultaneous identical requests."""

import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from ..logging_config import get_logger
from ..models import RunRequest

logger = get_logger(__name__)

PROMPT_PREFIX_CHARS = 100


def fingerprint(request: RunRequest) -> str:
    """Derive the dedup key for a request.

    Includes the reply target so the same prompt in two channels is not
    treated as a duplicate.
    """
    parts = [
        request.requester.id,
        request.requester.provider,
        request.context.reply_to_message_id or "noMessage",
        request.context.channel_id or "noChannel",
        request.prompt[:PROMPT_PREFIX_CHARS],
    ]
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a claim attempt."""

    claimed: bool
    existing_run_id: str | None = None


@dataclass
class DedupEntry:
    fingerprint: str
    created_at: float
    run_id: str


class IDedupCache(Protocol):
    """Fingerprint -> in-flight run id, with a fixed expiry window."""

    def try_claim(self, fingerprint: str, candidate_run_id: str) -> ClaimResult:
        """Claim a fingerprint unless an unexpired entry exists."""
        ...

    def release(self, fingerprint: str) -> None:
        """Drop a fingerprint so an identical request can start a new run."""
        ...


class DedupCache:
    """In-memory dedup cache.

    Methods are synchronous, so a claim is atomic with respect to the event
    loop.
    """

    def __init__(
        self,
        window_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window = window_seconds
        self._clock = clock
        self._entries: dict[str, DedupEntry] = {}

    def try_claim(self, fingerprint: str, candidate_run_id: str) -> ClaimResult:
        """Claim a fingerprint unless an unexpired entry exists."""
        now = self._clock()
        self._sweep(now)

        existing = self._entries.get(fingerprint)
        if existing is not None:
            logger.info(
                "Duplicate request detected",
                extra={
                    "context": {
                        "run_id": candidate_run_id,
                        "existing_run_id": existing.run_id,
                    }
                },
            )
            return ClaimResult(claimed=False, existing_run_id=existing.run_id)

        self._entries[fingerprint] = DedupEntry(
            fingerprint=fingerprint, created_at=now, run_id=candidate_run_id
        )
        return ClaimResult(claimed=True)

    def release(self, fingerprint: str) -> None:
        """Drop a fingerprint so an identical request can start a new run."""
        self._entries.pop(fingerprint, None)

    def _sweep(self, now: float) -> None:
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.created_at >= self._window
        ]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
