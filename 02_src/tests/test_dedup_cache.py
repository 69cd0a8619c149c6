"""Tests for DedupCache."""

import pytest

from agent_service.dedup import DedupCache, fingerprint
from agent_service.models import Requester, RunContext, RunRequest


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_request(prompt="ping", user_id="u1", provider="web", **context) -> RunRequest:
    return RunRequest(
        prompt=prompt,
        requester=Requester(provider=provider, id=user_id),
        context=RunContext(**context),
    )


class TestFingerprint:
    """Tests for request fingerprints."""

    def test_same_request_same_fingerprint(self):
        """Test that identical requests hash identically."""
        assert fingerprint(make_request()) == fingerprint(make_request())

    def test_requester_changes_fingerprint(self):
        """Test that requester id and provider are part of the key."""
        base = fingerprint(make_request())
        assert fingerprint(make_request(user_id="u2")) != base
        assert fingerprint(make_request(provider="discord")) != base

    def test_reply_target_changes_fingerprint(self):
        """Test that channel and reply message are part of the key."""
        base = fingerprint(make_request())
        assert fingerprint(make_request(channel_id="c1")) != base
        assert fingerprint(make_request(reply_to_message_id="m1")) != base

    def test_only_prompt_prefix_counts(self):
        """Test that prompts sharing the first 100 chars collide."""
        prefix = "x" * 100
        assert fingerprint(make_request(prefix + "a")) == fingerprint(make_request(prefix + "b"))
        assert fingerprint(make_request("a" + prefix)) != fingerprint(make_request("b" + prefix))


class TestDedupCache:
    """Tests for claim/release."""

    def test_first_claim_succeeds(self):
        """Test claiming an unseen fingerprint."""
        cache = DedupCache()
        result = cache.try_claim("fp", "run-1")
        assert result.claimed is True
        assert result.existing_run_id is None

    def test_duplicate_within_window(self):
        """Test that a second claim returns the first run id."""
        clock = FakeClock()
        cache = DedupCache(window_seconds=5.0, clock=clock)
        cache.try_claim("fp", "run-1")

        clock.now += 0.5
        result = cache.try_claim("fp", "run-2")

        assert result.claimed is False
        assert result.existing_run_id == "run-1"

    def test_claim_after_window_expires(self):
        """Test that expired entries no longer block."""
        clock = FakeClock()
        cache = DedupCache(window_seconds=5.0, clock=clock)
        cache.try_claim("fp", "run-1")

        clock.now += 5.0
        result = cache.try_claim("fp", "run-2")

        assert result.claimed is True

    def test_sweep_on_claim(self):
        """Test that a claim removes every expired entry."""
        clock = FakeClock()
        cache = DedupCache(window_seconds=5.0, clock=clock)
        cache.try_claim("a", "run-a")
        cache.try_claim("b", "run-b")
        assert len(cache) == 2

        clock.now += 10
        cache.try_claim("c", "run-c")

        assert len(cache) == 1

    def test_release_allows_new_claim(self):
        """Test that release frees the fingerprint immediately."""
        cache = DedupCache()
        cache.try_claim("fp", "run-1")
        cache.release("fp")

        assert cache.try_claim("fp", "run-2").claimed is True

    def test_release_unknown_is_noop(self):
        """Test releasing a fingerprint that was never claimed."""
        DedupCache().release("missing")

    def test_window_must_be_positive(self):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            DedupCache(window_seconds=0)
