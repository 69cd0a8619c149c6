"""Dedup module."""

from .cache import ClaimResult, DedupCache, IDedupCache, fingerprint

__all__ = ["ClaimResult", "DedupCache", "IDedupCache", "fingerprint"]
