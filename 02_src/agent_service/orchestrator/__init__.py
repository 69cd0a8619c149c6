"""Run orchestrator module."""

from .orchestrator import IRunOrchestrator, RunOrchestrator, SubmitResult

__all__ = ["IRunOrchestrator", "RunOrchestrator", "SubmitResult"]
