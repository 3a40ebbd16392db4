"""Small on-disk stores that outlive a single run."""

from .run_state import RunLockedError, RunStateStore

__all__ = ["RunLockedError", "RunStateStore"]
