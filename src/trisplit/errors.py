from __future__ import annotations


class TriSplitError(RuntimeError):
    """Base class for failures that abort a run."""


class InputError(TriSplitError):
    """Raised when the input extract is missing, unreadable or empty."""


class ProfileError(TriSplitError):
    """Raised when a profile document cannot be interpreted."""


class OutputWriteError(TriSplitError):
    """Raised when an output file cannot be written."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to write '{path}': {message}")
        self.path = path


class RunCancelled(TriSplitError):
    """Raised when the caller's cancellation token is set mid-run."""
