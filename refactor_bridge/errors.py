"""
Exception taxonomy for the refactor bridge.

Every failure the workflow can surface is one of these. Wrapped library
errors are chained with ``raise ... from``.
"""

import signal as _signal
from typing import Optional


class RefactorBridgeError(Exception):
    """Base class for all refactor bridge errors."""


class ConfigurationError(RefactorBridgeError):
    """Raised when required configuration is missing or invalid."""


class InvalidReferenceError(RefactorBridgeError):
    """Raised when a repository URL or slug cannot be parsed."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid GitHub URL: {value}")


class AuthenticationError(RefactorBridgeError):
    """Raised when the GitHub token cannot be used to identify the caller."""


class RepositoryLookupError(RefactorBridgeError):
    """Raised when repository information cannot be fetched."""


class ForkError(RefactorBridgeError):
    """Raised when forking a repository fails."""


class ForkTimeoutError(ForkError):
    """Raised when a newly created fork never becomes queryable."""


class CloneError(RefactorBridgeError):
    """Raised when cloning a repository fails."""


class PushError(RefactorBridgeError):
    """Raised when committing or pushing the refactoring branch fails."""


class PullRequestError(RefactorBridgeError):
    """Raised when the pull request cannot be opened."""


class TransformError(RefactorBridgeError):
    """Raised when the external refactoring tool fails."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        signal: Optional[str] = None,
    ):
        self.exit_code = exit_code
        self.signal = signal
        super().__init__(message)

    @classmethod
    def from_returncode(cls, returncode: int) -> "TransformError":
        """Build an error from an asyncio subprocess return code."""
        if returncode < 0:
            try:
                signal_name = _signal.Signals(-returncode).name
            except ValueError:
                signal_name = str(-returncode)
            return cls(
                f"Refactoring failed with code {returncode} (signal {signal_name})",
                exit_code=returncode,
                signal=signal_name,
            )
        return cls(f"Refactoring failed with code {returncode}", exit_code=returncode)


class TransformTimeoutError(TransformError):
    """Raised when the external refactoring tool exceeds its deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Refactoring process timed out after {_format_duration(timeout)}")


def _format_duration(seconds: float) -> str:
    if seconds >= 3600 and seconds % 3600 == 0:
        hours = int(seconds // 3600)
        return f"{hours} hour" + ("s" if hours != 1 else "")
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" + ("s" if minutes != 1 else "")
    return f"{seconds:g} seconds"
