"""Failures surfaced by config repositories.

Every public repository operation raises ``RepositoryError`` (or a subclass)
carrying a stable message that names the operation; the underlying driver or
statement failure is chained as ``__cause__``.
"""

from typing import Iterable, Optional


class RepositoryError(Exception):
    """Base class for all repository failures."""


class DatabaseConnectionError(RepositoryError):
    """A storage connection could not be acquired."""


class StatementError(RepositoryError):
    """A statement affected a different number of rows than expected."""


class AttributeBatchError(StatementError):
    """One or more per-owner attribute operations failed inside a batch."""

    def __init__(self, message: str, failures: Iterable[BaseException]) -> None:
        self.failures = list(failures)
        details = ", ".join(str(f) for f in self.failures)
        super().__init__(f"{message}: {details}" if details else message)


class RollbackError(RepositoryError):
    """Rollback failed after an earlier error; both are kept."""

    def __init__(self, message: str, original: Optional[BaseException]) -> None:
        self.original = original
        super().__init__(f"{message} (original error: {original})")
