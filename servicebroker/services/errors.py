from __future__ import annotations

from enum import Enum


class BrokerException(Exception):
    pass


class StoreErrorKind(str, Enum):
    UNIQUE_VIOLATION = "unique_violation"
    FAILURE = "failure"


class StoreError(BrokerException):
    """Raised by instance stores. ``kind`` tells a scope conflict apart from everything else."""

    def __init__(self, message: str, *, kind: StoreErrorKind = StoreErrorKind.FAILURE) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def is_unique_violation(self) -> bool:
        return self.kind == StoreErrorKind.UNIQUE_VIOLATION
