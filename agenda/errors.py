"""Error taxonomy and typed store results.

Pattern: backend drivers raise the exceptions below; the store layer converts
them into StoreResult failures so expected outcomes (conflict, not found,
backend down) never escape as exceptions.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Failure kinds surfaced to callers."""
    INVALID_SLOT = "invalid_slot"  # time not in that date's slot set
    CONFLICT = "conflict"  # slot already taken under the active policy
    NOT_FOUND = "not_found"  # update/delete target absent
    BACKEND_UNAVAILABLE = "backend_unavailable"  # transport failure or malformed reply
    UNAUTHORIZED = "unauthorized"  # store password mismatch
    REJECTED = "rejected"  # backend answered ok:false for another reason


class BackendUnavailableError(Exception):
    """Raised when a backend cannot be reached or replies with garbage."""
    pass


class RecordNotFoundError(Exception):
    """Raised when the backend has no record with the requested id."""
    pass


class BackendRejectedError(Exception):
    """Raised when the backend understood the request but refused it."""
    pass


class InvalidStorePasswordError(Exception):
    """Raised when a store login fails."""
    pass


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a store operation."""
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "StoreResult":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "") -> "StoreResult":
        return cls(ok=False, error=error, message=message or error.value)

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class SyncFailure:
    """Out-of-band signal emitted when a refresh could not reach the backend."""
    backend: str
    message: str
    kept_cached: int
