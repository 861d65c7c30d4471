"""Error taxonomy shared by the gamification services."""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

# Driver messages that mean "another writer won, try again".
_RETRYABLE_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize access",
    "lock wait timeout",
)


class GamificationError(Exception):
    """Base class; ``code`` is the machine-readable tag used in API payloads."""

    code = "gamification_error"
    status_code = 500

    def __init__(self, message: str | None = None, **details) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        payload = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArgument(GamificationError):
    code = "invalid_argument"
    status_code = 400


class NotFound(GamificationError):
    code = "not_found"
    status_code = 404


class ConflictRetryable(GamificationError):
    code = "conflict"
    status_code = 409


class StorageUnavailable(GamificationError):
    code = "storage_unavailable"
    status_code = 503


def is_retryable_storage_error(exc: BaseException) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def classify_storage_error(exc: SQLAlchemyError) -> GamificationError:
    """Map a SQLAlchemy failure onto the engine taxonomy."""

    if is_retryable_storage_error(exc):
        return ConflictRetryable(str(getattr(exc, "orig", exc)))
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StorageUnavailable("database connection lost")
    if isinstance(exc, OperationalError):
        return StorageUnavailable(str(getattr(exc, "orig", exc)))
    return StorageUnavailable(exc.__class__.__name__)


__all__ = [
    "GamificationError",
    "InvalidArgument",
    "NotFound",
    "ConflictRetryable",
    "StorageUnavailable",
    "classify_storage_error",
    "is_retryable_storage_error",
]
