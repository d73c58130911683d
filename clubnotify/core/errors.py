from __future__ import annotations


class BackendError(RuntimeError):
    """Transient or unexpected failure talking to the backend."""

    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class RecordNotFound(BackendError):
    """Referenced notification or push token row does not exist."""


class TenantNotFound(RecordNotFound):
    pass


class RecordConflict(BackendError):
    """Unique constraint violation (e.g. the same push token stored twice)."""


class NotAuthenticated(RuntimeError):
    """An action needed a bound user but the session has none."""


class PushPermissionDenied(RuntimeError):
    """The platform refused push delivery permission."""
