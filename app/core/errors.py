"""
Domain error taxonomy.

Every error carries the HTTP status and JSON body the API returns for it;
handlers in app.main translate them into responses.
"""
from typing import Any, Iterable


class AppError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code: int = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_content(self) -> dict[str, Any]:
        return {"detail": self.detail}


class ValidationError(AppError):
    """Malformed input or a uniqueness violation, reported per field."""
    status_code = 422

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors

    def to_content(self) -> dict[str, Any]:
        return {"errors": self.errors}


class UnknownAssignmentError(ValidationError):
    """One or more requested role/permission names do not exist."""

    def __init__(self, kind: str, names: Iterable[str]):
        self.kind = kind
        self.names = sorted(set(names))
        super().__init__({kind: f"Unknown {kind}: {', '.join(self.names)}"})


class SelfDeletionError(ValidationError):
    def __init__(self):
        super().__init__({"error": "You cannot delete your own account."})


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, entity: str):
        super().__init__(f"{entity} not found")
        self.entity = entity


class PermissionDeniedError(AppError):
    status_code = 403

    def __init__(self, permission: str):
        super().__init__(f"Permission denied: {permission}")
        self.permission = permission


class TransactionError(AppError):
    """Persistence failed mid-write; the transaction was rolled back."""
    status_code = 500

    def __init__(self, detail: str = "The request could not be completed. No changes were saved."):
        super().__init__(detail)
