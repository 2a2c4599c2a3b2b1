from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None
    status: int = 400
    code: str = "domain_error"

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


@dataclass
class SlotConflict(DomainError):
    title: str = "Slot Conflict"
    type: str = "https://example.com/problems/slot-conflict"
    status: int = 409
    code: str = "slot_conflict"


@dataclass
class InvalidTransition(DomainError):
    title: str = "Invalid Transition"
    type: str = "https://example.com/problems/invalid-transition"
    status: int = 409
    code: str = "invalid_transition"


@dataclass
class NotFound(DomainError):
    title: str = "Not Found"
    type: str = "https://example.com/problems/not-found"
    status: int = 404
    code: str = "not_found"


@dataclass
class Unauthorized(DomainError):
    title: str = "Forbidden"
    type: str = "https://example.com/problems/unauthorized"
    status: int = 403
    code: str = "unauthorized"


@dataclass
class ValidationFailed(DomainError):
    title: str = "Validation Error"
    type: str = "https://example.com/problems/validation-error"
    status: int = 422
    code: str = "validation_failed"


@dataclass
class StorageFailure(DomainError):
    title: str = "Storage Unavailable"
    type: str = "https://example.com/problems/storage-failure"
    status: int = 503
    code: str = "storage_failure"
