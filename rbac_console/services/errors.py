from __future__ import annotations

from dataclasses import dataclass


class AccessControlError(Exception):
    pass


class NotFoundError(AccessControlError):
    pass


class PartialNotFoundError(NotFoundError):
    """Some, but not all, of a requested id set resolved."""


class ConflictError(AccessControlError):
    pass


class AuthError(AccessControlError):
    pass


class InvalidQueryError(AccessControlError):
    """A list query named a sort field or direction the store does not support."""


@dataclass(frozen=True)
class BulkDeleteResult:
    requested_count: int
    affected_count: int

    def raise_for_missing(self, entity: str, plural: str | None = None) -> None:
        if self.affected_count == 0:
            raise NotFoundError(f"{entity} not found")
        if self.affected_count < self.requested_count:
            raise PartialNotFoundError(f"some {plural or entity + 's'} not found")
