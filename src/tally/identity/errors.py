"""Error taxonomy raised by the identity engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Conflict, MergeReport


class IdentityError(Exception):
    """Base class for every error surfaced by the identity engine."""


class NotAuthenticatedError(IdentityError):
    def __init__(self, message: str = "not authenticated") -> None:
        super().__init__(message)


class NoTenantSelectedError(IdentityError):
    def __init__(self, message: str = "no tenant selected") -> None:
        super().__init__(message)


class InvalidNameError(IdentityError):
    """Raised for empty names and in-flight extraction placeholders."""

    def __init__(self, name: str | None) -> None:
        self.name = name
        super().__init__(f"invalid entity name: {name!r}")


class ValidationError(IdentityError):
    pass


class NameExistsError(IdentityError):
    """A rename or attach collides with a different canonical entity.

    ``conflict`` carries everything an interactive caller needs to offer
    keep-both, rename-anyway or merge-into-target.
    """

    def __init__(self, conflict: "Conflict") -> None:
        self.conflict = conflict
        super().__init__(
            f"{conflict.family} name {conflict.duplicate_name!r} already used by "
            f"{conflict.target_family} {conflict.target_id}"
        )


class NotFoundError(IdentityError):
    def __init__(self, table: str, row_id: str) -> None:
        self.table = table
        self.row_id = row_id
        super().__init__(f"{table} row {row_id} not found")


class StoreError(IdentityError):
    """Opaque passthrough for row store failures."""


class UniqueConstraintError(StoreError):
    def __init__(self, column: str | None = None, constraint: str | None = None) -> None:
        self.column = column
        self.constraint = constraint
        super().__init__(f"unique constraint violated ({constraint or column or 'unknown'})")


class StorePermissionError(StoreError):
    pass


class PartialMergeError(IdentityError):
    """Some sources of a merge were applied before another one failed."""

    def __init__(self, report: "MergeReport") -> None:
        self.report = report
        failed = ", ".join(f"{item.source_id}: {item.error}" for item in report.failed)
        super().__init__(f"merge into {report.target_id} partially applied; failed {failed}")


__all__ = [
    "IdentityError",
    "NotAuthenticatedError",
    "NoTenantSelectedError",
    "InvalidNameError",
    "ValidationError",
    "NameExistsError",
    "NotFoundError",
    "StoreError",
    "UniqueConstraintError",
    "StorePermissionError",
    "PartialMergeError",
]
