from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence

FilterOp = Literal["eq", "in", "is_null", "not_null"]


@dataclass(slots=True, frozen=True)
class Scope:
    """Tenant (or parent) filter applied to every statement.

    ``column=None`` means the table is not tenant-scoped and callers must
    narrow rows with explicit filters instead.
    """

    column: Optional[str]
    value: Any = None

    @classmethod
    def unscoped(cls) -> "Scope":
        return cls(column=None)


@dataclass(slots=True, frozen=True)
class Filter:
    column: str
    op: FilterOp = "eq"
    value: Any = None

    @classmethod
    def eq(cls, column: str, value: Any) -> "Filter":
        return cls(column, "eq", value)

    @classmethod
    def in_(cls, column: str, values: Sequence[Any]) -> "Filter":
        return cls(column, "in", list(values))

    @classmethod
    def is_null(cls, column: str) -> "Filter":
        return cls(column, "is_null")

    @classmethod
    def not_null(cls, column: str) -> "Filter":
        return cls(column, "not_null")


@dataclass(slots=True, frozen=True)
class Order:
    column: str
    descending: bool = False
    nulls_last: bool = True


Row = Dict[str, Any]


class RowStore(Protocol):
    """Tenant-scoped relational access consumed by the identity engine."""

    async def select(
        self,
        table: str,
        scope: Scope,
        filters: Sequence[Filter] = (),
        order_by: Sequence[Order] = (),
        limit: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> List[Row]:
        ...

    async def insert(self, table: str, row: Row) -> Row:
        ...

    async def update(self, table: str, scope: Scope, row_id: str, patch: Row) -> None:
        ...

    async def update_where(
        self,
        table: str,
        scope: Scope,
        filters: Sequence[Filter],
        patch: Row,
    ) -> int:
        ...

    async def delete(self, table: str, scope: Scope, row_id: str) -> None:
        ...


__all__ = ["FilterOp", "Scope", "Filter", "Order", "Row", "RowStore"]
