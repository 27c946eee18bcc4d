from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Callable, List, Optional, Sequence, Tuple

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql

from shared.db import get_connection
from shared.logging import get_logger

from ..config import get_settings
from ..errors import NotFoundError, StoreError, StorePermissionError, UniqueConstraintError
from .base import Filter, Order, Row, Scope

logger = get_logger("identity.store.postgres")

Statement = Tuple[sql.Composable, List[Any]]
Connector = Callable[[str], AbstractAsyncContextManager[psycopg.AsyncConnection[Any]]]

_FILTER_TEMPLATES = {
    "eq": "{} = %s",
    "in": "{} = ANY(%s)",
    "is_null": "{} IS NULL",
    "not_null": "{} IS NOT NULL",
}


def _where(scope: Scope, filters: Sequence[Filter]) -> Statement:
    clauses: List[sql.Composable] = []
    params: List[Any] = []
    if scope.column is not None:
        clauses.append(sql.SQL("{} = %s").format(sql.Identifier(scope.column)))
        params.append(scope.value)
    for item in filters:
        template = _FILTER_TEMPLATES.get(item.op)
        if template is None:
            raise ValueError(f"unsupported filter op: {item.op!r}")
        clauses.append(sql.SQL(template).format(sql.Identifier(item.column)))
        if item.op == "eq":
            params.append(item.value)
        elif item.op == "in":
            params.append(list(item.value))
    if not clauses:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


def build_select(
    table: str,
    scope: Scope,
    filters: Sequence[Filter] = (),
    order_by: Sequence[Order] = (),
    limit: Optional[int] = None,
    columns: Optional[Sequence[str]] = None,
) -> Statement:
    selected = sql.SQL(", ").join(map(sql.Identifier, columns)) if columns else sql.SQL("*")
    where, params = _where(scope, filters)
    query = sql.SQL("SELECT {} FROM {}").format(selected, sql.Identifier(table)) + where
    if order_by:
        parts = [
            sql.SQL("{} {} {}").format(
                sql.Identifier(order.column),
                sql.SQL("DESC" if order.descending else "ASC"),
                sql.SQL("NULLS LAST" if order.nulls_last else "NULLS FIRST"),
            )
            for order in order_by
        ]
        query += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(parts)
    if limit is not None:
        query += sql.SQL(" LIMIT %s")
        params.append(limit)
    return query, params


def build_insert(table: str, row: Row) -> Statement:
    query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
        sql.Identifier(table),
        sql.SQL(", ").join(map(sql.Identifier, row)),
        sql.SQL(", ").join(sql.Placeholder() * len(row)),
    )
    return query, list(row.values())


def build_update(table: str, scope: Scope, filters: Sequence[Filter], patch: Row) -> Statement:
    if not patch:
        raise ValueError("update patch cannot be empty")
    assignments = sql.SQL(", ").join(
        sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder()) for column in patch
    )
    where, params = _where(scope, filters)
    query = sql.SQL("UPDATE {} SET {}").format(sql.Identifier(table), assignments) + where
    return query, list(patch.values()) + params


def build_delete(table: str, scope: Scope, filters: Sequence[Filter]) -> Statement:
    where, params = _where(scope, filters)
    return sql.SQL("DELETE FROM {}").format(sql.Identifier(table)) + where, params


def translate_error(exc: psycopg.Error) -> StoreError:
    """Map a psycopg failure onto the row store's closed error set."""
    if isinstance(exc, pg_errors.UniqueViolation):
        diag = exc.diag
        return UniqueConstraintError(column=diag.column_name, constraint=diag.constraint_name)
    if isinstance(exc, pg_errors.InsufficientPrivilege):
        return StorePermissionError(str(exc))
    return StoreError(str(exc))


def _has_empty_in(filters: Sequence[Filter]) -> bool:
    return any(item.op == "in" and not item.value for item in filters)


class PostgresRowStore:
    """Row store over psycopg's async driver, one connection per call."""

    def __init__(self, dsn: str | None = None, connect: Connector | None = None) -> None:
        self._dsn = dsn or get_settings().database_url
        self._connect = connect or get_connection

    async def _execute(self, query: sql.Composable, params: List[Any], fetch: bool) -> Tuple[List[Row], int]:
        try:
            async with self._connect(self._dsn) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    rows = list(await cur.fetchall()) if fetch else []
                    return rows, cur.rowcount
        except psycopg.Error as exc:
            translated = translate_error(exc)
            logger.warning("row_store_error", error=str(exc), error_type=type(translated).__name__)
            raise translated from exc

    async def select(
        self,
        table: str,
        scope: Scope,
        filters: Sequence[Filter] = (),
        order_by: Sequence[Order] = (),
        limit: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> List[Row]:
        if _has_empty_in(filters):
            return []
        query, params = build_select(table, scope, filters, order_by, limit, columns)
        rows, _ = await self._execute(query, params, fetch=True)
        return [_stringify_ids(row) for row in rows]

    async def insert(self, table: str, row: Row) -> Row:
        query, params = build_insert(table, row)
        rows, _ = await self._execute(query, params, fetch=True)
        return _stringify_ids(rows[0])

    async def update(self, table: str, scope: Scope, row_id: str, patch: Row) -> None:
        query, params = build_update(table, scope, [Filter.eq("id", row_id)], patch)
        _, count = await self._execute(query, params, fetch=False)
        if count == 0:
            raise NotFoundError(table, row_id)

    async def update_where(self, table: str, scope: Scope, filters: Sequence[Filter], patch: Row) -> int:
        if _has_empty_in(filters):
            return 0
        query, params = build_update(table, scope, filters, patch)
        _, count = await self._execute(query, params, fetch=False)
        return count

    async def delete(self, table: str, scope: Scope, row_id: str) -> None:
        query, params = build_delete(table, scope, [Filter.eq("id", row_id)])
        _, count = await self._execute(query, params, fetch=False)
        if count == 0:
            raise NotFoundError(table, row_id)


def _stringify_ids(row: Row) -> Row:
    # uuid columns come back as UUID objects; the engine keys everything by str.
    for column, value in row.items():
        if value is not None and (column == "id" or column.endswith("_id")):
            row[column] = str(value)
    return row


__all__ = [
    "PostgresRowStore",
    "build_select",
    "build_insert",
    "build_update",
    "build_delete",
    "translate_error",
]
