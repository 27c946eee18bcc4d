from .base import Filter, FilterOp, Order, Row, RowStore, Scope
from .postgres import PostgresRowStore

__all__ = ["Filter", "FilterOp", "Order", "Row", "RowStore", "Scope", "PostgresRowStore"]
