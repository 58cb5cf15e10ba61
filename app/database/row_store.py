"""
Generic filtered-row store used by the circle managers.

The managers only ever need insert, equality-filtered select (optionally
embedding a parent row), count, update and delete. Keeping them behind this
interface lets the coordination logic run against Supabase in production and
against an in-memory store in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import logging

import httpx
from supabase import AsyncClient

from app.core.exceptions import BackendUnavailableError
from app.database.supabase_client import get_supabase, is_supabase_configured

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Mapping[str, Any]


class RowStore(ABC):
    """Row operations available on the circles, circle_members and circle_assignments tables.

    No operation spans more than one table and none of them is transactional.
    """

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def insert(self, table: str, rows: Union[Row, Sequence[Row]]) -> List[Row]:
        """Insert one row or a list of rows; returns the stored rows (with generated ids)."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        columns: str = "*",
        join: Optional[str] = None,
        lt: Optional[Filters] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Select rows matching every equality filter.

        ``join`` names a parent table referenced through ``<parent singular>_id``
        (``circles`` through ``circle_id``); the parent row is embedded under its
        table name and only rows having one are returned. Filters on the parent
        use dotted keys, e.g. ``{"circles.status": "active"}``. ``lt`` holds
        strict less-than filters.
        """

    @abstractmethod
    async def count(self, table: str, filters: Optional[Filters] = None) -> int:
        """Number of rows matching every equality filter."""

    @abstractmethod
    async def update(self, table: str, values: Row, filters: Filters) -> List[Row]:
        """Update matching rows; returns the rows after the update."""

    @abstractmethod
    async def delete(self, table: str, filters: Filters) -> List[Row]:
        """Delete matching rows; returns the deleted rows."""


class SupabaseRowStore(RowStore):
    def __init__(self, supabase: Optional[AsyncClient]):
        self.supabase = supabase

    def is_available(self) -> bool:
        return self.supabase is not None and is_supabase_configured()

    @staticmethod
    def _apply(query, filters: Optional[Filters], lt: Optional[Filters] = None):
        for column, value in (filters or {}).items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)
        for column, value in (lt or {}).items():
            query = query.lt(column, value)
        return query

    async def _execute(self, table: str, query):
        try:
            return await query.execute()
        except httpx.TransportError as e:
            logger.error(f"Supabase unreachable while querying {table}: {str(e)}")
            raise BackendUnavailableError() from e

    async def insert(self, table: str, rows: Union[Row, Sequence[Row]]) -> List[Row]:
        payload = rows if isinstance(rows, Mapping) else list(rows)
        result = await self._execute(table, self.supabase.table(table).insert(payload))
        return result.data or []

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        columns: str = "*",
        join: Optional[str] = None,
        lt: Optional[Filters] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        if join:
            columns = f"{columns}, {join}!inner(*)"
        query = self._apply(self.supabase.table(table).select(columns), filters, lt)
        if order_by:
            query = query.order(order_by, desc=desc)
        if limit is not None:
            query = query.limit(limit)
        result = await self._execute(table, query)
        return result.data or []

    async def count(self, table: str, filters: Optional[Filters] = None) -> int:
        query = self._apply(self.supabase.table(table).select("id", count="exact"), filters)
        result = await self._execute(table, query)
        return result.count or 0

    async def update(self, table: str, values: Row, filters: Filters) -> List[Row]:
        query = self._apply(self.supabase.table(table).update(values), filters)
        result = await self._execute(table, query)
        return result.data or []

    async def delete(self, table: str, filters: Filters) -> List[Row]:
        query = self._apply(self.supabase.table(table).delete(), filters)
        result = await self._execute(table, query)
        return result.data or []


async def get_row_store() -> RowStore:
    if not is_supabase_configured():
        # Unconfigured store: callers short-circuit on is_available() before querying
        return SupabaseRowStore(None)
    return SupabaseRowStore(await get_supabase())
