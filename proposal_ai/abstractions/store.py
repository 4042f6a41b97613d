"""
Key-value persistence abstraction used by the pipeline.
Implementations: in-process memory (default, tests) and Supabase tables.
"""

from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Dict, List, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


def _matches(
    row: Dict[str, Any],
    filters: Optional[Dict[str, Any]],
    gte: Optional[Dict[str, Any]],
    lt: Optional[Dict[str, Any]],
    lte: Optional[Dict[str, Any]],
) -> bool:
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            if row.get(key) not in value:
                return False
        elif row.get(key) != value:
            return False
    for key, value in (gte or {}).items():
        if row.get(key) is None or row[key] < value:
            return False
    for key, value in (lt or {}).items():
        if row.get(key) is None or row[key] >= value:
            return False
    for key, value in (lte or {}).items():
        if row.get(key) is None or row[key] > value:
            return False
    return True


class KeyValueStore(ABC):
    """Interface for table-scoped key-value persistence (get/put/query/delete)."""

    @abstractmethod
    async def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        """Get a row by key. Returns None if not found."""
        pass

    @abstractmethod
    async def put(self, table: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace the row stored under key. Returns the stored row."""
        pass

    @abstractmethod
    async def delete(self, table: str, key: str) -> bool:
        """Delete a row by key. Returns True if something was deleted."""
        pass

    @abstractmethod
    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        gte: Optional[Dict[str, Any]] = None,
        lt: Optional[Dict[str, Any]] = None,
        lte: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Rows matching equality filters (list values mean IN) and range bounds."""
        pass

    async def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete every row matching filters. Returns the number of rows removed.

        Default implementation queries then deletes by the rows' `id`.
        """
        rows = await self.query(table, filters=filters)
        removed = 0
        for row in rows:
            if row.get("id") is not None and await self.delete(table, row["id"]):
                removed += 1
        return removed


class InMemoryStore(KeyValueStore):
    """Process-local store. Rows are deep-copied on the way in and out."""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        row = self._tables.get(table, {}).get(key)
        return deepcopy(row) if row is not None else None

    async def put(self, table: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            self._tables.setdefault(table, {})[key] = deepcopy(value)
        return deepcopy(value)

    async def delete(self, table: str, key: str) -> bool:
        async with self._lock:
            return self._tables.get(table, {}).pop(key, None) is not None

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        gte: Optional[Dict[str, Any]] = None,
        lt: Optional[Dict[str, Any]] = None,
        lte: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        rows = [
            deepcopy(row)
            for row in self._tables.get(table, {}).values()
            if _matches(row, filters, gte, lt, lte)
        ]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)))
        return rows

    async def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        async with self._lock:
            rows = self._tables.get(table, {})
            doomed = [k for k, row in rows.items() if _matches(row, filters, None, None, None)]
            for key in doomed:
                del rows[key]
            return len(doomed)

    def clear(self):
        self._tables.clear()


class SupabaseStore(KeyValueStore):
    """Supabase implementation. Every table keeps the store key in its `id` column."""

    def __init__(self, client, key_column: str = "id"):
        self._client = client
        self._key_column = key_column

    async def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        def _run():
            return self._client.table(table).select("*").eq(self._key_column, key).limit(1).execute()

        r = await asyncio.to_thread(_run)
        return r.data[0] if r.data else None

    async def put(self, table: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        payload = {**value, self._key_column: key}

        def _run():
            return self._client.table(table).upsert(payload).execute()

        r = await asyncio.to_thread(_run)
        return r.data[0] if r.data else payload

    async def delete(self, table: str, key: str) -> bool:
        def _run():
            return self._client.table(table).delete().eq(self._key_column, key).execute()

        r = await asyncio.to_thread(_run)
        return bool(r.data)

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        gte: Optional[Dict[str, Any]] = None,
        lt: Optional[Dict[str, Any]] = None,
        lte: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        def _run():
            q = self._client.table(table).select("*")
            for key, value in (filters or {}).items():
                if isinstance(value, (list, tuple, set)):
                    q = q.in_(key, list(value))
                else:
                    q = q.eq(key, value)
            for key, value in (gte or {}).items():
                q = q.gte(key, value)
            for key, value in (lt or {}).items():
                q = q.lt(key, value)
            for key, value in (lte or {}).items():
                q = q.lte(key, value)
            if order_by:
                q = q.order(order_by)
            return q.execute()

        r = await asyncio.to_thread(_run)
        return list(r.data or [])

    async def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        def _run():
            q = self._client.table(table).delete()
            for key, value in filters.items():
                q = q.eq(key, value)
            return q.execute()

        r = await asyncio.to_thread(_run)
        return len(r.data or [])
