"""Shared test fixtures for the circle coordination tests."""

import copy
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from app.core.clock import as_utc, utcnow
from app.database.row_store import RowStore
from app.modules.circles.models import ASSIGNMENTS_TABLE, CIRCLES_TABLE, MEMBERS_TABLE
from app.modules.circles.service import CircleService


# ─────────────────────────────────────────────────────────────────
# In-memory row store
# ─────────────────────────────────────────────────────────────────


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return as_utc(value)
        except ValueError:
            return value
    return value


class InMemoryRowStore(RowStore):
    """RowStore over plain lists of dicts, with one-shot failure injection."""

    def __init__(self):
        self.tables: Dict[str, List[dict]] = {
            CIRCLES_TABLE: [],
            MEMBERS_TABLE: [],
            ASSIGNMENTS_TABLE: [],
        }
        self.available = True
        self.failures: Dict[Tuple[str, str], Exception] = {}

    def is_available(self) -> bool:
        return self.available

    def fail_next(self, operation: str, table: str, error: Optional[Exception] = None) -> None:
        self.failures[(operation, table)] = error or RuntimeError(f"{operation} on {table} failed")

    def _maybe_fail(self, operation: str, table: str) -> None:
        error = self.failures.pop((operation, table), None)
        if error is not None:
            raise error

    def _embed(self, table: str, row: dict, join: Optional[str]) -> Optional[dict]:
        result = copy.deepcopy(row)
        if join:
            foreign_key = f"{join[:-1]}_id"
            parent = next((p for p in self.tables[join] if p["id"] == row.get(foreign_key)), None)
            if parent is None:
                return None
            result[join] = copy.deepcopy(parent)
        return result

    @staticmethod
    def _matches(row: dict, filters, lt=None) -> bool:
        for column, expected in (filters or {}).items():
            value = row
            for part in column.split("."):
                value = value.get(part) if isinstance(value, dict) else None
            if value != expected:
                return False
        for column, bound in (lt or {}).items():
            value = row.get(column)
            if value is None or not _comparable(value) < _comparable(bound):
                return False
        return True

    async def insert(self, table, rows):
        self._maybe_fail("insert", table)
        batch = [rows] if isinstance(rows, dict) else list(rows)
        stored = []
        for row in batch:
            new_row = copy.deepcopy(row)
            new_row.setdefault("id", str(uuid.uuid4()))
            self.tables[table].append(new_row)
            stored.append(copy.deepcopy(new_row))
        return stored

    async def select(self, table, filters=None, *, columns="*", join=None, lt=None,
                     order_by=None, desc=False, limit=None):
        self._maybe_fail("select", table)
        rows = []
        for row in self.tables[table]:
            embedded = self._embed(table, row, join)
            if embedded is not None and self._matches(embedded, filters, lt):
                rows.append(embedded)
        if order_by:
            rows.sort(key=lambda r: _comparable(r.get(order_by)), reverse=desc)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def count(self, table, filters=None):
        self._maybe_fail("count", table)
        return sum(1 for row in self.tables[table] if self._matches(row, filters))

    async def update(self, table, values, filters):
        self._maybe_fail("update", table)
        updated = []
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table, filters):
        self._maybe_fail("delete", table)
        kept, deleted = [], []
        for row in self.tables[table]:
            (deleted if self._matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        if table == MEMBERS_TABLE:
            # circle_assignments.member_id is ON DELETE SET NULL
            gone = {row["id"] for row in deleted}
            for assignment in self.tables[ASSIGNMENTS_TABLE]:
                if assignment.get("member_id") in gone:
                    assignment["member_id"] = None
        return deleted

    def rows(self, table: str, **filters) -> List[dict]:
        return [r for r in self.tables[table] if self._matches(r, filters)]


# ─────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────


@pytest.fixture
def store():
    return InMemoryRowStore()


@pytest.fixture
def service(store):
    return CircleService(store)


@pytest.fixture
def organizer_device():
    return "3f2b8c1e-organizer-device"


@pytest.fixture
def member_device():
    return "9a7d4e20-member-device"


@pytest.fixture
def deadline():
    return utcnow() + timedelta(days=10)


@pytest_asyncio.fixture
async def circle(service, organizer_device, deadline):
    """A freshly created circle, as returned to its organizer."""
    result = await service.create_circle("Family", "Dad", deadline, organizer_device)
    assert result.success, result.error
    return result.data


@pytest_asyncio.fixture
async def member(service, circle, member_device):
    """A second member who joined the circle fixture."""
    result = await service.join_circle(circle.circle.code, "Mom", member_device)
    assert result.success, result.error
    return result.data.membership
