from datetime import datetime
from typing import List, Optional
import logging

from app.core.clock import to_iso
from app.database.row_store import RowStore
from app.modules.circles.models import ASSIGNMENTS_TABLE, CIRCLES_TABLE
from app.modules.circles.schemas import AssignmentStatus, Circle, CircleAssignment, CircleStatus
from app.modules.circles.code_generator import normalize_code

logger = logging.getLogger(__name__)


class CircleRepository:
    """Typed reads over the circles and circle_assignments tables."""

    def __init__(self, store: RowStore):
        self.store = store

    async def get_circle(self, circle_id: str) -> Optional[Circle]:
        rows = await self.store.select(CIRCLES_TABLE, {"id": circle_id}, limit=1)
        return Circle(**rows[0]) if rows else None

    async def get_circle_by_code(self, code: str) -> Optional[Circle]:
        """Active circle for a share code, None when unknown or already completed."""
        normalized = normalize_code(code)
        rows = await self.store.select(
            CIRCLES_TABLE,
            {"code": normalized, "status": CircleStatus.ACTIVE.value},
            limit=1,
        )
        if not rows:
            logger.info(f"No active circle for code {normalized}")
            return None
        return Circle(**rows[0])

    async def list_expired(self, now: datetime) -> List[Circle]:
        rows = await self.store.select(
            CIRCLES_TABLE,
            {"status": CircleStatus.ACTIVE.value},
            lt={"expires_at": to_iso(now)},
        )
        return [Circle(**row) for row in rows]

    async def update_circle(self, circle_id: str, values: dict) -> Optional[Circle]:
        rows = await self.store.update(CIRCLES_TABLE, values, {"id": circle_id})
        return Circle(**rows[0]) if rows else None

    async def list_assignments(self, circle_id: str) -> List[CircleAssignment]:
        rows = await self.store.select(
            ASSIGNMENTS_TABLE, {"circle_id": circle_id}, order_by="juz_number"
        )
        return [CircleAssignment(**row) for row in rows]

    async def get_assignment(self, circle_id: str, juz_number: int) -> Optional[CircleAssignment]:
        rows = await self.store.select(
            ASSIGNMENTS_TABLE,
            {"circle_id": circle_id, "juz_number": juz_number},
            limit=1,
        )
        return CircleAssignment(**rows[0]) if rows else None

    async def member_assignments(self, circle_id: str, member_id: str) -> List[CircleAssignment]:
        rows = await self.store.select(
            ASSIGNMENTS_TABLE,
            {"circle_id": circle_id, "member_id": member_id},
            order_by="juz_number",
        )
        return [CircleAssignment(**row) for row in rows]

    async def count_completed(self, circle_id: str) -> int:
        return await self.store.count(
            ASSIGNMENTS_TABLE,
            {"circle_id": circle_id, "status": AssignmentStatus.COMPLETED.value},
        )
