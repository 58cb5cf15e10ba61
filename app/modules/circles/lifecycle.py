from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple
import logging

from app.config import settings
from app.core.clock import add_years, as_utc, start_of_tomorrow, to_iso, utcnow
from app.core.exceptions import ConflictError, UnexpectedError, ValidationError
from app.database.row_store import RowStore
from app.modules.circles.code_generator import CodeGenerator
from app.modules.circles.membership import MembershipManager, short_device
from app.modules.circles.models import ASSIGNMENTS_TABLE, CIRCLES_TABLE, MEMBERS_TABLE
from app.modules.circles.schemas import AssignmentStatus, Circle, CircleStatus, UserCircle

logger = logging.getLogger(__name__)

Compensation = Tuple[str, Callable[[], Awaitable[object]]]


class CircleLifecycleManager:
    def __init__(
        self,
        store: RowStore,
        code_generator: CodeGenerator,
        membership: MembershipManager,
        total_juz: Optional[int] = None,
    ):
        self.store = store
        self.code_generator = code_generator
        self.membership = membership
        self.total_juz = total_juz or settings.circle_total_juz

    @staticmethod
    def validate_name(name: str) -> str:
        """Trim and check a circle name"""
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("The circle name is required.")
        if len(cleaned) > settings.circle_name_max_length:
            raise ValidationError(
                f"The circle name cannot exceed {settings.circle_name_max_length} characters."
            )
        return cleaned

    @staticmethod
    def validate_expiration(expires_at: datetime, now: Optional[datetime] = None) -> datetime:
        """Check a deadline lies between tomorrow 00:00 UTC and one year from now"""
        now = now or utcnow()
        expires_at = as_utc(expires_at)
        if expires_at < start_of_tomorrow(now):
            raise ValidationError("The deadline must be tomorrow or later.")
        if expires_at > add_years(now, settings.circle_max_lifetime_years):
            raise ValidationError("The deadline cannot be more than one year away.")
        return expires_at

    async def create(self, name: str, organizer_nickname: str, expires_at: datetime,
                     device_id: str) -> UserCircle:
        """Create a circle with its organizer and 30 unassigned Juz"""
        existing = await self.membership.find_active_membership(device_id)
        if existing:
            raise ConflictError(
                f'You are already a member of the circle "{existing.circle.name}". '
                f"Leave it to create a new one."
            )

        name = self.validate_name(name)
        nickname = self.membership.validate_nickname(organizer_nickname)
        expires_at = self.validate_expiration(expires_at)

        code = await self.code_generator.generate()
        rows = await self.store.insert(CIRCLES_TABLE, {
            "code": code,
            "name": name,
            "organizer_id": device_id,
            "created_at": to_iso(),
            "expires_at": to_iso(expires_at),
            "total_juz": self.total_juz,
            "completed_juz": 0,
            "status": CircleStatus.ACTIVE.value,
        })
        if not rows:
            raise UnexpectedError("Error while creating the circle.")
        circle = Circle(**rows[0])
        logger.info(f"Circle {circle.id} created by {short_device(device_id)} with code {code}")

        # No transaction spans the three tables: each forward step registers its
        # undo first, and a failure replays them in reverse
        compensations: List[Compensation] = [
            ("circle", lambda: self.store.delete(CIRCLES_TABLE, {"id": circle.id})),
        ]
        try:
            compensations.append(
                ("members", lambda: self.store.delete(MEMBERS_TABLE, {"circle_id": circle.id}))
            )
            membership = await self.membership.add_member(circle.id, device_id, nickname, is_organizer=True)

            compensations.append(
                ("assignments", lambda: self.store.delete(ASSIGNMENTS_TABLE, {"circle_id": circle.id}))
            )
            await self._create_assignments(circle.id)
        except Exception as e:
            logger.error(f"Circle {circle.id} creation failed, rolling back: {str(e)}")
            await self._compensate(circle.id, compensations)
            raise

        return UserCircle(circle=circle, membership=membership)

    async def _create_assignments(self, circle_id: str) -> None:
        rows = await self.store.insert(ASSIGNMENTS_TABLE, [
            {
                "circle_id": circle_id,
                "juz_number": juz_number,
                "member_id": None,
                "status": AssignmentStatus.UNASSIGNED.value,
                "assigned_at": None,
                "completed_at": None,
            }
            for juz_number in range(1, self.total_juz + 1)
        ])
        if len(rows) != self.total_juz:
            raise UnexpectedError(f"Expected {self.total_juz} Juz rows, store returned {len(rows)}.")

    async def _compensate(self, circle_id: str, compensations: List[Compensation]) -> None:
        for label, undo in reversed(compensations):
            try:
                await undo()
            except Exception as e:
                logger.warning(f"Rollback of {label} for circle {circle_id} failed: {str(e)}")

    async def delete(self, circle_id: str) -> bool:
        """Delete assignments, members, then the circle. Every step runs even if an earlier one fails.

        Returns True when all three deletions succeeded.
        """
        ok = True
        for table, filters in (
            (ASSIGNMENTS_TABLE, {"circle_id": circle_id}),
            (MEMBERS_TABLE, {"circle_id": circle_id}),
            (CIRCLES_TABLE, {"id": circle_id}),
        ):
            try:
                await self.store.delete(table, filters)
            except Exception as e:
                ok = False
                logger.error(f"Error deleting {table} rows of circle {circle_id}: {str(e)}")
        if ok:
            logger.info(f"Circle {circle_id} deleted")
        return ok
