from typing import Awaitable, Callable, List, Optional
import logging

from app.config import settings
from app.core.clock import as_utc, to_iso, utcnow
from app.core.exceptions import ConflictError, NotFoundError, UnexpectedError, ValidationError
from app.database.row_store import RowStore
from app.modules.circles.assignments import AssignmentWriter
from app.modules.circles.code_generator import is_valid_code_format, normalize_code
from app.modules.circles.models import CIRCLES_TABLE, MEMBERS_TABLE
from app.modules.circles.repository import CircleRepository
from app.modules.circles.schemas import Circle, CircleMember, CircleStatus, LeaveResult, UserCircle

logger = logging.getLogger(__name__)


def short_device(device_id: str) -> str:
    return f"{device_id[:8]}..."


def _split_joined(row: dict) -> UserCircle:
    data = dict(row)
    circle = Circle(**data.pop(CIRCLES_TABLE))
    return UserCircle(circle=circle, membership=CircleMember(**data))


class MembershipManager:
    def __init__(
        self,
        store: RowStore,
        repository: CircleRepository,
        writer: AssignmentWriter,
        delete_circle: Callable[[str], Awaitable[bool]],
        max_members: Optional[int] = None,
    ):
        self.store = store
        self.repository = repository
        self.writer = writer
        self.delete_circle = delete_circle
        self.max_members = max_members or settings.circle_max_members

    @staticmethod
    def validate_nickname(nickname: str) -> str:
        """Trim and check a member nickname"""
        cleaned = (nickname or "").strip()
        if not cleaned:
            raise ValidationError("Your nickname is required.")
        if len(cleaned) > settings.nickname_max_length:
            raise ValidationError(f"The nickname cannot exceed {settings.nickname_max_length} characters.")
        return cleaned

    async def find_active_membership(self, device_id: str) -> Optional[UserCircle]:
        """The device's membership in an active circle, if any."""
        rows = await self.store.select(
            MEMBERS_TABLE,
            {"device_id": device_id, f"{CIRCLES_TABLE}.status": CircleStatus.ACTIVE.value},
            join=CIRCLES_TABLE,
            limit=1,
        )
        if not rows:
            logger.debug(f"No active circle for device {short_device(device_id)}")
            return None
        return _split_joined(rows[0])

    async def history(self, device_id: str) -> List[UserCircle]:
        """Every circle the device has joined, newest first"""
        rows = await self.store.select(
            MEMBERS_TABLE,
            {"device_id": device_id},
            join=CIRCLES_TABLE,
            order_by="joined_at",
            desc=True,
        )
        return [_split_joined(row) for row in rows]

    async def get_member(self, circle_id: str, member_id: str) -> Optional[CircleMember]:
        """Get a member of the circle by id"""
        rows = await self.store.select(MEMBERS_TABLE, {"id": member_id, "circle_id": circle_id}, limit=1)
        return CircleMember(**rows[0]) if rows else None

    async def get_member_by_device(self, circle_id: str, device_id: str) -> Optional[CircleMember]:
        """Get the member of the circle using this device"""
        rows = await self.store.select(
            MEMBERS_TABLE, {"circle_id": circle_id, "device_id": device_id}, limit=1
        )
        return CircleMember(**rows[0]) if rows else None

    async def list_members(self, circle_id: str) -> List[CircleMember]:
        """List members in join order"""
        rows = await self.store.select(MEMBERS_TABLE, {"circle_id": circle_id}, order_by="joined_at")
        return [CircleMember(**row) for row in rows]

    async def count_members(self, circle_id: str) -> int:
        """Count members of the circle"""
        return await self.store.count(MEMBERS_TABLE, {"circle_id": circle_id})

    async def add_member(self, circle_id: str, device_id: str, nickname: str,
                         is_organizer: bool = False) -> CircleMember:
        """Add a member to the circle"""
        rows = await self.store.insert(MEMBERS_TABLE, {
            "circle_id": circle_id,
            "device_id": device_id,
            "nickname": nickname,
            "joined_at": to_iso(),
            "is_organizer": is_organizer,
        })
        if not rows:
            raise UnexpectedError("Could not add you to the circle.")
        member = CircleMember(**rows[0])
        logger.info(f"Member {member.id} joined circle {circle_id} (organizer={is_organizer})")
        return member

    async def resolve_code(self, code: str) -> Circle:
        """Active, unexpired circle behind a share code."""
        normalized = normalize_code(code)
        if not is_valid_code_format(normalized):
            raise ValidationError("Invalid code format. Use the XXXX-XXXX format.")
        circle = await self.repository.get_circle_by_code(normalized)
        if circle is None:
            raise NotFoundError("This code does not match any active circle.")
        if as_utc(circle.expires_at) < utcnow():
            raise ConflictError("This circle has expired.")
        return circle

    async def join(self, code: str, nickname: str, device_id: str) -> UserCircle:
        """Join the circle behind a share code"""
        if not is_valid_code_format(normalize_code(code)):
            raise ValidationError("Invalid code format. Use the XXXX-XXXX format.")
        nickname = self.validate_nickname(nickname)
        circle = await self.resolve_code(code)

        existing = await self.find_active_membership(device_id)
        if existing:
            raise ConflictError(
                f'You are already a member of the circle "{existing.circle.name}". '
                f"Leave it before joining another one."
            )

        members = await self.list_members(circle.id)
        if len(members) >= self.max_members:
            raise ConflictError(f"This circle is full ({self.max_members} members maximum).")
        wanted = nickname.casefold()
        if any(m.nickname.casefold() == wanted for m in members):
            raise ConflictError(f'The nickname "{nickname}" is already taken in this circle.')

        membership = await self.add_member(circle.id, device_id, nickname)
        return UserCircle(circle=circle, membership=membership)

    async def _drop_member(self, circle_id: str, member: CircleMember) -> None:
        released = await self.writer.release_member(circle_id, member.id)
        detached = await self.writer.detach_member(circle_id, member.id)
        await self.store.delete(MEMBERS_TABLE, {"id": member.id})
        logger.info(
            f"Member {member.id} left circle {circle_id}, {released} Juz released, "
            f"{detached} completed Juz kept"
        )

    async def leave(self, circle_id: str, device_id: str) -> LeaveResult:
        """Leave a circle; the organizer leaving deletes it"""
        member = await self.get_member_by_device(circle_id, device_id)
        if member is None:
            raise NotFoundError("You are not a member of this circle.")
        if member.is_organizer:
            logger.info(f"Organizer left circle {circle_id}, deleting it")
            if not await self.delete_circle(circle_id):
                logger.warning(f"Circle {circle_id} was only partly deleted after its organizer left")
            return LeaveResult(circle_deleted=True)
        await self._drop_member(circle_id, member)
        return LeaveResult(circle_deleted=False)

    async def remove(self, circle_id: str, member_id: str) -> None:
        """Remove a regular member and release their unfinished Juz"""
        member = await self.get_member(circle_id, member_id)
        if member is None:
            raise NotFoundError("Member not found in this circle.")
        if member.is_organizer:
            raise ConflictError("The organizer cannot be removed from the circle.")
        await self._drop_member(circle_id, member)
