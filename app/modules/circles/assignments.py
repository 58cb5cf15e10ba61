from typing import List, Optional
import logging

from app.config import settings
from app.core.clock import to_iso
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.database.row_store import RowStore
from app.modules.circles.models import ASSIGNMENTS_TABLE
from app.modules.circles.repository import CircleRepository
from app.modules.circles.schemas import (
    AssignmentStatus, AssignmentWithMember, CircleAssignment, CircleMember, CompletionResult,
)

logger = logging.getLogger(__name__)

UNASSIGNED_VALUES = {
    "status": AssignmentStatus.UNASSIGNED.value,
    "member_id": None,
    "assigned_at": None,
}

# Statuses a member can still hand back; completed Juz stay completed
RELEASABLE_STATUSES = (AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS)


class AssignmentWriter:
    """Single write path for assignment rows.

    The default writer matches on the row id only, so two concurrent writers
    on the same Juz resolve last-write-wins.
    """

    def __init__(self, store: RowStore):
        self.store = store

    def _filters(self, current: CircleAssignment) -> dict:
        return {"id": current.id}

    def _lost_update(self, current: CircleAssignment) -> Exception:
        return NotFoundError(f"Juz {current.juz_number} no longer exists in this circle.")

    async def write(self, current: CircleAssignment, values: dict) -> CircleAssignment:
        """Update the row read as current"""
        rows = await self.store.update(ASSIGNMENTS_TABLE, values, self._filters(current))
        if not rows:
            raise self._lost_update(current)
        return CircleAssignment(**rows[0])

    async def release_member(self, circle_id: str, member_id: str) -> int:
        """Hand every unfinished Juz of a member back to the pool."""
        released = 0
        for status in RELEASABLE_STATUSES:
            rows = await self.store.update(
                ASSIGNMENTS_TABLE,
                UNASSIGNED_VALUES,
                {"circle_id": circle_id, "member_id": member_id, "status": status.value},
            )
            released += len(rows)
        return released

    async def detach_member(self, circle_id: str, member_id: str) -> int:
        """Clear the reader of a member's completed Juz before their row is deleted.

        Status and completed_at are kept, so the circle's progress does not move.
        """
        rows = await self.store.update(
            ASSIGNMENTS_TABLE,
            {"member_id": None},
            {"circle_id": circle_id, "member_id": member_id, "status": AssignmentStatus.COMPLETED.value},
        )
        return len(rows)


class CompareAndSetAssignmentWriter(AssignmentWriter):
    """Writer that only applies an update if the row still has the status and holder it was read with."""

    def _filters(self, current: CircleAssignment) -> dict:
        return {
            "id": current.id,
            "status": current.status.value,
            "member_id": current.member_id,
        }

    def _lost_update(self, current: CircleAssignment) -> Exception:
        return ConflictError(
            f"Juz {current.juz_number} was changed by someone else. Refresh and try again."
        )


def build_assignment_writer(store: RowStore, strict: Optional[bool] = None) -> AssignmentWriter:
    if strict is None:
        strict = settings.strict_assignment_updates
    return CompareAndSetAssignmentWriter(store) if strict else AssignmentWriter(store)


class AssignmentStateMachine:
    """Status transitions of a single Juz.

    unassigned -> assigned -> in_progress -> completed. Any order is accepted
    between the first three; completed is terminal.
    """

    def __init__(self, repository: CircleRepository, membership, progress, writer: AssignmentWriter,
                 total_juz: Optional[int] = None):
        self.repository = repository
        self.membership = membership
        self.progress = progress
        self.writer = writer
        self.total_juz = total_juz or settings.circle_total_juz

    async def _load(self, circle_id: str, juz_number: int) -> CircleAssignment:
        if not 1 <= juz_number <= self.total_juz:
            raise ValidationError(f"Juz number must be between 1 and {self.total_juz}.")
        assignment = await self.repository.get_assignment(circle_id, juz_number)
        if assignment is None:
            raise NotFoundError(f"Juz {juz_number} not found in this circle.")
        return assignment

    @staticmethod
    def _ensure_not_completed(assignment: CircleAssignment) -> None:
        if assignment.status == AssignmentStatus.COMPLETED:
            raise ConflictError(f"Juz {assignment.juz_number} is already completed and can no longer change.")

    async def _load_owned(self, circle_id: str, juz_number: int, device_id: str):
        member = await self.membership.get_member_by_device(circle_id, device_id)
        if member is None:
            raise NotFoundError("You are not a member of this circle.")
        assignment = await self._load(circle_id, juz_number)
        if assignment.member_id != member.id:
            raise ConflictError(f"Juz {juz_number} is not assigned to you.")
        return member, assignment

    async def assign(self, circle_id: str, juz_number: int, member_id: str) -> CircleAssignment:
        """Give a Juz to a member, replacing any previous holder"""
        member = await self.membership.get_member(circle_id, member_id)
        if member is None:
            raise NotFoundError("Member not found in this circle.")
        current = await self._load(circle_id, juz_number)
        self._ensure_not_completed(current)
        updated = await self.writer.write(current, {
            "status": AssignmentStatus.ASSIGNED.value,
            "member_id": member.id,
            "assigned_at": to_iso(),
        })
        if current.member_id and current.member_id != member.id:
            logger.info(f"Juz {juz_number} of circle {circle_id} reassigned from {current.member_id} to {member.id}")
        return updated

    async def unassign(self, circle_id: str, juz_number: int) -> CircleAssignment:
        """Put a Juz back in the pool"""
        current = await self._load(circle_id, juz_number)
        self._ensure_not_completed(current)
        return await self.writer.write(current, UNASSIGNED_VALUES)

    async def mark_in_progress(self, circle_id: str, juz_number: int, device_id: str) -> CircleAssignment:
        """Mark the caller's Juz as being read"""
        _, current = await self._load_owned(circle_id, juz_number, device_id)
        if current.status == AssignmentStatus.IN_PROGRESS:
            return current
        self._ensure_not_completed(current)
        return await self.writer.write(current, {"status": AssignmentStatus.IN_PROGRESS.value})

    async def mark_completed(self, circle_id: str, juz_number: int, device_id: str) -> CompletionResult:
        """Mark the caller's Juz as read and update circle progress"""
        _, current = await self._load_owned(circle_id, juz_number, device_id)
        self._ensure_not_completed(current)
        updated = await self.writer.write(current, {
            "status": AssignmentStatus.COMPLETED.value,
            "completed_at": to_iso(),
        })
        progress = await self.progress.recompute(circle_id)
        circle_completed = progress.completed >= progress.total
        logger.info(f"Juz {juz_number} completed in circle {circle_id} ({progress.completed}/{progress.total})")
        return CompletionResult(assignment=updated, circle_completed=circle_completed)

    async def my_assignments(self, circle_id: str, device_id: str) -> List[CircleAssignment]:
        """List the Juz held by the caller"""
        member = await self.membership.get_member_by_device(circle_id, device_id)
        if member is None:
            raise NotFoundError("You are not a member of this circle.")
        return await self.repository.member_assignments(circle_id, member.id)

    async def list_with_members(self, circle_id: str) -> List[AssignmentWithMember]:
        """List all 30 Juz with their current reader"""
        assignments = await self.repository.list_assignments(circle_id)
        members = {m.id: m for m in await self.membership.list_members(circle_id)}
        result = []
        for assignment in assignments:
            member: Optional[CircleMember] = members.get(assignment.member_id) if assignment.member_id else None
            result.append(AssignmentWithMember(**assignment.model_dump(), member=member))
        return result
