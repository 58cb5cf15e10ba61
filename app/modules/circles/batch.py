"""
Pending Juz edits accumulated by an organizer before saving.

Saving replays the edits one Juz at a time; nothing is rolled back when a
unit fails, so the caller gets a per-unit tally instead of all-or-nothing.
"""

from typing import Dict, Iterable, List, Mapping, Optional
import logging

from app.core.exceptions import CircleError, ConflictError, UnexpectedError
from app.modules.circles.assignments import AssignmentStateMachine
from app.modules.circles.schemas import AssignmentStatus, BatchCommitResult, CircleAssignment

logger = logging.getLogger(__name__)


async def apply_changes(
    machine: AssignmentStateMachine,
    circle_id: str,
    changes: Mapping[int, Optional[str]],
) -> BatchCommitResult:
    """Apply juz_number -> member_id (None to unassign) as independent single-Juz calls."""
    result = BatchCommitResult()
    for juz_number in sorted(changes):
        member_id = changes[juz_number]
        try:
            if member_id:
                await machine.assign(circle_id, juz_number, member_id)
            else:
                await machine.unassign(circle_id, juz_number)
            result.applied.append(juz_number)
        except CircleError as e:
            result.failed[juz_number] = e.message
        except Exception as e:
            logger.exception(f"Unexpected error updating Juz {juz_number} of circle {circle_id}: {e}")
            result.failed[juz_number] = UnexpectedError.default_message
    if result.failed:
        logger.warning(f"{result.error_count} Juz update(s) failed in circle {circle_id}")
    return result


class PendingAssignmentBatch:
    def __init__(self, assignments: Iterable[CircleAssignment]):
        self.loaded: Dict[int, CircleAssignment] = {a.juz_number: a for a in assignments}
        self.changes: Dict[int, Optional[str]] = {}

    def __len__(self) -> int:
        return len(self.changes)

    def effective_member(self, juz_number: int) -> Optional[str]:
        if juz_number in self.changes:
            return self.changes[juz_number]
        assignment = self.loaded.get(juz_number)
        return assignment.member_id if assignment else None

    def _ensure_editable(self, juz_number: int) -> None:
        assignment = self.loaded.get(juz_number)
        if assignment and assignment.status == AssignmentStatus.COMPLETED:
            raise ConflictError(f"Juz {juz_number} is already completed and cannot be reassigned.")

    def stage(self, juz_number: int, member_id: Optional[str]) -> None:
        self._ensure_editable(juz_number)
        self.changes[juz_number] = member_id

    def toggle(self, juz_number: int, member_id: str) -> Optional[str]:
        """Give the Juz to member_id, or take it back if they already hold it. Returns the new holder."""
        self._ensure_editable(juz_number)
        new_holder = None if self.effective_member(juz_number) == member_id else member_id
        self.changes[juz_number] = new_holder
        return new_holder

    def drop_member(self, member_id: str) -> None:
        """Forget staged edits targeting a member who was removed meanwhile."""
        self.changes = {juz: mid for juz, mid in self.changes.items() if mid != member_id}

    def member_juz(self, member_id: str) -> List[int]:
        return [juz for juz in sorted(self.loaded) if self.effective_member(juz) == member_id]

    async def commit(self, machine: AssignmentStateMachine, circle_id: str) -> BatchCommitResult:
        result = await apply_changes(machine, circle_id, self.changes)
        self.changes = {}
        return result
