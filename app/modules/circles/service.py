from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
import logging

from app.core.exceptions import BackendUnavailableError, CircleError, NotFoundError, UnexpectedError
from app.database.row_store import RowStore
from app.modules.circles.assignments import AssignmentStateMachine, AssignmentWriter, build_assignment_writer
from app.modules.circles.batch import apply_changes
from app.modules.circles.code_generator import CodeGenerator
from app.modules.circles.expiration import ExpirationSweeper, check_circle_expiration
from app.modules.circles.lifecycle import CircleLifecycleManager
from app.modules.circles.membership import MembershipManager
from app.modules.circles.progress import ProgressAggregator
from app.modules.circles.repository import CircleRepository
from app.modules.circles.schemas import (
    AssignmentWithMember, BatchCommitResult, Circle, CircleAssignment, CircleExpiration,
    CircleMember, CircleProgress, CircleWithDetails, CleanupResult, CompletionResult,
    LeaveResult, OperationResult, UserCircle,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircleService:
    """Public entry point of the reading-circle subsystem.

    Every method returns an OperationResult: business-rule failures become
    ``success=False`` with a readable ``error``; anything unexpected is logged
    and reported with a generic message.
    """

    def __init__(self, store: RowStore, writer: Optional[AssignmentWriter] = None,
                 code_generator: Optional[CodeGenerator] = None):
        self.store = store
        self.repository = CircleRepository(store)
        self.writer = writer or build_assignment_writer(store)
        self.codes = code_generator or CodeGenerator(store)
        self.membership = MembershipManager(store, self.repository, self.writer, delete_circle=self._delete)
        self.lifecycle = CircleLifecycleManager(store, self.codes, self.membership)
        self.progress = ProgressAggregator(self.repository)
        self.assignments = AssignmentStateMachine(self.repository, self.membership, self.progress, self.writer)
        self.sweeper = ExpirationSweeper(self.repository, self.lifecycle)

    async def _delete(self, circle_id: str) -> bool:
        return await self.lifecycle.delete(circle_id)

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> OperationResult[T]:
        if not self.store.is_available():
            logger.warning(f"{operation}: backend not configured")
            return OperationResult.fail(BackendUnavailableError())
        try:
            return OperationResult.ok(await call())
        except UnexpectedError as e:
            logger.error(f"{operation} failed: {e.message}")
            return OperationResult.fail(UnexpectedError())
        except CircleError as e:
            logger.info(f"{operation} rejected: {e.message}")
            return OperationResult.fail(e)
        except Exception as e:
            logger.exception(f"Unexpected error in {operation}: {str(e)}")
            return OperationResult.fail(UnexpectedError())

    async def _require_circle(self, circle_id: str) -> Circle:
        circle = await self.repository.get_circle(circle_id)
        if circle is None:
            raise NotFoundError("Circle not found.")
        return circle

    # Circles

    async def create_circle(self, name: str, organizer_nickname: str, expires_at: datetime,
                            device_id: str) -> OperationResult[UserCircle]:
        return await self._run(
            "create_circle",
            lambda: self.lifecycle.create(name, organizer_nickname, expires_at, device_id),
        )

    async def delete_circle(self, circle_id: str, device_id: Optional[str] = None) -> OperationResult[bool]:
        """Delete a circle. When device_id is given the caller must belong to it."""
        async def call() -> bool:
            await self._require_circle(circle_id)
            if device_id is not None and await self.membership.get_member_by_device(circle_id, device_id) is None:
                raise NotFoundError("You are not a member of this circle.")
            return await self.lifecycle.delete(circle_id)
        return await self._run("delete_circle", call)

    async def get_circle_details(self, circle_id: str) -> OperationResult[CircleWithDetails]:
        async def call() -> CircleWithDetails:
            circle = await self._require_circle(circle_id)
            return CircleWithDetails(
                **circle.model_dump(),
                members=await self.membership.list_members(circle_id),
                assignments=await self.repository.list_assignments(circle_id),
            )
        return await self._run("get_circle_details", call)

    async def get_circle_by_code(self, code: str) -> OperationResult[Optional[Circle]]:
        return await self._run("get_circle_by_code", lambda: self.repository.get_circle_by_code(code))

    async def validate_circle_code(self, code: str) -> OperationResult[Circle]:
        return await self._run("validate_circle_code", lambda: self.membership.resolve_code(code))

    async def generate_circle_code(self) -> OperationResult[str]:
        return await self._run("generate_circle_code", self.codes.generate)

    def check_circle_expiration(self, expires_at: datetime,
                                now: Optional[datetime] = None) -> OperationResult[CircleExpiration]:
        return OperationResult.ok(check_circle_expiration(expires_at, now))

    async def cleanup_expired_circles(self, now: Optional[datetime] = None) -> OperationResult[CleanupResult]:
        async def call() -> CleanupResult:
            return CleanupResult(cleaned=await self.sweeper.sweep(now))
        return await self._run("cleanup_expired_circles", call)

    # Membership

    async def check_user_circle(self, device_id: str) -> OperationResult[Optional[UserCircle]]:
        return await self._run("check_user_circle", lambda: self.membership.find_active_membership(device_id))

    async def is_user_in_circle(self, device_id: str) -> bool:
        result = await self.check_user_circle(device_id)
        return result.success and result.data is not None

    async def get_user_circle_history(self, device_id: str) -> OperationResult[List[UserCircle]]:
        return await self._run("get_user_circle_history", lambda: self.membership.history(device_id))

    async def join_circle(self, code: str, nickname: str, device_id: str) -> OperationResult[UserCircle]:
        return await self._run("join_circle", lambda: self.membership.join(code, nickname, device_id))

    async def leave_circle(self, circle_id: str, device_id: str) -> OperationResult[LeaveResult]:
        return await self._run("leave_circle", lambda: self.membership.leave(circle_id, device_id))

    async def remove_member_from_circle(self, circle_id: str, member_id: str) -> OperationResult[None]:
        return await self._run("remove_member_from_circle", lambda: self.membership.remove(circle_id, member_id))

    async def get_circle_members(self, circle_id: str) -> OperationResult[List[CircleMember]]:
        return await self._run("get_circle_members", lambda: self.membership.list_members(circle_id))

    async def get_circle_member_count(self, circle_id: str) -> OperationResult[int]:
        return await self._run("get_circle_member_count", lambda: self.membership.count_members(circle_id))

    # Assignments

    async def get_circle_assignments(self, circle_id: str) -> OperationResult[List[AssignmentWithMember]]:
        return await self._run("get_circle_assignments", lambda: self.assignments.list_with_members(circle_id))

    async def get_my_assignments(self, circle_id: str, device_id: str) -> OperationResult[List[CircleAssignment]]:
        return await self._run("get_my_assignments", lambda: self.assignments.my_assignments(circle_id, device_id))

    async def get_circle_progress(self, circle_id: str) -> OperationResult[CircleProgress]:
        return await self._run("get_circle_progress", lambda: self.progress.compute(circle_id))

    async def assign_juz_to_member(self, circle_id: str, juz_number: int,
                                   member_id: str) -> OperationResult[CircleAssignment]:
        return await self._run(
            "assign_juz_to_member",
            lambda: self.assignments.assign(circle_id, juz_number, member_id),
        )

    async def unassign_juz(self, circle_id: str, juz_number: int) -> OperationResult[CircleAssignment]:
        return await self._run("unassign_juz", lambda: self.assignments.unassign(circle_id, juz_number))

    async def assign_multiple_juz(self, circle_id: str, juz_numbers: Sequence[int],
                                  member_id: str) -> OperationResult[BatchCommitResult]:
        changes = {juz: member_id for juz in juz_numbers}
        return await self._run("assign_multiple_juz", lambda: apply_changes(self.assignments, circle_id, changes))

    async def unassign_multiple_juz(self, circle_id: str,
                                    juz_numbers: Sequence[int]) -> OperationResult[BatchCommitResult]:
        changes = {juz: None for juz in juz_numbers}
        return await self._run("unassign_multiple_juz", lambda: apply_changes(self.assignments, circle_id, changes))

    async def apply_pending_changes(self, circle_id: str,
                                    changes: Dict[int, Optional[str]]) -> OperationResult[BatchCommitResult]:
        return await self._run("apply_pending_changes", lambda: apply_changes(self.assignments, circle_id, changes))

    async def mark_juz_in_progress(self, circle_id: str, juz_number: int,
                                   device_id: str) -> OperationResult[CircleAssignment]:
        return await self._run(
            "mark_juz_in_progress",
            lambda: self.assignments.mark_in_progress(circle_id, juz_number, device_id),
        )

    async def mark_juz_completed(self, circle_id: str, juz_number: int,
                                 device_id: str) -> OperationResult[CompletionResult]:
        return await self._run(
            "mark_juz_completed",
            lambda: self.assignments.mark_completed(circle_id, juz_number, device_id),
        )
