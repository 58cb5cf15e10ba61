from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from app.core.dependencies import get_device_id
from app.database.row_store import RowStore, get_row_store
from app.core.exceptions import ERROR_STATUS_CODES
from app.modules.circles.schemas import (
    AssignmentWithMember, BatchCommitResult, BulkAssign, Circle, CircleAssignment, CircleCreate,
    CircleExpiration, CircleJoin, CircleMember, CircleProgress, CircleWithDetails, CleanupResult,
    CompletionResult, JuzAssign, LeaveResult, OperationResult, PendingChanges, UserCircle,
)
from app.modules.circles.service import CircleService
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/circles", tags=["circles"])


def get_circle_service(store: RowStore = Depends(get_row_store)) -> CircleService:
    return CircleService(store)


async def _sweep_expired(service: CircleService) -> None:
    """Delete expired circles so membership lookups only see live ones"""
    cleanup = await service.cleanup_expired_circles()
    if not cleanup.success:
        logger.warning(f"Expired circle sweep failed: {cleanup.error}")


def _unwrap(result: OperationResult):
    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES.get(result.error_code, 500),
            detail=result.error,
        )
    return result.data


def _require_organizer(result: OperationResult, circle_id: str) -> None:
    user_circle: Optional[UserCircle] = _unwrap(result)
    if not user_circle or user_circle.circle.id != circle_id or not user_circle.membership.is_organizer:
        raise HTTPException(status_code=403, detail="Only the organizer can manage this circle")


@router.post("", response_model=UserCircle, status_code=201)
async def create_circle(
    circle_data: CircleCreate,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Create a circle; the caller becomes its organizer"""
    await _sweep_expired(service)
    return _unwrap(await service.create_circle(
        circle_data.name, circle_data.organizer_nickname, circle_data.expires_at, device_id
    ))


@router.post("/join", response_model=UserCircle, status_code=201)
async def join_circle(
    join_data: CircleJoin,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Join a circle with its share code"""
    await _sweep_expired(service)
    return _unwrap(await service.join_circle(join_data.code, join_data.nickname, device_id))


@router.get("/me", response_model=Optional[UserCircle])
async def get_my_circle(
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Active circle of the caller, or null. Expired circles are swept first."""
    await _sweep_expired(service)
    return _unwrap(await service.check_user_circle(device_id))


@router.get("/history", response_model=List[UserCircle])
async def get_my_circle_history(
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    return _unwrap(await service.get_user_circle_history(device_id))


@router.get("/code", response_model=str)
async def generate_circle_code(service: CircleService = Depends(get_circle_service)):
    """Draw an unused share code"""
    return _unwrap(await service.generate_circle_code())


@router.get("/code/{code}", response_model=Circle)
async def validate_circle_code(code: str, service: CircleService = Depends(get_circle_service)):
    """Check a share code before asking for a nickname"""
    return _unwrap(await service.validate_circle_code(code))


@router.get("/expiration", response_model=CircleExpiration)
async def check_circle_expiration(
    expires_at: datetime,
    service: CircleService = Depends(get_circle_service)
):
    return _unwrap(service.check_circle_expiration(expires_at))


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup_expired_circles(service: CircleService = Depends(get_circle_service)):
    """Delete every active circle past its deadline"""
    return _unwrap(await service.cleanup_expired_circles())


@router.get("/{circle_id}", response_model=CircleWithDetails)
async def get_circle(circle_id: str, service: CircleService = Depends(get_circle_service)):
    return _unwrap(await service.get_circle_details(circle_id))


@router.delete("/{circle_id}", status_code=204)
async def delete_circle(
    circle_id: str,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Delete the circle with all its members and Juz (any member may end it)"""
    _unwrap(await service.delete_circle(circle_id, device_id))
    return None


@router.get("/{circle_id}/members", response_model=List[CircleMember])
async def list_members(circle_id: str, service: CircleService = Depends(get_circle_service)):
    return _unwrap(await service.get_circle_members(circle_id))


@router.post("/{circle_id}/leave", response_model=LeaveResult)
async def leave_circle(
    circle_id: str,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Leave the circle. When the organizer leaves, the circle is deleted."""
    return _unwrap(await service.leave_circle(circle_id, device_id))


@router.delete("/{circle_id}/members/{member_id}", status_code=204)
async def remove_member(
    circle_id: str,
    member_id: str,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Remove a member (organizer only); their unfinished Juz go back to the pool"""
    _require_organizer(await service.check_user_circle(device_id), circle_id)
    _unwrap(await service.remove_member_from_circle(circle_id, member_id))
    return None


@router.get("/{circle_id}/progress", response_model=CircleProgress)
async def get_progress(circle_id: str, service: CircleService = Depends(get_circle_service)):
    return _unwrap(await service.get_circle_progress(circle_id))


@router.get("/{circle_id}/assignments", response_model=List[AssignmentWithMember])
async def list_assignments(circle_id: str, service: CircleService = Depends(get_circle_service)):
    return _unwrap(await service.get_circle_assignments(circle_id))


@router.get("/{circle_id}/assignments/mine", response_model=List[CircleAssignment])
async def list_my_assignments(
    circle_id: str,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    return _unwrap(await service.get_my_assignments(circle_id, device_id))


@router.post("/{circle_id}/assignments/bulk", response_model=BatchCommitResult)
async def bulk_assign(
    circle_id: str,
    bulk_data: BulkAssign,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Assign several Juz to one member, or unassign them when member_id is null"""
    _require_organizer(await service.check_user_circle(device_id), circle_id)
    if bulk_data.member_id:
        return _unwrap(await service.assign_multiple_juz(circle_id, bulk_data.juz_numbers, bulk_data.member_id))
    return _unwrap(await service.unassign_multiple_juz(circle_id, bulk_data.juz_numbers))


@router.post("/{circle_id}/assignments/batch", response_model=BatchCommitResult)
async def save_pending_changes(
    circle_id: str,
    pending: PendingChanges,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    """Apply staged juz -> member edits one by one; failures are reported per Juz"""
    _require_organizer(await service.check_user_circle(device_id), circle_id)
    return _unwrap(await service.apply_pending_changes(circle_id, pending.changes))


@router.put("/{circle_id}/assignments/{juz_number}", response_model=CircleAssignment)
async def assign_juz(
    circle_id: str,
    juz_number: int,
    assign_data: JuzAssign,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    _require_organizer(await service.check_user_circle(device_id), circle_id)
    return _unwrap(await service.assign_juz_to_member(circle_id, juz_number, assign_data.member_id))


@router.delete("/{circle_id}/assignments/{juz_number}", response_model=CircleAssignment)
async def unassign_juz(
    circle_id: str,
    juz_number: int,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    _require_organizer(await service.check_user_circle(device_id), circle_id)
    return _unwrap(await service.unassign_juz(circle_id, juz_number))


@router.post("/{circle_id}/assignments/{juz_number}/start", response_model=CircleAssignment)
async def start_juz(
    circle_id: str,
    juz_number: int,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    return _unwrap(await service.mark_juz_in_progress(circle_id, juz_number, device_id))


@router.post("/{circle_id}/assignments/{juz_number}/complete", response_model=CompletionResult)
async def complete_juz(
    circle_id: str,
    juz_number: int,
    device_id: str = Depends(get_device_id),
    service: CircleService = Depends(get_circle_service)
):
    return _unwrap(await service.mark_juz_completed(circle_id, juz_number, device_id))
