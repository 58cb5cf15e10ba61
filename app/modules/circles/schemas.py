from pydantic import BaseModel, Field
from typing import Dict, Generic, List, Optional, TypeVar
from datetime import datetime
from enum import Enum

from app.core.exceptions import CircleError

T = TypeVar("T")


class CircleStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class AssignmentStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Circle(BaseModel):
    id: str
    code: str
    name: str
    organizer_id: str
    created_at: datetime
    expires_at: datetime
    total_juz: int = 30
    completed_juz: int = 0
    status: CircleStatus = CircleStatus.ACTIVE

    class Config:
        from_attributes = True


class CircleMember(BaseModel):
    id: str
    circle_id: str
    device_id: str
    nickname: str
    joined_at: datetime
    is_organizer: bool = False

    class Config:
        from_attributes = True


class CircleAssignment(BaseModel):
    id: str
    circle_id: str
    member_id: Optional[str] = None
    juz_number: int
    status: AssignmentStatus = AssignmentStatus.UNASSIGNED
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssignmentWithMember(CircleAssignment):
    member: Optional[CircleMember] = None


class CircleWithDetails(Circle):
    members: List[CircleMember]
    assignments: List[CircleAssignment]


class UserCircle(BaseModel):
    """A circle together with the caller's membership in it."""

    circle: Circle
    membership: CircleMember


class CircleProgress(BaseModel):
    completed: int
    total: int = 30
    percentage: int


class CompletionResult(BaseModel):
    assignment: CircleAssignment
    circle_completed: bool


class LeaveResult(BaseModel):
    circle_deleted: bool


class CircleExpiration(BaseModel):
    is_expired: bool
    days_remaining: int


class BatchCommitResult(BaseModel):
    """Per-unit tally of a non-atomic multi-unit commit."""

    applied: List[int] = Field(default_factory=list)
    failed: Dict[int, str] = Field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return len(self.failed)


class CleanupResult(BaseModel):
    cleaned: int


class OperationResult(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: CircleError) -> "OperationResult[T]":
        return cls(success=False, error=error.message, error_code=error.code)


# Request bodies

class CircleCreate(BaseModel):
    name: str
    organizer_nickname: str
    expires_at: datetime


class CircleJoin(BaseModel):
    code: str
    nickname: str


class JuzAssign(BaseModel):
    member_id: str


class BulkAssign(BaseModel):
    juz_numbers: List[int]
    member_id: Optional[str] = None  # None unassigns every listed Juz


class PendingChanges(BaseModel):
    changes: Dict[int, Optional[str]]  # juz_number -> member_id, None to unassign
