from pydantic import BaseModel, Field, StrictInt, StrictStr
from datetime import datetime
from typing import Optional

from campusfix.models.ticket import TicketStatus, Severity, ClosurePath


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TicketCreate(BaseModel):
    """Schema for reporting a ticket."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=50)
    location_id: str
    # Calculated from the title and description when omitted
    severity: Optional[Severity] = None
    closure_path: ClosurePath = ClosurePath.review
    images: list[str] = Field(default_factory=list)
    video: Optional[str] = None
    geolocation: Optional[GeoPoint] = None


class TransitionRequest(BaseModel):
    """Schema for moving a ticket to a new status."""
    target_status: TicketStatus
    note: Optional[str] = None
    reason: Optional[str] = None
    comment: Optional[str] = None
    proof: list[str] = Field(default_factory=list)
    rating: Optional[StrictInt] = None
    feedback: Optional[str] = None
    otp: Optional[StrictStr] = None


class SeverityUpdate(BaseModel):
    severity: Severity


class StatusHistoryEntry(BaseModel):
    sequence: int
    status: TicketStatus
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TicketResponse(BaseModel):
    """Ticket as returned by the API. The OTP itself is never exposed."""
    id: str
    title: str
    description: Optional[str] = None
    category: str
    location_id: str
    area: Optional[str] = None
    reporter_id: str
    assignee_id: Optional[str] = None
    status: TicketStatus
    severity: Severity
    closure_path: ClosurePath
    version: int
    images: list[str] = []
    video: Optional[str] = None
    geolocation: Optional[dict] = None
    otp_verified: bool = False
    work_proof: list[str] = []
    work_note: Optional[str] = None
    admin_comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    awaiting_worker: bool = False
    escalated_at: Optional[datetime] = None
    created_at: datetime
    assigned_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    history: list[StatusHistoryEntry] = []

    class Config:
        from_attributes = True


class AllowedTransitionsResponse(BaseModel):
    ticket_id: str
    status: TicketStatus
    role: str
    allowed: list[TicketStatus]
