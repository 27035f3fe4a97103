"""
Approval workflow: work submission -> review -> rework or approval ->
feedback -> closure, plus the legacy OTP direct-close path.

Every function here is a guard or a patch builder over a Ticket. Guards raise
``ValidationFailure`` before anything is written; patch builders return the
column changes that TicketLifecycle applies through a compare-and-set update.
"""

import hmac
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from campusfix.config import settings
from campusfix.database import utcnow
from campusfix.exceptions import ValidationFailure
from campusfix.models.ticket import Ticket, TicketStatus

MIN_RATING = 1
MAX_RATING = 5


@dataclass
class TransitionPayload:
    """Caller-supplied data accompanying a transition request."""

    note: Optional[str] = None
    reason: Optional[str] = None
    comment: Optional[str] = None
    proof: list[str] = field(default_factory=list)
    rating: Optional[int] = None
    feedback: Optional[str] = None
    otp: Optional[str] = None


def clean_evidence(uris: Optional[list[Any]], field_name: str = "proof") -> list[str]:
    """Evidence is an ordered list of non-blank URI strings."""
    if uris is None:
        return []
    if not isinstance(uris, (list, tuple)):
        raise ValidationFailure(f"{field_name} must be a list of URIs", field=field_name)
    cleaned = []
    for uri in uris:
        if not isinstance(uri, str) or not uri.strip():
            raise ValidationFailure(f"{field_name} entries must be non-empty strings", field=field_name)
        cleaned.append(uri.strip())
    return cleaned


def require_proof(payload: TransitionPayload) -> list[str]:
    proof = clean_evidence(payload.proof)
    if not proof:
        raise ValidationFailure("At least one proof item is required to submit work", field="proof")
    return proof


def require_comment(payload: TransitionPayload) -> str:
    comment = (payload.comment or "").strip()
    if not comment:
        raise ValidationFailure("A comment is required when requesting rework", field="comment")
    return comment


def validate_rating(rating: Any) -> int:
    # bool is an int subclass; True must not pass as a 1-star rating
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationFailure("Rating must be an integer between 1 and 5", field="rating")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationFailure("Rating must be an integer between 1 and 5", field="rating")
    return rating


def generate_otp() -> str:
    return f"{secrets.randbelow(10 ** settings.OTP_LENGTH):0{settings.OTP_LENGTH}d}"


def verify_otp(stored: Optional[str], supplied: Any) -> None:
    """Exact match only: no trimming, padding or numeric coercion."""
    if not stored:
        raise ValidationFailure("No OTP was issued for this ticket", field="otp")
    if (
        not isinstance(supplied, str)
        or len(supplied) != settings.OTP_LENGTH
        or not supplied.isascii()
        or not supplied.isdigit()
    ):
        raise ValidationFailure("Invalid OTP", field="otp")
    if not hmac.compare_digest(stored, supplied):
        raise ValidationFailure("Invalid OTP", field="otp")


def submission_patch(payload: TransitionPayload) -> dict:
    """in_progress / rework_required -> work_submitted."""
    proof = require_proof(payload)
    return {"work_proof": proof, "work_note": payload.note}


def review_patch(ticket: Ticket, target: TicketStatus, payload: TransitionPayload) -> dict:
    """work_submitted -> work_approved | feedback_pending | rework_required."""
    if target == TicketStatus.rework_required:
        comment = require_comment(payload)
        # Resubmission must attach fresh evidence
        return {"admin_comment": comment, "work_proof": []}

    comment = (payload.comment or "").strip() or None
    return {"admin_comment": comment, "resolved_at": utcnow()}


def feedback_patch(payload: TransitionPayload) -> dict:
    """work_approved | feedback_pending -> closed."""
    rating = validate_rating(payload.rating)
    feedback = (payload.feedback or "").strip() or None
    return {"rating": rating, "feedback": feedback, "closed_at": utcnow()}


def direct_resolve_patch() -> dict:
    """Legacy in_progress -> resolved: issue the OTP the reporter will enter."""
    return {"otp": generate_otp(), "otp_verified": False, "resolved_at": utcnow()}


def otp_close_patch(ticket: Ticket, payload: TransitionPayload) -> dict:
    """Legacy resolved -> closed."""
    verify_otp(ticket.otp, payload.otp)
    return {"otp_verified": True, "closed_at": utcnow()}


def workflow_patch(ticket: Ticket, target: TicketStatus, payload: TransitionPayload) -> Optional[dict]:
    """Patch for the steps owned by the approval workflow, or None if ``target`` is not one."""
    current = ticket.ticket_status
    if target == TicketStatus.work_submitted:
        return submission_patch(payload)
    if current == TicketStatus.work_submitted:
        return review_patch(ticket, target, payload)
    if target == TicketStatus.resolved:
        return direct_resolve_patch()
    if target == TicketStatus.closed and current == TicketStatus.resolved:
        return otp_close_patch(ticket, payload)
    if target == TicketStatus.closed:
        return feedback_patch(payload)
    return None
