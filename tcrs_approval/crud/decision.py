# tcrs_approval/crud/decision.py
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tcrs_approval.core.errors import (
    AuthorizationError, InvalidStateError, NotFoundError, ValidationError,
)
from tcrs_approval.crud.request import is_backup_for, same_email
from tcrs_approval.metrics import request_decisions_total
from tcrs_approval.models.request import ApprovalRequest, OPEN_STATUSES, RequestStatus
from tcrs_approval.services.audit import record_workflow_step
from tcrs_approval.services.workflow_catalog import APPROVED, REJECTED

logger = logging.getLogger(__name__)

VALID_DECISIONS = {"approve", "reject"}
DECISION_ROLES = {"approver", "admin"}
REJECTED_ERROR_CODE = "REJECTED_BY_APPROVER"


def _check_actor(role: str, email: str, approver_field: Optional[str], decision: str, comments: Optional[str]) -> str:
    if role not in DECISION_ROLES:
        raise AuthorizationError(f"Only approvers or admins can {decision} requests")
    submitted = (approver_field or "").strip()
    if not submitted:
        raise ValidationError("Approver field is required")
    if not same_email(submitted, email):
        raise AuthorizationError(f"You can only {decision} requests as yourself")
    text = (comments or "").strip()
    if decision == "reject" and not text:
        raise ValidationError("Comments are required when rejecting a request")
    return text or "Approved"


def decide(db: Session, request_id: str, email: str, role: str, decision: str,
           approver_field: Optional[str], comments: Optional[str] = None) -> ApprovalRequest:
    """Approve or reject an open request; exactly one history row per applied decision."""
    d = (decision or "").strip().lower()
    if d not in VALID_DECISIONS:
        raise ValueError(f"Invalid decision '{decision}'. Must be one of {sorted(VALID_DECISIONS)}.")
    note = _check_actor(role, email, approver_field, d, comments)

    req = db.get(ApprovalRequest, request_id)
    if not req:
        raise NotFoundError("Request not found")
    if req.approver_status not in OPEN_STATUSES:
        raise InvalidStateError(f"Request is already {req.approver_status}")

    if role != "admin":
        if not same_email(req.assigned_approver, email) and not is_backup_for(db, email, req.assigned_approver):
            raise AuthorizationError(f"You are not authorized to {d} this request")

    previous_status = req.approver_status
    new_status = RequestStatus.APPROVED.value if d == "approve" else RequestStatus.REJECTED.value
    now = datetime.utcnow()

    try:
        # compare-and-swap: a concurrent decision leaves zero rows to update
        res = db.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.request_id == request_id)
            .where(ApprovalRequest.approver_status.in_(OPEN_STATUSES))
            .values(
                approver_status=new_status,
                approved_date=now if d == "approve" else None,
                comments=note,
                modified_date=now,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise InvalidStateError("Request was already decided by someone else")

        if d == "approve":
            audit = record_workflow_step(
                db, request_id, APPROVED, email,
                notes=note,
                previous_value={"status": previous_status},
                new_value={"status": new_status, "approved_by": email},
            )
        else:
            audit = record_workflow_step(
                db, request_id, REJECTED, email,
                success=False,
                error_code=REJECTED_ERROR_CODE,
                notes=note,
                previous_value={"status": previous_status},
                new_value={"status": new_status, "rejected_by": email},
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("decision %s on %s failed", d, request_id)
        raise

    request_decisions_total.labels(decision=new_status).inc()
    logger.info("request %s %s by %s (audit=%s)", request_id, new_status, email, audit.ok)
    db.refresh(req)
    return req


def approve_request(db: Session, request_id: str, email: str, role: str,
                    approver_field: Optional[str], comments: Optional[str] = None) -> ApprovalRequest:
    return decide(db, request_id, email, role, "approve", approver_field, comments)


def reject_request(db: Session, request_id: str, email: str, role: str,
                   approver_field: Optional[str], comments: Optional[str] = None) -> ApprovalRequest:
    return decide(db, request_id, email, role, "reject", approver_field, comments)
