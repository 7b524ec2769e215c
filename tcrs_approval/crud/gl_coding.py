# tcrs_approval/crud/gl_coding.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tcrs_approval.core.errors import InvalidStateError, NotFoundError, ValidationError
from tcrs_approval.crud.request import build_entry_rows, get_invoice, get_request
from tcrs_approval.models.dictionary import AccountMaster, Facility
from tcrs_approval.models.gl_coding import GLCodingEntry, GLCodingUpload
from tcrs_approval.models.request import RequestStatus
from tcrs_approval.services.audit import record_workflow_step
from tcrs_approval.services.workflow_catalog import GL_CODING_SAVED
from tcrs_approval.utils.amounts import validate_amounts, validate_entries

logger = logging.getLogger(__name__)


def latest_upload(db: Session, request_id: str) -> Optional[GLCodingUpload]:
    return (
        db.query(GLCodingUpload)
        .filter(GLCodingUpload.request_id == request_id)
        .order_by(GLCodingUpload.created_date.desc())
        .first()
    )


def get_entries(db: Session, request_id: str) -> List[GLCodingEntry]:
    upload = latest_upload(db, request_id)
    if not upload:
        return []
    return (
        db.query(GLCodingEntry)
        .filter(GLCodingEntry.upload_id == upload.upload_id)
        .order_by(GLCodingEntry.line)
        .all()
    )


def entry_to_dict(e: GLCodingEntry) -> Dict[str, Any]:
    return {
        "line": e.line,
        "account_code": e.account_code,
        "facility_code": e.facility_code,
        "tax_code": e.tax_code,
        "amount": float(e.amount) if e.amount is not None else 0.0,
        "equipment": e.equipment,
        "comments": e.comments,
    }


def save_entries(db: Session, request_id: str, entries: List[Dict[str, Any]], saved_by: str) -> List[GLCodingEntry]:
    """Replace the GL lines of a pending request; the new lines must match the invoice amount."""
    req = get_request(db, request_id)
    if req.approver_status != RequestStatus.PENDING.value:
        raise InvalidStateError(f"GL coding can only be changed while the request is pending (status: {req.approver_status})")
    if not entries:
        raise ValidationError("GL-Coding data is required")
    errors = validate_entries(entries)
    if errors:
        raise ValidationError("GL-Coding validation failed", details=errors)

    invoice = get_invoice(db, request_id)
    if not invoice:
        raise NotFoundError("Invoice data not found for request")
    check = validate_amounts(entries, invoice.amount)
    if not check.is_valid:
        raise ValidationError(check.message, details=[f"difference: {check.difference}"])

    try:
        upload = latest_upload(db, request_id)
        if upload is None:
            upload = GLCodingUpload(request_id=request_id, uploader=saved_by, status="completed")
            db.add(upload)
            db.flush()
        lines = db.query(GLCodingEntry).filter(GLCodingEntry.upload_id == upload.upload_id)
        previous = lines.count()
        lines.delete(synchronize_session="fetch")
        rows = build_entry_rows(upload.upload_id, entries)
        db.add_all(rows)
        upload.modified_date = datetime.utcnow()
        db.flush()

        record_workflow_step(
            db, request_id, GL_CODING_SAVED, saved_by,
            notes=f"GL coding saved with {len(rows)} entries",
            previous_value={"entries": previous},
            new_value={"entries": len(rows), "total": str(check.total_amount)},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("saving GL coding for %s failed", request_id)
        raise

    logger.info("GL coding for %s replaced (%d lines) by %s", request_id, len(rows), saved_by)
    return get_entries(db, request_id)


def pick_lists(db: Session) -> Dict[str, List[Dict[str, Optional[str]]]]:
    accounts = db.query(AccountMaster).order_by(AccountMaster.account_code).all()
    facilities = db.query(Facility).order_by(Facility.facility_code).all()
    return {
        "accounts": [
            {"code": a.account_code, "description": a.account_description, "combined": a.account_combined}
            for a in accounts
        ],
        "facilities": [
            {"code": f.facility_code, "description": f.facility_description, "combined": f.facility_combined}
            for f in facilities
        ],
    }
