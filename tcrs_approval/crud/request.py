# tcrs_approval/crud/request.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tcrs_approval.core.errors import AuthorizationError, NotFoundError, ValidationError
from tcrs_approval.metrics import requests_created_total
from tcrs_approval.models.dictionary import ApproverList
from tcrs_approval.models.gl_coding import GLCodingEntry, GLCodingUpload
from tcrs_approval.models.request import ApprovalRequest, InvoiceData, RequestStatus
from tcrs_approval.models.workflow import WorkflowHistory, WorkflowStep
from tcrs_approval.services.audit import record_workflow_step
from tcrs_approval.services.blob_rename import BlobRename, rename_for_request
from tcrs_approval.services.request_ids import RequestIdGenerator
from tcrs_approval.services.workflow_catalog import DOCUMENTS_STORED, REQUEST_CREATED
from tcrs_approval.utils.amounts import (
    MAX_AMOUNT, out_of_range, to_decimal, validate_amounts, validate_entries,
)

logger = logging.getLogger(__name__)

VALID_STATUS_FILTERS = {s.value for s in RequestStatus} | {"all"}


@dataclass
class CreatedRequest:
    request: ApprovalRequest
    invoice: InvoiceData
    entry_count: int
    audit_recorded: bool
    renames: List[BlobRename] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def resolve_approver(db: Session, branch: Optional[str], amount: Decimal) -> Optional[str]:
    """Cheapest approver on the branch whose authorized amount covers the invoice."""
    if not branch:
        return None
    rows = db.query(ApproverList).filter(ApproverList.branch == branch).all()
    covering = [
        a for a in rows
        if a.authorized_amount is None or to_decimal(a.authorized_amount) >= amount
    ]
    if not covering:
        return None
    covering.sort(key=lambda a: (a.authorized_amount is None, to_decimal(a.authorized_amount)))
    best = covering[0]
    return best.email_address or best.authorized_approver


def _validate_submission(invoice: Dict[str, Any], entries: List[Dict[str, Any]]) -> Decimal:
    if not entries:
        raise ValidationError("GL-Coding data is required")
    errors = validate_entries(entries)
    if errors:
        raise ValidationError("GL-Coding validation failed", details=errors)
    if out_of_range(invoice.get("amount")):
        raise ValidationError(f"Invoice amount must be a finite number no larger than {MAX_AMOUNT}")
    amount = to_decimal(invoice.get("amount"))
    if amount <= 0:
        raise ValidationError("Invoice amount must be greater than zero")
    check = validate_amounts(entries, amount)
    if not check.is_valid:
        raise ValidationError(check.message, details=[f"difference: {check.difference}"])
    return amount


def build_entry_rows(upload_id: str, entries: List[Dict[str, Any]]) -> List[GLCodingEntry]:
    return [
        GLCodingEntry(
            upload_id=upload_id,
            line=i,
            account_code=e["account_code"].strip(),
            facility_code=e["facility_code"].strip(),
            tax_code=e.get("tax_code") or None,
            amount=to_decimal(e.get("amount")),
            equipment=e.get("equipment") or None,
            comments=e.get("comments") or None,
        )
        for i, e in enumerate(entries, start=1)
    ]


def create_request(
    db: Session,
    ids: RequestIdGenerator,
    requester: str,
    invoice: Dict[str, Any],
    entries: List[Dict[str, Any]],
    storage: Any = None,
) -> CreatedRequest:
    """
    Persist a new pending request with its invoice and GL-coding lines.

    Everything that matters is written in one transaction together with the
    ``request_created`` history row. Moving uploaded files to their final
    names happens afterwards and only produces warnings when it fails.
    """
    amount = _validate_submission(invoice, entries)
    approver = (invoice.get("approver") or "").strip() or resolve_approver(db, invoice.get("branch"), amount)

    try:
        request_id = ids.next_id(db)
        now = datetime.utcnow()
        req = ApprovalRequest(
            request_id=request_id,
            requester=requester,
            assigned_approver=approver,
            approver_status=RequestStatus.PENDING.value,
            comments=invoice.get("description") or None,
            created_date=now,
        )
        inv = InvoiceData(
            request_id=request_id,
            company=invoice.get("company"),
            branch=invoice.get("branch"),
            vendor=invoice.get("vendor"),
            po=invoice.get("po"),
            amount=amount,
            currency=invoice.get("currency"),
            approver=approver,
            blob_url=None,
            created_date=now,
        )
        upload = GLCodingUpload(
            request_id=request_id,
            uploader=requester,
            uploaded_file=bool(invoice.get("excel_blob_name")),
            status="completed",
            created_date=now,
        )
        db.add_all([req, inv, upload])
        db.flush()
        db.add_all(build_entry_rows(upload.upload_id, entries))
        db.flush()

        audit = record_workflow_step(
            db, request_id, REQUEST_CREATED, requester,
            notes=f"Request created with {len(entries)} GL-coding entries",
            new_value={
                "status": req.approver_status,
                "assigned_approver": approver,
                "amount": str(amount),
                "currency": inv.currency,
                "entries": len(entries),
            },
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("request creation failed for %s", requester)
        raise

    requests_created_total.inc()
    logger.info("request %s created by %s (approver=%s, audit=%s)",
                request_id, requester, approver or "unassigned", audit.ok)
    out = CreatedRequest(request=req, invoice=inv, entry_count=len(entries), audit_recorded=audit.ok)
    _link_uploaded_files(db, out, invoice, upload, storage)
    return out


def _link_uploaded_files(db: Session, out: CreatedRequest, invoice: Dict[str, Any],
                         upload: GLCodingUpload, storage: Any) -> None:
    pdf_blob = invoice.get("pdf_blob_name")
    excel_blob = invoice.get("excel_blob_name")
    if not pdf_blob and not excel_blob:
        return
    request_id = out.request.request_id
    if storage is None:
        logger.warning("blob storage not configured; %s keeps temporary file names", request_id)
        if pdf_blob:
            out.warnings.append("PDF file may not be properly linked")
        if excel_blob:
            out.warnings.append("Excel file may not be properly linked")
        return

    if pdf_blob:
        op = rename_for_request(storage, "pdf", request_id, pdf_blob,
                                invoice.get("pdf_original_name"), out.request.requester)
        out.renames.append(op)
        if op.target_ready:
            out.invoice.blob_url = op.target_url
            out.invoice.modified_date = datetime.utcnow()
        if op.error:
            out.warnings.append("PDF file may not be properly linked")
    if excel_blob:
        op = rename_for_request(storage, "excel", request_id, excel_blob,
                                invoice.get("excel_original_name"), out.request.requester)
        out.renames.append(op)
        if op.target_ready:
            upload.blob_url = op.target_url
            upload.modified_date = datetime.utcnow()
        if op.error:
            out.warnings.append("Excel file may not be properly linked")

    stored = [op for op in out.renames if op.target_ready]
    if stored:
        record_workflow_step(
            db, request_id, DOCUMENTS_STORED, out.request.requester,
            notes=f"{len(stored)} file(s) moved to their final location",
            related_entity_type="blob",
            new_value={"files": [{"kind": op.kind, "blob": op.target} for op in stored]},
        )

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("could not store final file URLs for %s: %s", request_id, e)
        out.warnings.append("File locations could not be saved")


# ===== READ SIDE =====

def get_request(db: Session, request_id: str) -> ApprovalRequest:
    req = db.get(ApprovalRequest, request_id)
    if not req:
        raise NotFoundError("Request not found")
    return req


def same_email(a: Optional[str], b: Optional[str]) -> bool:
    """Emails compare case-insensitively everywhere."""
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


def _email_is(column, email: str):
    return func.lower(column) == email.strip().lower()


def is_backup_for(db: Session, email: str, assigned_approver: Optional[str]) -> bool:
    """True when `email` is listed as backup of the approver the request is assigned to."""
    if not assigned_approver or not email:
        return False
    row = (
        db.query(ApproverList.approver_id)
        .filter(or_(_email_is(ApproverList.email_address, assigned_approver),
                    _email_is(ApproverList.authorized_approver, assigned_approver)))
        .filter(or_(_email_is(ApproverList.back_up_email_address, email),
                    _email_is(ApproverList.back_up_approver, email)))
        .first()
    )
    return row is not None


def can_view(db: Session, req: ApprovalRequest, email: str, role: str) -> bool:
    if role == "admin" or same_email(req.requester, email):
        return True
    if role == "approver":
        return same_email(req.assigned_approver, email) or is_backup_for(db, email, req.assigned_approver)
    return False


def get_request_for_user(db: Session, request_id: str, email: str, role: str) -> ApprovalRequest:
    req = get_request(db, request_id)
    if not can_view(db, req, email, role):
        raise AuthorizationError("You do not have permission to access this request.")
    return req


def get_invoice(db: Session, request_id: str) -> Optional[InvoiceData]:
    return db.query(InvoiceData).filter(InvoiceData.request_id == request_id).first()


def _check_status_filter(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    s = status.strip().lower()
    if s not in VALID_STATUS_FILTERS:
        raise ValidationError(
            f"Invalid status filter: {status}. Valid values: {', '.join(sorted(VALID_STATUS_FILTERS))}"
        )
    return None if s == "all" else s


def search_requests(db: Session, email: str, role: str, status: Optional[str] = None,
                    query: Optional[str] = None) -> List[ApprovalRequest]:
    """Role-scoped listing: requesters see their own, approvers their assignments, admins everything."""
    q = db.query(ApprovalRequest)
    if role == "requester":
        q = q.filter(_email_is(ApprovalRequest.requester, email))
    elif role == "approver":
        q = q.filter(_email_is(ApprovalRequest.assigned_approver, email))
    status = _check_status_filter(status)
    if status:
        q = q.filter(ApprovalRequest.approver_status == status)
    if query:
        like = f"%{query.strip()}%"
        q = q.filter(or_(
            ApprovalRequest.request_id.ilike(like),
            ApprovalRequest.comments.ilike(like),
            ApprovalRequest.requester.ilike(like),
        ))
    return q.order_by(ApprovalRequest.created_date.desc()).all()


def requests_by_requester(db: Session, email: str, status: Optional[str] = None) -> List[ApprovalRequest]:
    q = db.query(ApprovalRequest).filter(_email_is(ApprovalRequest.requester, email))
    status = _check_status_filter(status)
    if status:
        q = q.filter(ApprovalRequest.approver_status == status)
    return q.order_by(ApprovalRequest.created_date.desc()).all()


def approver_requests_with_details(db: Session, email: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    q = (
        db.query(ApprovalRequest, InvoiceData)
        .outerjoin(InvoiceData, InvoiceData.request_id == ApprovalRequest.request_id)
        .filter(_email_is(ApprovalRequest.assigned_approver, email))
    )
    status = _check_status_filter(status)
    if status:
        q = q.filter(ApprovalRequest.approver_status == status)
    out = []
    for req, inv in q.order_by(ApprovalRequest.created_date.desc()).all():
        out.append({
            "request_id": req.request_id,
            "requester": req.requester,
            "status": req.approver_status,
            "assigned_approver": req.assigned_approver,
            "submitted_on": req.created_date,
            "vendor": inv.vendor if inv else None,
            "company": inv.company if inv else None,
            "branch": inv.branch if inv else None,
            "po": inv.po if inv else None,
            "amount": float(inv.amount) if inv and inv.amount is not None else 0.0,
            "currency": (inv.currency if inv else None) or "CAD",
        })
    return out


def request_stats(db: Session, email: str, role: str) -> Dict[str, int]:
    rows = search_requests(db, email, role)
    counts = {s.value: 0 for s in RequestStatus}
    for r in rows:
        counts[r.approver_status] = counts.get(r.approver_status, 0) + 1
    stats = {
        "total": len(rows),
        "pending": counts["pending"],
        "in_review": counts["in-review"],
        "approved": counts["approved"],
        "rejected": counts["rejected"],
    }
    if role == "approver":
        stats["to_review"] = counts["pending"] + counts["in-review"]
    return stats


def workflow_timeline(db: Session, request_id: str) -> List[Dict[str, Any]]:
    rows = (
        db.query(WorkflowHistory, WorkflowStep)
        .join(WorkflowStep, WorkflowStep.step_id == WorkflowHistory.step_id)
        .filter(WorkflowHistory.request_id == request_id)
        .order_by(WorkflowHistory.executed_date.desc())
        .all()
    )
    return [
        {
            "history_id": h.history_id,
            "step_code": s.step_code,
            "step_name": s.step_name,
            "step_category": s.step_category,
            "executed_by": h.executed_by,
            "executed_date": h.executed_date,
            "success": h.success,
            "error_code": h.error_code,
            "notes": h.notes,
            "previous_value": h.previous_value,
            "new_value": h.new_value,
        }
        for h, s in rows
    ]


def export_rows(db: Session, email: str, role: str, status: Optional[str] = None,
                query: Optional[str] = None) -> List[tuple]:
    reqs = search_requests(db, email, role, status, query)
    if not reqs:
        return []
    ids = [r.request_id for r in reqs]
    invoices = {i.request_id: i for i in db.query(InvoiceData).filter(InvoiceData.request_id.in_(ids)).all()}
    return [(r, invoices.get(r.request_id)) for r in reqs]
