from __future__ import annotations
import csv
import io
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from tcrs_approval.models.request import ApprovalRequest, InvoiceData

EXPORT_COLUMNS = [
    "Request ID", "Requester", "Assigned Approver", "Status", "Company", "Branch",
    "Vendor", "PO", "Amount", "Currency", "Submitted On", "Approved On", "Comments",
]


def _iso(dt: datetime | None) -> str:
    return dt.isoformat() if dt else ""


def export_row(req: ApprovalRequest, inv: Optional[InvoiceData]) -> List[Any]:
    return [
        req.request_id,
        req.requester or "",
        req.assigned_approver or "",
        req.approver_status,
        inv.company if inv else "",
        inv.branch if inv else "",
        inv.vendor if inv else "",
        inv.po if inv else "",
        f"{inv.amount:.2f}" if inv and inv.amount is not None else "",
        (inv.currency if inv else None) or "",
        _iso(req.created_date),
        _iso(req.approved_date),
        req.comments or "",
    ]


def requests_to_csv(rows: Iterable[tuple[ApprovalRequest, Optional[InvoiceData]]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for req, inv in rows:
        writer.writerow(export_row(req, inv))
    return output.getvalue()


def export_filename(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"tcrs_requests_{now.strftime('%Y%m%d_%H%M%S')}.csv"


def content_disposition(filename: str) -> Dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}
