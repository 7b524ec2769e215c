from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric
from datetime import datetime
import enum
import uuid

from tcrs_approval.core.database import Base


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    IN_REVIEW = "in-review"
    APPROVED = "approved"
    REJECTED = "rejected"


OPEN_STATUSES = (RequestStatus.PENDING.value, RequestStatus.IN_REVIEW.value)
TERMINAL_STATUSES = (RequestStatus.APPROVED.value, RequestStatus.REJECTED.value)


def _new_id() -> str:
    return uuid.uuid4().hex


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"
    request_id = Column(String(255), primary_key=True)           # TCRS-2025-000123
    requester = Column(String(255), index=True)
    assigned_approver = Column(String(255), index=True, nullable=True)
    approver_status = Column(String(50), default=RequestStatus.PENDING.value, nullable=False, index=True)
    approved_date = Column(DateTime, nullable=True)
    comments = Column(String(1000), nullable=True)
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)


class InvoiceData(Base):
    __tablename__ = "invoice_data"
    invoice_id = Column(String(255), primary_key=True, default=_new_id)
    request_id = Column(String(255), ForeignKey("approval_requests.request_id"), nullable=False, unique=True)
    company = Column(String(255))
    branch = Column(String(255))
    vendor = Column(String(255))
    po = Column(String(255))
    amount = Column(Numeric(12, 2))
    currency = Column(String(10))
    approver = Column(String(255))
    blob_url = Column(String(500))                               # final PDF location once renamed
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)


class RequestSerial(Base):
    """Per-year counter backing request ID allocation."""
    __tablename__ = "request_serials"
    year = Column(Integer, primary_key=True, autoincrement=False)
    last_serial = Column(Integer, nullable=False, default=0)
