from sqlalchemy import Column, String, DateTime, Numeric
from datetime import datetime

from tcrs_approval.core.database import Base
from tcrs_approval.models.request import _new_id


class AccountMaster(Base):
    __tablename__ = "account_master"
    account_code = Column(String(255), primary_key=True)
    account_description = Column(String(255))
    account_combined = Column(String(255))                      # "<code> - <description>"
    created_by = Column(String(255))
    updated_by = Column(String(255))
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)


class Facility(Base):
    __tablename__ = "facility"
    facility_code = Column(String(255), primary_key=True)
    facility_description = Column(String(255))
    facility_combined = Column(String(255))
    created_by = Column(String(255))
    updated_by = Column(String(255))
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)


class ApproverList(Base):
    __tablename__ = "approver_list"
    approver_id = Column(String(255), primary_key=True, default=_new_id)
    erp = Column(String(255))                                   # company
    branch = Column(String(255), index=True)
    authorized_amount = Column(Numeric(12, 2))
    authorized_approver = Column(String(255), unique=True)
    email_address = Column(String(255), index=True)
    back_up_approver = Column(String(255))
    back_up_email_address = Column(String(255), index=True)
    created_by = Column(String(255))
    updated_by = Column(String(255))
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)
