from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Boolean, Text
from datetime import datetime

from tcrs_approval.core.database import Base
from tcrs_approval.models.request import _new_id


class GLCodingUpload(Base):
    __tablename__ = "gl_coding_uploaded_data"
    upload_id = Column(String(255), primary_key=True, default=_new_id)
    request_id = Column(String(255), ForeignKey("approval_requests.request_id"), nullable=False, index=True)
    uploader = Column(String(255))
    uploaded_file = Column(Boolean, default=False)               # True when entries came from an Excel file
    status = Column(String(50), default="completed")             # uploaded | processing | completed | failed
    blob_url = Column(String(500), nullable=True)
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)


class GLCodingEntry(Base):
    __tablename__ = "gl_coding_data"
    upload_id = Column(String(255), ForeignKey("gl_coding_uploaded_data.upload_id"), primary_key=True)
    line = Column(Integer, primary_key=True, autoincrement=False)
    account_code = Column(String(255), nullable=False)
    facility_code = Column(String(255), nullable=False)
    tax_code = Column(String(255))
    amount = Column(Numeric(12, 2), nullable=False)
    equipment = Column(String(255))
    comments = Column(Text)
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)
