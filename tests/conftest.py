import os
import tempfile

# must be set before the app modules read them
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUDIT_DIR", tempfile.mkdtemp(prefix="tcrs-audit-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tcrs_approval.core.database import Base, get_db, make_engine
from tcrs_approval.core.security import create_access_token
from tcrs_approval.main import app
from tcrs_approval.models import ApprovalRequest, ApproverList, InvoiceData
from tcrs_approval.services.request_ids import RequestIdGenerator
from tcrs_approval.services.workflow_catalog import seed_workflow_steps

REQUESTER = "req@tcrs.test"
APPROVER = "boss@tcrs.test"
BACKUP = "backup@tcrs.test"
OTHER_APPROVER = "other@tcrs.test"
ADMIN = "admin@tcrs.test"


class FakeBlobStorage:
    """In-memory stand-in for utils.blob_storage.BlobStorage."""

    container_name = "invoices-pdf"

    def __init__(self):
        self.blobs = {}
        self.metadata = {}
        self.fail_on = set()     # method names that should raise

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise RuntimeError(f"{op} unavailable")

    def url(self, name):
        return f"https://acct.blob.core.windows.net/{self.container_name}/{name}"

    def upload(self, name, data, content_type, metadata=None):
        self._maybe_fail("upload")
        self.blobs[name] = data
        self.metadata[name] = dict(metadata or {})
        return self.url(name)

    def exists(self, name):
        return name in self.blobs

    def size(self, name):
        return len(self.blobs[name]) if name in self.blobs else None

    def copy(self, source, target):
        self._maybe_fail("copy")
        self.blobs[target] = self.blobs[source]

    def set_metadata(self, name, metadata):
        self._maybe_fail("set_metadata")
        self.metadata[name] = dict(metadata)

    def delete(self, name):
        self._maybe_fail("delete")
        self.blobs.pop(name, None)

    def sas_url(self, name, ttl_min):
        return f"{self.url(name)}?sig=fake&ttl={ttl_min}"


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    seed_workflow_steps(session)
    yield session
    session.close()


@pytest.fixture
def storage():
    return FakeBlobStorage()


@pytest.fixture
def client(engine, db, storage):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _get_db():
        s = Session()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.state.request_ids = RequestIdGenerator()
    app.state.blob_storage = storage
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.blob_storage = None


def auth(email, role):
    return {"Authorization": f"Bearer {create_access_token(email, role)}"}


@pytest.fixture
def approvers(db):
    rows = [
        ApproverList(erp="TCRS", branch="Calgary", authorized_amount=Decimal("5000"),
                     authorized_approver="Boss", email_address=APPROVER,
                     back_up_approver="Backup", back_up_email_address=BACKUP),
        ApproverList(erp="TCRS", branch="Calgary", authorized_amount=Decimal("50000"),
                     authorized_approver="Other", email_address=OTHER_APPROVER),
    ]
    db.add_all(rows)
    db.commit()
    return rows


def make_request(db, request_id="TCRS-2025-000001", status="pending", approver=APPROVER, amount="1500.00"):
    db.add(ApprovalRequest(request_id=request_id, requester=REQUESTER,
                           assigned_approver=approver, approver_status=status))
    db.add(InvoiceData(request_id=request_id, company="TCRS", branch="Calgary", vendor="ACME",
                       amount=Decimal(amount), currency="CAD", approver=approver))
    db.commit()
    return request_id
