# tcrs_approval/crud/dictionary.py
"""Admin maintenance of the account, facility and approver dictionaries."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tcrs_approval.core.errors import NotFoundError, ValidationError
from tcrs_approval.models.dictionary import AccountMaster, ApproverList, Facility
from tcrs_approval.services.audit import record_dictionary_change

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DictionaryKind:
    entity_type: str                 # APPROVER | ACCOUNT | FACILITY
    model: type
    key: str                         # primary key attribute
    fields: Tuple[str, ...]          # editable attributes
    required: Tuple[str, ...]


ACCOUNTS = DictionaryKind(
    "ACCOUNT", AccountMaster, "account_code",
    ("account_code", "account_description", "account_combined"),
    ("account_code",),
)
FACILITIES = DictionaryKind(
    "FACILITY", Facility, "facility_code",
    ("facility_code", "facility_description", "facility_combined"),
    ("facility_code",),
)
APPROVERS = DictionaryKind(
    "APPROVER", ApproverList, "approver_id",
    ("erp", "branch", "authorized_amount", "authorized_approver", "email_address",
     "back_up_approver", "back_up_email_address"),
    ("authorized_approver", "branch"),
)

KINDS = {"accounts": ACCOUNTS, "facilities": FACILITIES, "approvers": APPROVERS}


def get_kind(name: str) -> DictionaryKind:
    kind = KINDS.get((name or "").lower())
    if not kind:
        raise NotFoundError(f"Unknown dictionary '{name}'. Must be one of {sorted(KINDS)}.")
    return kind


def snapshot(row: Any) -> Dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}


def _combined_label(kind: DictionaryKind, row: Any) -> None:
    if kind is APPROVERS:
        return
    prefix = kind.key.split("_")[0]
    combined = f"{prefix}_combined"
    if not getattr(row, combined):
        desc = getattr(row, f"{prefix}_description")
        code = getattr(row, kind.key)
        setattr(row, combined, f"{code} - {desc}" if desc else code)


def _clean(kind: DictionaryKind, data: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in data.items():
        if k not in kind.fields:
            continue
        out[k] = v.strip() if isinstance(v, str) else v
    return out


def _find_duplicate(db: Session, kind: DictionaryKind, values: Dict[str, Any], exclude: Optional[str] = None):
    if kind is APPROVERS:
        name = values.get("authorized_approver")
        if not name:
            return None
        q = db.query(ApproverList).filter(ApproverList.authorized_approver == name)
        if exclude:
            q = q.filter(ApproverList.approver_id != exclude)
        return q.first()
    return db.get(kind.model, values.get(kind.key)) if values.get(kind.key) and not exclude else None


def list_entries(db: Session, kind: DictionaryKind) -> List[Any]:
    return db.query(kind.model).order_by(getattr(kind.model, kind.key)).all()


def get_entry(db: Session, kind: DictionaryKind, key: str) -> Any:
    row = db.get(kind.model, key)
    if not row:
        raise NotFoundError(f"{kind.entity_type.capitalize()} '{key}' not found")
    return row


def _commit(db: Session, kind: DictionaryKind, action: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError(f"{kind.entity_type.capitalize()} already exists") from e
    except SQLAlchemyError:
        db.rollback()
        logger.exception("dictionary %s %s failed", kind.entity_type, action)
        raise


def create_entry(db: Session, kind: DictionaryKind, data: Dict[str, Any], actor: str) -> Any:
    values = _clean(kind, data)
    missing = [f for f in kind.required if not values.get(f)]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    if _find_duplicate(db, kind, values):
        raise ValidationError(f"{kind.entity_type.capitalize()} already exists")

    row = kind.model(**values, created_by=actor, created_date=datetime.utcnow())
    _combined_label(kind, row)
    db.add(row)
    db.flush()
    key = getattr(row, kind.key)
    record_dictionary_change(db, "CREATED", kind.entity_type, key, actor, new=snapshot(row),
                             notes=f"{kind.entity_type.capitalize()} {key} created")
    _commit(db, kind, "create")
    logger.info("dictionary %s %s created by %s", kind.entity_type, key, actor)
    db.refresh(row)
    return row


def update_entry(db: Session, kind: DictionaryKind, key: str, data: Dict[str, Any], actor: str) -> Any:
    row = get_entry(db, kind, key)
    values = _clean(kind, data)
    values.pop(kind.key, None)        # keys are immutable; delete and recreate instead
    if _find_duplicate(db, kind, values, exclude=key):
        raise ValidationError(f"{kind.entity_type.capitalize()} already exists")
    for f in kind.required:
        if f in values and not values[f]:
            raise ValidationError(f"{f} cannot be empty")

    before = snapshot(row)
    for k, v in values.items():
        setattr(row, k, v)
    row.updated_by = actor
    row.modified_date = datetime.utcnow()
    db.flush()
    record_dictionary_change(db, "UPDATED", kind.entity_type, key, actor,
                             previous=before, new=snapshot(row),
                             notes=f"{kind.entity_type.capitalize()} {key} updated")
    _commit(db, kind, "update")
    logger.info("dictionary %s %s updated by %s", kind.entity_type, key, actor)
    db.refresh(row)
    return row


def delete_entry(db: Session, kind: DictionaryKind, key: str, actor: str) -> Dict[str, Any]:
    row = get_entry(db, kind, key)
    before = snapshot(row)
    db.delete(row)
    db.flush()
    record_dictionary_change(db, "DELETED", kind.entity_type, key, actor, previous=before,
                             notes=f"{kind.entity_type.capitalize()} {key} deleted")
    _commit(db, kind, "delete")
    logger.info("dictionary %s %s deleted by %s", kind.entity_type, key, actor)
    return before


# ===== PUBLIC PICK LISTS =====

FALLBACK_COMPANIES = [
    {"code": "TCRS", "description": "TCRS"},
    {"code": "Sitech", "description": "Sitech"},
    {"code": "Fused CA", "description": "Fused CA"},
]
CURRENCIES = [
    {"code": "CAD", "name": "Canadian Dollar"},
    {"code": "USD", "name": "US Dollar"},
    {"code": "EUR", "name": "Euro"},
]


def companies(db: Session) -> List[Dict[str, str]]:
    rows = (
        db.query(ApproverList.erp)
        .filter(ApproverList.erp.isnot(None))
        .distinct()
        .order_by(ApproverList.erp)
        .all()
    )
    found = [{"code": erp, "description": erp} for (erp,) in rows if erp]
    return found or [dict(c) for c in FALLBACK_COMPANIES]


def branches(db: Session, erp: str) -> List[Dict[str, str]]:
    rows = (
        db.query(ApproverList.branch)
        .filter(ApproverList.erp == erp, ApproverList.branch.isnot(None))
        .distinct()
        .order_by(ApproverList.branch)
        .all()
    )
    return [{"code": b, "description": b} for (b,) in rows if b]
