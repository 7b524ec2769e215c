from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from tcrs_approval.core.database import get_db
from tcrs_approval.core.errors import ValidationError
from tcrs_approval.crud import dictionary as dict_crud
from tcrs_approval.deps.auth import CurrentUser, get_current_user, require_role

router = APIRouter(tags=["dictionaries"])


# ===== PUBLIC PICK LISTS =====

@router.get("/api/dictionaries", response_model=dict)
def dictionaries(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return {
        "companies": dict_crud.companies(db),
        "branches": [],              # loaded per company from /api/dictionaries/branches
        "currencies": [dict(c) for c in dict_crud.CURRENCIES],
    }


@router.get("/api/dictionaries/companies", response_model=dict)
def companies(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return {"companies": dict_crud.companies(db)}


@router.get("/api/dictionaries/branches", response_model=dict)
def branches(erp: str = "", db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    if not erp.strip():
        raise ValidationError("ERP parameter is required")
    return {"branches": dict_crud.branches(db, erp.strip())}


# ===== ADMIN CRUD =====
# kind is one of: accounts, facilities, approvers

@router.get("/api/admin/dictionaries/{kind}", response_model=List[dict])
def list_entries(kind: str, db: Session = Depends(get_db), user: CurrentUser = Depends(require_role("admin"))):
    k = dict_crud.get_kind(kind)
    return [dict_crud.snapshot(r) for r in dict_crud.list_entries(db, k)]


@router.post("/api/admin/dictionaries/{kind}", response_model=dict, status_code=201)
def create_entry(kind: str, payload: Dict[str, Any] = Body(...),
                 db: Session = Depends(get_db), user: CurrentUser = Depends(require_role("admin"))):
    k = dict_crud.get_kind(kind)
    row = dict_crud.create_entry(db, k, payload, user.email)
    return dict_crud.snapshot(row)


@router.get("/api/admin/dictionaries/{kind}/{entry_id}", response_model=dict)
def get_entry(kind: str, entry_id: str,
              db: Session = Depends(get_db), user: CurrentUser = Depends(require_role("admin"))):
    k = dict_crud.get_kind(kind)
    return dict_crud.snapshot(dict_crud.get_entry(db, k, entry_id))


@router.put("/api/admin/dictionaries/{kind}/{entry_id}", response_model=dict)
def update_entry(kind: str, entry_id: str, payload: Dict[str, Any] = Body(...),
                 db: Session = Depends(get_db), user: CurrentUser = Depends(require_role("admin"))):
    k = dict_crud.get_kind(kind)
    row = dict_crud.update_entry(db, k, entry_id, payload, user.email)
    return dict_crud.snapshot(row)


@router.delete("/api/admin/dictionaries/{kind}/{entry_id}", response_model=dict)
def delete_entry(kind: str, entry_id: str,
                 db: Session = Depends(get_db), user: CurrentUser = Depends(require_role("admin"))):
    k = dict_crud.get_kind(kind)
    dict_crud.delete_entry(db, k, entry_id, user.email)
    return {"success": True, "deleted": entry_id}
