from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional

from ..db import get_conn
from .. import store

router = APIRouter(prefix="/suppliers", tags=["suppliers"])


class SupplierIn(BaseModel):
    id: Optional[str] = None
    name: str
    contact: Optional[str] = None
    gstin: Optional[str] = None
    address: Optional[str] = None


@router.get("")
def list_suppliers(q: str = "", limit: int = 50):
    limit = max(1, min(limit, 500))
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"suppliers": store.search_parties(cur, "suppliers", q, limit=limit)}


@router.get("/{supplier_id}")
def get_supplier(supplier_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = store.get_party(cur, "suppliers", supplier_id)
            if not row:
                raise HTTPException(status_code=404, detail="supplier not found")
            return {"supplier": row}


@router.post("")
def upsert_supplier(data: SupplierIn):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    payload = {
        "name": name,
        "contact": (data.contact or "").strip() or None,
        "gstin": (data.gstin or "").strip().upper() or None,
        "address": (data.address or "").strip() or None,
    }
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return {"supplier": store.upsert_supplier(cur, data.id, payload)}
