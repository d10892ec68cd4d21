from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional

from ..db import get_conn
from .. import store

router = APIRouter(prefix="/customers", tags=["customers"])


class CustomerIn(BaseModel):
    id: Optional[str] = None
    name: str
    contact: Optional[str] = None


@router.get("")
def list_customers(q: str = "", limit: int = 50):
    limit = max(1, min(limit, 500))
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"customers": store.search_parties(cur, "customers", q, limit=limit)}


@router.get("/{customer_id}")
def get_customer(customer_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = store.get_party(cur, "customers", customer_id)
            if not row:
                raise HTTPException(status_code=404, detail="customer not found")
            return {"customer": row}


@router.post("")
def upsert_customer(data: CustomerIn):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    contact = (data.contact or "").strip() or None
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return {"customer": store.upsert_customer(cur, data.id, name, contact)}
