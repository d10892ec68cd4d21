from fastapi import APIRouter, HTTPException
from typing import Optional

from ..config import settings
from ..db import get_conn
from .. import store
from ..logs import json_log
from ..models import utcnow
from ..validation import CreditNoteStatus, VoucherStatus
from ..vouchers import applicable_vouchers, expire_voucher

router = APIRouter(tags=["vouchers"])


@router.get("/vouchers")
def list_vouchers(customer_name: Optional[str] = None, status: Optional[VoucherStatus] = None):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"vouchers": store.list_vouchers(cur, customer_name=customer_name, status=status)}


@router.get("/vouchers/applicable")
def list_applicable_vouchers(customer_name: str):
    """Active, unexpired vouchers with a remaining balance for this customer (name match ignores case)."""
    if not customer_name.strip():
        return {"vouchers": []}
    with get_conn() as conn:
        with conn.cursor() as cur:
            candidates = store.list_vouchers(cur, customer_name=customer_name, status="active")
    today = utcnow().date()
    candidates = [expire_voucher(v, today, settings.voucher_validity_days) for v in candidates]
    return {"vouchers": applicable_vouchers(candidates, customer_name)}


@router.post("/vouchers/expire")
def expire_lapsed_vouchers():
    """Flip every active voucher past VOUCHER_VALIDITY_DAYS to `expired`."""
    today = utcnow().date()
    expired = []
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                for v in store.list_vouchers(cur, status="active"):
                    after = expire_voucher(v, today, settings.voucher_validity_days)
                    if after.status != "expired":
                        continue
                    store.update_voucher(cur, after)
                    store.write_audit(cur, "voucher_expired", "voucher", v.id, {"balance": str(v.balance)})
                    expired.append(after.id)
    json_log("info", "vouchers.expired", count=len(expired), validity_days=settings.voucher_validity_days)
    return {"expired": expired}


@router.get("/vouchers/{voucher_id}")
def get_voucher(voucher_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            v = store.get_voucher(cur, voucher_id)
            if v is None:
                raise HTTPException(status_code=404, detail="voucher not found")
            return {"voucher": v}


@router.get("/credit-notes")
def list_credit_notes(supplier_id: Optional[str] = None, status: Optional[CreditNoteStatus] = None):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"credit_notes": store.list_credit_notes(cur, supplier_id=supplier_id, status=status)}
