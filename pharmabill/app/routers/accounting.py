from fastapi import APIRouter
from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ..db import get_conn
from .. import store
from ..account_defaults import SYSTEM_ACCOUNTS
from ..errors import IntegrityError
from ..journal import account_balance, ledger_statement, make_entry, payment_entry, receipt_entry, trial_balance
from ..logs import json_log
from ..models import new_id, utcnow
from ..validation import ReferenceType, SettlementMethod

router = APIRouter(prefix="/accounting", tags=["accounting"])


class SettlementIn(BaseModel):
    party_id: str
    amount: Decimal = Field(..., gt=0)
    method: SettlementMethod = "cash"
    notes: Optional[str] = None
    date: Optional[datetime] = None


@router.get("/accounts")
def list_system_accounts():
    return {"accounts": [{"id": k, "name": v} for k, v in SYSTEM_ACCOUNTS.items()]}


@router.get("/journal")
def list_journal(reference_type: Optional[ReferenceType] = None, account_id: Optional[str] = None, limit: int = 200):
    limit = max(1, min(limit, 2000))
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"entries": store.load_journal(cur, account_id=account_id, reference_type=reference_type, limit=limit)}


def _record_settlement(kind: str, data: SettlementIn):
    table = "customers" if kind == "Receipt" else "suppliers"
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                party = store.get_party(cur, table, data.party_id)
                if party is None:
                    raise IntegrityError(f"{table[:-1]} {data.party_id} not found")
                when = data.date or utcnow()
                if kind == "Receipt":
                    sid = new_id("RCPT")
                    draft = receipt_entry(sid, party["id"], data.amount, data.method, when, customer_name=party["name"], notes=data.notes)
                else:
                    sid = new_id("PAY")
                    draft = payment_entry(sid, party["id"], data.amount, data.method, when, supplier_name=party["name"], notes=data.notes)
                entry = make_entry(draft)
                store.insert_settlement(cur, sid, kind, party["id"], data.amount, data.method, when, data.notes)
                store.insert_journal_entry(cur, entry)
                store.write_audit(
                    cur,
                    "receipt_recorded" if kind == "Receipt" else "payment_recorded",
                    "settlement",
                    sid,
                    {"party_id": party["id"], "amount": str(data.amount), "method": data.method, "journal_id": entry.id},
                )
    json_log("info", "journal.posted", journal_id=entry.id, reference_type=kind, reference_id=sid)
    return {"id": sid, "journal": entry}


@router.post("/receipts")
def record_receipt(data: SettlementIn):
    """Customer pays down a credit balance: Dr cash/bank, Cr customer."""
    return _record_settlement("Receipt", data)


@router.post("/payments")
def record_payment(data: SettlementIn):
    """Pay a supplier: Dr supplier, Cr cash/bank."""
    return _record_settlement("Payment", data)


@router.get("/accounts/{account_id}/balance")
def get_account_balance(account_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            journal = store.load_journal(cur, account_id=account_id)
    return {"balance": account_balance(journal, account_id)}


@router.get("/accounts/{account_id}/ledger")
def get_ledger(account_id: str, start: Optional[date] = None, end: Optional[date] = None):
    # Load through the end of the `end` day; the statement itself applies both bounds.
    until = None
    if end is not None:
        until = datetime.combine(end + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    with get_conn() as conn:
        with conn.cursor() as cur:
            journal = store.load_journal(cur, account_id=account_id, end=until)
    rows = ledger_statement(journal, account_id, start=start, end=end)
    return {
        "account_id": account_id,
        "rows": rows,
        "closing_balance": account_balance(journal, account_id),
    }


@router.get("/trial-balance")
def get_trial_balance():
    with get_conn() as conn:
        with conn.cursor() as cur:
            journal = store.load_journal(cur)
    rows = trial_balance(journal)
    total_dr = sum((r.balance for r in rows if r.type == "Dr"), Decimal("0"))
    total_cr = sum((r.balance for r in rows if r.type == "Cr"), Decimal("0"))
    return {"accounts": rows, "total_debit": total_dr, "total_credit": total_cr}
