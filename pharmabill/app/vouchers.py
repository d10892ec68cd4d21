from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from .errors import ValidationError
from .models import CreditNote, Voucher, new_id, utcnow


def issue_voucher(customer_name: Optional[str], amount: Decimal, *, when: Optional[datetime] = None) -> Voucher:
    if amount is None or amount <= 0:
        raise ValidationError("voucher amount must be greater than zero")
    name = (customer_name or "").strip() or None
    return Voucher(
        id=new_id("VCHR-CUST"),
        customer_name=name,
        initial_amount=amount,
        balance=amount,
        created_date=when or utcnow(),
        status="active",
    )


def redeem_voucher(voucher: Voucher, amount: Decimal) -> Voucher:
    """
    Decrement the voucher balance. Balances only ever go down; once the
    balance reaches zero the voucher is `used`.
    """
    if voucher.status != "active":
        raise ValidationError(f"voucher {voucher.id} is {voucher.status}")
    if amount < 0:
        raise ValidationError("redeem amount cannot be negative")
    if amount > voucher.balance:
        raise ValidationError(f"redeem amount {amount} exceeds voucher balance {voucher.balance}")
    balance = voucher.balance - amount
    return voucher.model_copy(update={"balance": balance, "status": "used" if balance <= 0 else "active"})


def has_lapsed(voucher: Voucher, today: date, validity_days: int) -> bool:
    if validity_days <= 0:
        return False
    return voucher.created_date.date() + timedelta(days=validity_days) < today


def expire_voucher(voucher: Voucher, today: date, validity_days: int) -> Voucher:
    """An active voucher past its validity becomes `expired`. The unspent balance is kept."""
    if voucher.status == "active" and has_lapsed(voucher, today, validity_days):
        return voucher.model_copy(update={"status": "expired"})
    return voucher


def is_applicable(voucher: Voucher, customer_name: Optional[str]) -> bool:
    want = (customer_name or "").strip().lower()
    if not want:
        return False
    return (
        voucher.status == "active"
        and voucher.balance > 0
        and (voucher.customer_name or "").strip().lower() == want
    )


def applicable_vouchers(vouchers: Iterable[Voucher], customer_name: Optional[str]) -> List[Voucher]:
    return [v for v in vouchers if is_applicable(v, customer_name)]


def issue_credit_note(
    supplier_id: str,
    supplier_return_id: str,
    amount: Decimal,
    *,
    when: Optional[datetime] = None,
) -> CreditNote:
    if amount is None or amount <= 0:
        raise ValidationError("credit note amount must be greater than zero")
    return CreditNote(
        id=new_id("CN-SUPP"),
        supplier_id=supplier_id,
        supplier_return_id=supplier_return_id,
        amount=amount,
        date=when or utcnow(),
        status="open",
    )
