from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel

from . import account_defaults as acc
from .billing import BillSummary, PurchaseSummary
from .errors import UnbalancedEntryError, ValidationError
from .journal_utils import BALANCE_EPSILON, auto_balance_legs, leg_totals, q_inr
from .models import (
    CustomerReturn,
    JournalEntry,
    JournalTransaction,
    NewJournalEntry,
    Purchase,
    SupplierReturn,
    Transaction,
    new_id,
)

ZERO = Decimal("0")


class AccountBalance(BaseModel):
    account_id: str
    account_name: str = ""
    # Absolute value; `type` carries the side.
    balance: Decimal
    type: Literal["Dr", "Cr"]


class LedgerRow(BaseModel):
    date: Optional[datetime] = None
    narration: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    # Signed running balance (debit - credit).
    running_balance: Decimal


def validate_entry(entry: NewJournalEntry) -> None:
    legs = entry.transactions
    if len(legs) < 2:
        raise UnbalancedEntryError("journal entry needs at least two legs")
    for leg in legs:
        if leg.amount <= 0:
            raise UnbalancedEntryError(f"journal leg for {leg.account_id} must be a positive amount")
    debit, credit = leg_totals(legs)
    if abs(debit - credit) > BALANCE_EPSILON:
        raise UnbalancedEntryError(f"unbalanced entry: debits {debit} != credits {credit}")


def make_entry(entry: NewJournalEntry) -> JournalEntry:
    """Validate a new entry and assign it an id."""
    validate_entry(entry)
    entry_id = new_id(f"JE-{entry.reference_type.upper()}")
    return JournalEntry(id=entry_id, **entry.model_dump())


def post_entry(journal: Iterable[JournalEntry], entry: NewJournalEntry) -> List[JournalEntry]:
    """Return a new journal with `entry` appended; the input journal is untouched on rejection."""
    posted = make_entry(entry)
    return [*journal, posted]


def _signed(leg: JournalTransaction) -> Decimal:
    return leg.amount if leg.type == "debit" else -leg.amount


def _side(net: Decimal) -> Literal["Dr", "Cr"]:
    return "Dr" if net >= 0 else "Cr"


def _ordered(journal: Iterable[JournalEntry]) -> List[JournalEntry]:
    # sorted() is stable, so same-date entries keep insertion order.
    return sorted(journal, key=lambda e: e.date)


def account_balance(journal: Iterable[JournalEntry], account_id: str) -> AccountBalance:
    net = ZERO
    name = ""
    for entry in journal:
        for leg in entry.transactions:
            if leg.account_id == account_id:
                net += _signed(leg)
                name = name or leg.account_name
    return AccountBalance(account_id=account_id, account_name=name, balance=abs(net), type=_side(net))


def _as_date(v) -> date:
    return v.date() if isinstance(v, datetime) else v


def ledger_statement(
    journal: Iterable[JournalEntry],
    account_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[LedgerRow]:
    """
    Chronological replay of every leg touching `account_id`.

    With `start`, legs before it are folded into a leading "Opening Balance" row.
    """
    opening = ZERO
    in_range: List[tuple[JournalEntry, JournalTransaction]] = []
    for entry in _ordered(journal):
        d = _as_date(entry.date)
        if end is not None and d > end:
            continue
        for leg in entry.transactions:
            if leg.account_id != account_id:
                continue
            if start is not None and d < start:
                opening += _signed(leg)
            else:
                in_range.append((entry, leg))

    rows: List[LedgerRow] = []
    if start is not None:
        rows.append(LedgerRow(narration="Opening Balance", running_balance=opening))
    running = opening
    for entry, leg in in_range:
        running += _signed(leg)
        rows.append(
            LedgerRow(
                date=entry.date,
                narration=entry.narration,
                reference_type=entry.reference_type,
                reference_id=entry.reference_id,
                debit=leg.amount if leg.type == "debit" else ZERO,
                credit=leg.amount if leg.type == "credit" else ZERO,
                running_balance=running,
            )
        )
    return rows


def trial_balance(journal: Iterable[JournalEntry]) -> List[AccountBalance]:
    nets: dict[str, Decimal] = {}
    names: dict[str, str] = {}
    for entry in journal:
        for leg in entry.transactions:
            nets[leg.account_id] = nets.get(leg.account_id, ZERO) + _signed(leg)
            names.setdefault(leg.account_id, leg.account_name)
    return [
        AccountBalance(account_id=a, account_name=names[a], balance=abs(n), type=_side(n))
        for a, n in sorted(nets.items())
    ]


# --- Posting builders -------------------------------------------------------
# Builders assemble legs at full precision; auto_balance_legs quantizes them and
# absorbs sub-paise drift into AC-ROUNDING. make_entry/post_entry validate.


def _leg(account_id: str, type_: str, amount, *, name: Optional[str] = None) -> JournalTransaction:
    return JournalTransaction(
        account_id=account_id,
        account_name=acc.account_name(account_id, name),
        type=type_,
        amount=amount,
    )


def _entry(when: datetime, ref_id: str, ref_type: str, narration: str, legs: List[JournalTransaction]) -> NewJournalEntry:
    return NewJournalEntry(
        date=when,
        reference_id=ref_id,
        reference_type=ref_type,
        narration=narration,
        transactions=auto_balance_legs(legs),
    )


def sale_entry(
    tx: Transaction,
    summary: BillSummary,
    *,
    customer_name: Optional[str] = None,
) -> NewJournalEntry:
    """
    Paid sales debit the settlement account; credit sales debit the customer.

    Voucher redemption clears part of the vouchers-payable liability and is
    booked as additional sales value.
    """
    if tx.status == "credit":
        if not tx.customer_id:
            raise ValidationError("credit sale requires a customer")
        debit_leg = _leg(tx.customer_id, "debit", summary.grand_total, name=customer_name or tx.customer_name)
    else:
        debit_leg = _leg(acc.settlement_account(tx.payment_method), "debit", summary.grand_total)

    legs = [
        debit_leg,
        _leg(acc.SALES, "credit", summary.taxable_value),
        _leg(acc.SGST_OUTPUT, "credit", summary.total_sgst),
        _leg(acc.CGST_OUTPUT, "credit", summary.total_cgst),
    ]
    if summary.voucher_discount > 0:
        legs.append(_leg(acc.VOUCHERS_PAYABLE, "debit", summary.voucher_discount))
        legs.append(_leg(acc.SALES, "credit", summary.voucher_discount))
    return _entry(tx.date, tx.id, "Sale", f"Sale {tx.id}" + (f" to {tx.customer_name}" if tx.customer_name else ""), legs)


def purchase_entry(
    purchase: Purchase,
    summary: PurchaseSummary,
    *,
    supplier_name: Optional[str] = None,
) -> NewJournalEntry:
    if purchase.status == "credit":
        credit_leg = _leg(purchase.supplier_id, "credit", summary.total, name=supplier_name)
    else:
        credit_leg = _leg(acc.settlement_account(purchase.payment_method), "credit", summary.total)
    legs = [
        _leg(acc.PURCHASES, "debit", summary.subtotal),
        _leg(acc.SGST_INPUT, "debit", summary.total_sgst),
        _leg(acc.CGST_INPUT, "debit", summary.total_cgst),
        credit_leg,
    ]
    narration = f"Purchase {purchase.invoice_number or purchase.id}"
    if supplier_name:
        narration += f" from {supplier_name}"
    return _entry(purchase.date, purchase.id, "Purchase", narration, legs)


def customer_return_entry(ret: CustomerReturn, tx: Transaction) -> NewJournalEntry:
    """
    Reverse the sale's settlement side: a refund on a credit sale reduces the
    customer's dues, otherwise it leaves the account the sale was paid into.
    """
    if ret.settlement.type == "voucher":
        credit_leg = _leg(acc.VOUCHERS_PAYABLE, "credit", ret.total_amount)
        narration = f"Return {ret.id} settled by voucher {ret.settlement.voucher_id or ''}".rstrip()
    elif tx.status == "credit":
        if not tx.customer_id:
            raise ValidationError("credit sale requires a customer")
        credit_leg = _leg(tx.customer_id, "credit", ret.total_amount, name=tx.customer_name)
        narration = f"Return {ret.id} against credit invoice {tx.id}"
    else:
        credit_leg = _leg(acc.settlement_account(tx.payment_method), "credit", ret.total_amount)
        narration = f"Refund for return {ret.id}"
    legs = [
        _leg(acc.SALES_RETURN, "debit", ret.total_amount),
        credit_leg,
    ]
    return _entry(ret.date, ret.id, "CustomerReturn", narration, legs)


def supplier_return_entry(ret: SupplierReturn, *, supplier_name: Optional[str] = None) -> Optional[NewJournalEntry]:
    """Ledger adjustments reduce the supplier payable; credit-note returns post nothing."""
    if ret.settlement.type == "credit_note":
        return None
    legs = [
        _leg(ret.supplier_id, "debit", ret.total_amount, name=supplier_name),
        _leg(acc.PURCHASE_RETURN, "credit", ret.total_amount),
    ]
    return _entry(ret.date, ret.id, "SupplierReturn", f"Purchase return {ret.id}", legs)


def _check_amount(amount: Decimal) -> Decimal:
    if amount is None or q_inr(amount) <= 0:
        raise ValidationError("amount must be greater than zero")
    return amount


def receipt_entry(
    receipt_id: str,
    customer_id: str,
    amount: Decimal,
    method: str,
    when: datetime,
    *,
    customer_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> NewJournalEntry:
    _check_amount(amount)
    legs = [
        _leg(acc.settlement_account(method), "debit", amount),
        _leg(customer_id, "credit", amount, name=customer_name),
    ]
    narration = notes or f"Receipt from {customer_name or customer_id}"
    return _entry(when, receipt_id, "Receipt", narration, legs)


def payment_entry(
    payment_id: str,
    supplier_id: str,
    amount: Decimal,
    method: str,
    when: datetime,
    *,
    supplier_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> NewJournalEntry:
    _check_amount(amount)
    legs = [
        _leg(supplier_id, "debit", amount, name=supplier_name),
        _leg(acc.settlement_account(method), "credit", amount),
    ]
    narration = notes or f"Payment to {supplier_name or supplier_id}"
    return _entry(when, payment_id, "Payment", narration, legs)
