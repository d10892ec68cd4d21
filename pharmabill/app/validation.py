from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_schedule(v):
    # Drug schedules are stored as `none|H|H1|narcotic|tb`; H/H1 are upper-case, the rest lower.
    if v is None or str(v).strip() == "":
        return "none"
    s = str(v).strip()
    if s.upper() in {"H", "H1"}:
        return s.upper()
    return s.lower()


def _to_title_str(v):
    if v is None:
        return v
    s = str(v).strip()
    for canonical in ("Sale", "Purchase", "Payment", "Receipt", "CustomerReturn", "SupplierReturn"):
        if s.lower() == canonical.lower():
            return canonical
    return s


# Canonical codes mirror Postgres CHECK constraints in `pharmabill/db/migrations/001_init.sql`.
Schedule = Annotated[Literal["none", "H", "H1", "narcotic", "tb"], BeforeValidator(_to_schedule)]
DocStatus = Annotated[Literal["paid", "credit"], BeforeValidator(_to_lower_str)]
PaymentMethod = Annotated[Literal["cash", "card", "upi", "bank"], BeforeValidator(_to_lower_str)]
SettlementMethod = Annotated[Literal["cash", "bank"], BeforeValidator(_to_lower_str)]
VoucherStatus = Annotated[Literal["active", "used", "expired"], BeforeValidator(_to_lower_str)]
CreditNoteStatus = Annotated[Literal["open", "applied"], BeforeValidator(_to_lower_str)]
LegType = Annotated[Literal["debit", "credit"], BeforeValidator(_to_lower_str)]
ReferenceType = Annotated[
    Literal["Sale", "Purchase", "Payment", "Receipt", "CustomerReturn", "SupplierReturn"],
    BeforeValidator(_to_title_str),
]
CustomerSettlement = Annotated[Literal["refund", "voucher"], BeforeValidator(_to_lower_str)]
SupplierSettlement = Annotated[Literal["credit_note", "ledger_adjustment"], BeforeValidator(_to_lower_str)]


# HSN codes are digit strings (4-8 digits); keep surrounding whitespace out of prefix matching.
HsnCode = Annotated[
    str,
    BeforeValidator(lambda v: "" if v is None else str(v).strip()),
    StringConstraints(max_length=8, pattern=r"^[0-9]*$"),
]

# Account ids are either system accounts (AC-*) or party ids (uuid text), so keep case as-is.
AccountId = Annotated[
    str,
    BeforeValidator(lambda v: "" if v is None else str(v).strip()),
    StringConstraints(min_length=1, max_length=64),
]
