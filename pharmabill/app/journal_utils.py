from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import List

from .models import JournalTransaction

INR_Q = Decimal("0.01")
# Per-unit prices (MRP split across a strip) keep four places.
UNIT_Q = Decimal("0.0001")

# Journal legs are compared at paise precision.
BALANCE_EPSILON = Decimal("0.01")

# Anything larger than this is a real imbalance, not rounding.
MAX_AUTO_BALANCE = Decimal("0.05")

ROUNDING_ACCOUNT_ID = "AC-ROUNDING"
ROUNDING_ACCOUNT_NAME = "Rounding"


def d(v) -> Decimal:
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v or 0))


def q_inr(v) -> Decimal:
    return d(v).quantize(INR_Q, rounding=ROUND_HALF_UP)


def q_unit(v) -> Decimal:
    return d(v).quantize(UNIT_Q, rounding=ROUND_HALF_UP)


def leg_totals(legs: List[JournalTransaction]) -> tuple[Decimal, Decimal]:
    debit = Decimal("0")
    credit = Decimal("0")
    for leg in legs:
        if leg.type == "debit":
            debit += leg.amount
        else:
            credit += leg.amount
    return debit, credit


def auto_balance_legs(legs: List[JournalTransaction], *, memo: str = ROUNDING_ACCOUNT_NAME) -> List[JournalTransaction]:
    """
    Quantize every leg to paise and, if a small rounding difference remains,
    absorb it in a single ROUNDING leg.

    Differences above MAX_AUTO_BALANCE are returned as-is so that posting
    rejects the entry as unbalanced.
    """
    out = [leg.model_copy(update={"amount": q_inr(leg.amount)}) for leg in legs if q_inr(leg.amount) != 0]
    debit, credit = leg_totals(out)
    diff = q_inr(debit - credit)
    if diff == 0 or abs(diff) > MAX_AUTO_BALANCE:
        return out

    # Debits exceed credits => add a credit rounding leg, and vice versa.
    out.append(
        JournalTransaction(
            account_id=ROUNDING_ACCOUNT_ID,
            account_name=memo,
            type="credit" if diff > 0 else "debit",
            amount=abs(diff),
        )
    )
    return out
