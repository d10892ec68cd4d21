from __future__ import annotations

from typing import Optional

from .errors import ValidationError

CASH = "AC-CASH"
BANK = "AC-BANK"
SALES = "AC-SALES"
PURCHASES = "AC-PURCHASES"
SALES_RETURN = "AC-SALES-RETURN"
PURCHASE_RETURN = "AC-PURCHASE-RETURN"
SGST_OUTPUT = "AC-SGST-OUTPUT"
CGST_OUTPUT = "AC-CGST-OUTPUT"
SGST_INPUT = "AC-SGST-INPUT"
CGST_INPUT = "AC-CGST-INPUT"
VOUCHERS_PAYABLE = "AC-VOUCHERS-PAYABLE"
ROUNDING = "AC-ROUNDING"

SYSTEM_ACCOUNTS = {
    CASH: "Cash Account",
    BANK: "Bank Account",
    SALES: "Sales",
    PURCHASES: "Purchases",
    SALES_RETURN: "Sales Return",
    PURCHASE_RETURN: "Purchase Return",
    SGST_OUTPUT: "SGST Output",
    CGST_OUTPUT: "CGST Output",
    SGST_INPUT: "SGST Input",
    CGST_INPUT: "CGST Input",
    VOUCHERS_PAYABLE: "Vouchers Payable",
    ROUNDING: "Rounding",
}

# Everything that is not cash settles through the bank account.
PAYMENT_METHOD_ACCOUNTS = {
    "cash": CASH,
    "card": BANK,
    "upi": BANK,
    "bank": BANK,
}


def account_name(account_id: str, party_name: Optional[str] = None) -> str:
    if account_id in SYSTEM_ACCOUNTS:
        return SYSTEM_ACCOUNTS[account_id]
    return party_name or account_id


def settlement_account(payment_method: Optional[str]) -> str:
    method = (payment_method or "cash").strip().lower()
    try:
        return PAYMENT_METHOD_ACCOUNTS[method]
    except KeyError:
        raise ValidationError(f"unknown payment method: {payment_method}") from None
