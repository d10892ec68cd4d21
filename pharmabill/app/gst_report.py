"""
GST return summary: output tax on sales against input tax on purchases,
grouped by HSN code and by rate.

Sale lines carry the rate they were billed at. The invoice-level discount and
voucher are not stored per line, so each line's taxable value is recovered by
scaling its gross value so the invoice adds back up to its stored total.
Purchase lines store their net amount; their rate comes from the current GST
bands for the product's HSN code.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping

from pydantic import BaseModel, Field

from .journal_utils import q_inr
from .models import GstSettings, Product, Purchase, Transaction
from .tax import gst_rate, split_tax

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class TaxableLine(BaseModel):
    hsn_code: str = ""
    description: str = ""
    quantity: int = 0
    rate: Decimal
    taxable_value: Decimal
    sgst: Decimal
    cgst: Decimal


class HsnRow(BaseModel):
    hsn_code: str
    description: str = ""
    quantity: int = 0
    taxable_value: Decimal = ZERO
    sgst: Decimal = ZERO
    cgst: Decimal = ZERO
    total_tax: Decimal = ZERO


class RateRow(BaseModel):
    rate: Decimal
    taxable_value: Decimal = ZERO
    sgst: Decimal = ZERO
    cgst: Decimal = ZERO
    total_tax: Decimal = ZERO


class GstSide(BaseModel):
    documents: int = 0
    by_hsn: List[HsnRow] = Field(default_factory=list)
    by_rate: List[RateRow] = Field(default_factory=list)
    taxable_value: Decimal = ZERO
    sgst: Decimal = ZERO
    cgst: Decimal = ZERO
    total_tax: Decimal = ZERO


class GstSummary(BaseModel):
    output: GstSide
    input: GstSide
    # Output tax less input tax credit; negative means a carry-forward credit.
    net_liability: Decimal


def sale_lines(tx: Transaction, products: Mapping[str, Product]) -> List[TaxableLine]:
    items = [i for i in tx.items if i.quantity > 0]
    gross = [Decimal(i.price) * i.quantity for i in items]
    sub_total = sum(gross, ZERO)
    if sub_total <= 0:
        return []
    if tx.is_rghs:
        # Exempt: the whole invoice is taxable value at 0%.
        rates = [ZERO] * len(items)
        factor = Decimal(tx.total) / sub_total
    else:
        rates = [Decimal(i.tax) for i in items]
        grossed_up = sum((g * (HUNDRED + r) / HUNDRED for g, r in zip(gross, rates)), ZERO)
        factor = Decimal(tx.total) / grossed_up if grossed_up > 0 else ZERO
    out = []
    for item, g, rate in zip(items, gross, rates):
        taxable = g * factor
        sgst, cgst = split_tax(taxable, rate)
        product = products.get(item.product_id)
        out.append(
            TaxableLine(
                hsn_code=product.hsn_code if product else "",
                description=product.name if product else item.product_name,
                quantity=item.quantity,
                rate=rate,
                taxable_value=taxable,
                sgst=sgst,
                cgst=cgst,
            )
        )
    return out


def purchase_lines(purchase: Purchase, products: Mapping[str, Product], settings: GstSettings) -> List[TaxableLine]:
    out = []
    for item in purchase.items:
        product = products.get(item.product_id)
        hsn = product.hsn_code if product else ""
        rate = gst_rate(hsn, settings)
        sgst, cgst = split_tax(item.amount, rate)
        out.append(
            TaxableLine(
                hsn_code=hsn,
                description=product.name if product else item.product_name,
                quantity=item.quantity,
                rate=rate,
                taxable_value=Decimal(item.amount),
                sgst=sgst,
                cgst=cgst,
            )
        )
    return out


def summarize_lines(lines: Iterable[TaxableLine], documents: int = 0) -> GstSide:
    by_hsn: Dict[str, HsnRow] = {}
    by_rate: Dict[Decimal, RateRow] = {}
    side = GstSide(documents=documents)
    for line in lines:
        h = by_hsn.setdefault(line.hsn_code, HsnRow(hsn_code=line.hsn_code, description=line.description))
        r = by_rate.setdefault(line.rate, RateRow(rate=line.rate))
        h.quantity += line.quantity
        for row in (h, r, side):
            row.taxable_value += line.taxable_value
            row.sgst += line.sgst
            row.cgst += line.cgst
            row.total_tax += line.sgst + line.cgst

    def _rounded(row):
        return row.model_copy(
            update={
                "taxable_value": q_inr(row.taxable_value),
                "sgst": q_inr(row.sgst),
                "cgst": q_inr(row.cgst),
                "total_tax": q_inr(row.total_tax),
            }
        )

    side = _rounded(side)
    side.by_hsn = [_rounded(by_hsn[k]) for k in sorted(by_hsn)]
    side.by_rate = [_rounded(by_rate[k]) for k in sorted(by_rate)]
    return side


def gst_summary(
    transactions: Iterable[Transaction],
    purchases: Iterable[Purchase],
    products: Mapping[str, Product],
    settings: GstSettings,
) -> GstSummary:
    transactions = list(transactions)
    purchases = list(purchases)
    output = summarize_lines((l for tx in transactions for l in sale_lines(tx, products)), len(transactions))
    input_ = summarize_lines((l for p in purchases for l in purchase_lines(p, products, settings)), len(purchases))
    return GstSummary(output=output, input=input_, net_liability=output.total_tax - input_.total_tax)
