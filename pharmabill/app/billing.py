from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .errors import IntegrityError, ValidationError
from .models import CartItem, GstSettings, Product, Purchase, ReturnItem, Transaction, Voucher
from .tax import gst_rate, split_tax

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class TaxBand(BaseModel):
    sgst: Decimal = ZERO
    cgst: Decimal = ZERO


class BillSummary(BaseModel):
    sub_total: Decimal
    discount_amount: Decimal
    voucher_discount: Decimal
    taxable_value: Decimal
    tax_breakdown: Dict[Decimal, TaxBand] = Field(default_factory=dict)
    total_sgst: Decimal = ZERO
    total_cgst: Decimal = ZERO
    grand_total: Decimal


def _check_percent(value: Decimal, label: str) -> Decimal:
    v = Decimal(value or 0)
    if v < 0 or v > HUNDRED:
        raise ValidationError(f"{label} must be between 0 and 100")
    return v


def billable_items(cart: Iterable[CartItem]) -> List[CartItem]:
    """Lines that take part in checkout; zero-quantity lines only live in cart state."""
    out = []
    for item in cart:
        if item.quantity < 0:
            raise ValidationError(f"{item.product_name or item.product_id}: quantity cannot be negative")
        if item.quantity > 0:
            out.append(item)
    return out


def compute_bill_summary(
    cart: Iterable[CartItem],
    discount_percent: Decimal = ZERO,
    is_rghs: bool = False,
    applied_voucher: Optional[Voucher] = None,
) -> BillSummary:
    """
    Invoice totals for a cart of per-unit priced lines.

    The invoice-level discount and voucher are spread over the lines pro rata
    to their gross value before each line's own GST rate is applied, so lines
    taxed at different rates each carry their fair share of the reduction.
    RGHS sales are GST-exempt: the whole bill is taxable value only.
    """
    items = list(cart)
    discount_percent = _check_percent(discount_percent, "discount")

    sub_total = sum((Decimal(i.price) * i.quantity for i in items), ZERO)
    discount_amount = sub_total * discount_percent / HUNDRED
    after_discount = sub_total - discount_amount

    voucher_discount = ZERO
    if applied_voucher is not None and applied_voucher.status == "active" and applied_voucher.balance > 0:
        voucher_discount = min(after_discount, applied_voucher.balance)
    after_discount -= voucher_discount

    if is_rghs:
        return BillSummary(
            sub_total=sub_total,
            discount_amount=discount_amount,
            voucher_discount=voucher_discount,
            taxable_value=after_discount,
            grand_total=after_discount,
        )

    breakdown: Dict[Decimal, TaxBand] = {}
    total_sgst = ZERO
    total_cgst = ZERO
    for item in items:
        if item.quantity == 0:
            continue
        gross = Decimal(item.price) * item.quantity
        share = (gross / sub_total) * after_discount if sub_total > 0 else ZERO
        sgst, cgst = split_tax(share, item.tax)
        band = breakdown.setdefault(Decimal(item.tax), TaxBand())
        band.sgst += sgst
        band.cgst += cgst
        total_sgst += sgst
        total_cgst += cgst

    return BillSummary(
        sub_total=sub_total,
        discount_amount=discount_amount,
        voucher_discount=voucher_discount,
        taxable_value=after_discount,
        tax_breakdown=breakdown,
        total_sgst=total_sgst,
        total_cgst=total_cgst,
        grand_total=after_discount + total_sgst + total_cgst,
    )


class PurchaseLine(BaseModel):
    hsn_code: str = ""
    quantity: int
    rate: Decimal
    discount: Decimal = ZERO


class PurchaseLineAmount(BaseModel):
    base_amount: Decimal
    discount_amount: Decimal
    amount: Decimal
    gst_rate: Decimal
    sgst: Decimal
    cgst: Decimal


class PurchaseSummary(BaseModel):
    lines: List[PurchaseLineAmount]
    subtotal: Decimal
    total_sgst: Decimal
    total_cgst: Decimal
    total: Decimal


def compute_purchase_summary(lines: Iterable[PurchaseLine], settings: GstSettings) -> PurchaseSummary:
    out: List[PurchaseLineAmount] = []
    subtotal = ZERO
    total_sgst = ZERO
    total_cgst = ZERO
    for line in lines:
        if line.quantity < 0 or line.rate < 0:
            raise ValidationError("purchase quantity and rate cannot be negative")
        disc = _check_percent(line.discount, "purchase discount")
        base = Decimal(line.rate) * line.quantity
        disc_amount = base * disc / HUNDRED
        amount = base - disc_amount
        rate = gst_rate(line.hsn_code, settings)
        sgst, cgst = split_tax(amount, rate)
        out.append(
            PurchaseLineAmount(
                base_amount=base,
                discount_amount=disc_amount,
                amount=amount,
                gst_rate=rate,
                sgst=sgst,
                cgst=cgst,
            )
        )
        subtotal += amount
        total_sgst += sgst
        total_cgst += cgst
    return PurchaseSummary(
        lines=out,
        subtotal=subtotal,
        total_sgst=total_sgst,
        total_cgst=total_cgst,
        total=subtotal + total_sgst + total_cgst,
    )


class ReturnRequestLine(BaseModel):
    batch_id: str
    product_id: Optional[str] = None
    quantity: int


def check_original_references(
    items: Iterable[object],
    products: Dict[str, Product],
) -> None:
    """Every product and batch on the original document must still exist."""
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise IntegrityError(
                f'product "{item.product_name or item.product_id}" from the original invoice no longer exists'
            )
        if product.batch(item.batch_id) is None:
            raise IntegrityError(f'a batch for "{item.product_name or item.product_id}" from the original invoice is missing')


def _match_line(lines: List, req: ReturnRequestLine):
    for line in lines:
        if line.batch_id == req.batch_id and (req.product_id is None or line.product_id == req.product_id):
            return line
    return None


def _returnable_quantities(lines: List, already_returned: Iterable[ReturnItem]) -> Dict[tuple, int]:
    remaining: Dict[tuple, int] = {}
    for line in lines:
        key = (line.product_id, line.batch_id)
        remaining[key] = remaining.get(key, 0) + line.quantity
    for r in already_returned:
        key = (r.product_id, r.batch_id)
        if key in remaining:
            remaining[key] -= r.quantity
    return remaining


def _build_return_items(
    lines: List,
    requested: Iterable[ReturnRequestLine],
    already_returned: Iterable[ReturnItem],
) -> List[ReturnItem]:
    remaining = _returnable_quantities(lines, already_returned)
    out: List[ReturnItem] = []
    for req in requested:
        if req.quantity < 0:
            raise ValidationError("return quantity cannot be negative")
        if req.quantity == 0:
            continue
        line = _match_line(lines, req)
        if line is None:
            raise ValidationError(f"batch {req.batch_id} is not on the original invoice")
        key = (line.product_id, line.batch_id)
        if req.quantity > remaining.get(key, 0):
            raise ValidationError(
                f"{line.product_name or line.product_id}: cannot return {req.quantity}, only {max(remaining.get(key, 0), 0)} returnable"
            )
        remaining[key] -= req.quantity
        price = Decimal(line.price)
        out.append(
            ReturnItem(
                product_id=line.product_id,
                product_name=line.product_name,
                batch_id=line.batch_id,
                quantity=req.quantity,
                price=price,
                discount=ZERO,
                amount=price * req.quantity,
            )
        )
    if not out:
        raise ValidationError("nothing to return")
    return out


def customer_return_items(
    transaction: Transaction,
    requested: Iterable[ReturnRequestLine],
    already_returned: Iterable[ReturnItem] = (),
) -> List[ReturnItem]:
    """Refund lines priced at the original per-unit sale price."""
    return _build_return_items(list(transaction.items), requested, already_returned)


def supplier_return_items(
    purchase: Purchase,
    requested: Iterable[ReturnRequestLine],
    already_returned: Iterable[ReturnItem] = (),
) -> List[ReturnItem]:
    """Return lines priced at the purchase rate."""
    return _build_return_items(list(purchase.items), requested, already_returned)


def return_total(items: Iterable[ReturnItem]) -> Decimal:
    return sum((i.amount for i in items), ZERO)
