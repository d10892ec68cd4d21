from __future__ import annotations

import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel

from .errors import InsufficientStockError, ValidationError
from .journal_utils import q_unit
from .models import Batch, CartItem, GstSettings, Product
from .tax import gst_rate

# "10 tabs", "1 cap", "15 Tablets", "10capsules"; anything else (bottles, tubes, ml) is a 1-unit pack.
_PACK_RE = re.compile(r"(\d+)\s*(tablet|tab|capsule|cap)s?", re.IGNORECASE)

STOCK_CLAMP_MESSAGE = "cannot exceed available stock"

# Reorder level for products that do not set min_stock.
DEFAULT_MIN_STOCK = 20


def units_per_pack(pack: str | None) -> int:
    m = _PACK_RE.search(pack or "")
    if not m:
        return 1
    n = int(m.group(1))
    # "0 tabs" is a data-entry slip; never divide by zero downstream.
    return n if n > 0 else 1


def select_fifo_batch(product: Product) -> Optional[Batch]:
    """
    First-expiry-first-out: the in-stock batch that expires soonest, or None.

    Ties on expiry keep the stored batch order.
    """
    available = [b for b in product.batches if b.stock > 0]
    if not available:
        return None
    return sorted(available, key=lambda b: b.expiry_date)[0]


def require_fifo_batch(product: Product) -> Batch:
    batch = select_fifo_batch(product)
    if batch is None:
        raise InsufficientStockError(f"{product.name}: out of stock")
    return batch


def flat_quantity(pack: str | None, strips: int = 0, units: int = 0) -> int:
    """Convert strips + loose units into a flat unit count."""
    if strips < 0 or units < 0:
        raise ValidationError("quantity cannot be negative")
    return strips * units_per_pack(pack) + units


def clamp_quantity(batch: Batch, requested: int) -> tuple[int, Optional[str]]:
    if requested < 0:
        raise ValidationError("quantity cannot be negative")
    if requested > batch.stock:
        return batch.stock, STOCK_CLAMP_MESSAGE
    return requested, None


def ensure_available(product: Product, batch: Batch, quantity: int) -> None:
    if quantity > batch.stock:
        raise InsufficientStockError(
            f"{product.name} (batch {batch.batch_number or batch.id}): only {batch.stock} in stock, {quantity} requested"
        )


def unit_price(product: Product, batch: Batch) -> Decimal:
    """Per-unit selling price: MRP spread over the pack, less any batch sale discount."""
    price = Decimal(batch.mrp) / Decimal(units_per_pack(product.pack))
    if batch.sale_discount is not None and batch.sale_discount > 0:
        price = price * (Decimal(1) - Decimal(batch.sale_discount) / Decimal(100))
    return price


def cart_line_for(product: Product, batch: Batch, quantity: int, settings: GstSettings) -> CartItem:
    if quantity < 0:
        raise ValidationError("quantity cannot be negative")
    return CartItem(
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        price=q_unit(unit_price(product, batch)),
        tax=gst_rate(product.hsn_code, settings),
        batch_id=batch.id,
    )


def requires_prescription(product: Product) -> bool:
    return product.schedule != "none"


def check_prescription(products: Iterable[Product], doctor_name: str | None) -> None:
    if (doctor_name or "").strip():
        return
    for p in products:
        if requires_prescription(p):
            raise ValidationError(f"prescription required for scheduled medicine: {p.name}")


# --- Shelf alerts ---------------------------------------------------------


class ExpiringBatch(BaseModel):
    product_id: str
    product_name: str
    batch_id: str
    batch_number: str = ""
    expiry_date: date
    stock: int
    # Negative once the batch has expired.
    days_left: int


class LowStockItem(BaseModel):
    product_id: str
    product_name: str
    total_stock: int
    min_stock: int


def expiry_window(within: Union[int, str]) -> Union[int, str]:
    """Normalize an alert window: the literal "expired" or a positive number of days."""
    if isinstance(within, str):
        raw = within.strip().lower()
        if raw == "expired":
            return raw
        try:
            within = int(raw)
        except ValueError:
            raise ValidationError(f"expiry window must be 'expired' or a number of days, got {within!r}") from None
    if within <= 0:
        raise ValidationError("expiry window must be a positive number of days")
    return within


def expiring_batches(products: Iterable[Product], within: Union[int, str], today: date) -> List[ExpiringBatch]:
    """
    Batches still on the shelf that have expired (`within="expired"`) or expire
    between today and today + `within` days inclusive, soonest first.
    """
    window = expiry_window(within)
    out: List[ExpiringBatch] = []
    for p in products:
        for b in p.batches:
            if b.stock <= 0:
                continue
            if window == "expired":
                hit = b.expiry_date < today
            else:
                hit = today <= b.expiry_date <= today + timedelta(days=window)
            if hit:
                out.append(
                    ExpiringBatch(
                        product_id=p.id,
                        product_name=p.name,
                        batch_id=b.id,
                        batch_number=b.batch_number,
                        expiry_date=b.expiry_date,
                        stock=b.stock,
                        days_left=(b.expiry_date - today).days,
                    )
                )
    out.sort(key=lambda r: (r.expiry_date, r.product_name))
    return out


def total_stock(product: Product) -> int:
    return sum(b.stock for b in product.batches)


def low_stock(products: Iterable[Product], default_min: int = DEFAULT_MIN_STOCK) -> List[LowStockItem]:
    """Products whose stock across all batches is under their reorder level, emptiest first."""
    out = []
    for p in products:
        level = p.min_stock if p.min_stock is not None else default_min
        have = total_stock(p)
        if have < level:
            out.append(LowStockItem(product_id=p.id, product_name=p.name, total_stock=have, min_stock=level))
    out.sort(key=lambda r: (r.total_stock, r.product_name))
    return out
