from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from ..config import settings
from ..db import get_conn
from .. import store
from ..batches import check_prescription, clamp_quantity, ensure_available, flat_quantity, require_fifo_batch, cart_line_for
from ..billing import billable_items, compute_bill_summary
from ..errors import IntegrityError, ValidationError
from ..journal import make_entry, sale_entry
from ..journal_utils import q_inr
from ..logs import json_log
from ..models import CartItem, GstSettings, Product, Transaction, new_id, utcnow
from ..stock import apply_stock_delta, stock_deltas_for_sale
from ..validation import DocStatus, PaymentMethod
from ..vouchers import expire_voucher, is_applicable, redeem_voucher

router = APIRouter(prefix="/sales", tags=["sales"])


class CartLineIn(BaseModel):
    product_id: str
    # Omitted => first-expiry-first-out batch.
    batch_id: Optional[str] = None
    quantity: Optional[int] = None
    strips: int = 0
    units: int = 0


class CheckoutIn(BaseModel):
    items: List[CartLineIn]
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    contact_number: Optional[str] = None
    doctor_name: Optional[str] = None
    doctor_reg_no: Optional[str] = None
    is_rghs: bool = False
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    status: DocStatus = "paid"
    payment_method: Optional[PaymentMethod] = "cash"
    voucher_id: Optional[str] = None
    attached_prescriptions: Dict[str, str] = Field(default_factory=dict)


def _price_lines(lines: List[CartLineIn], products: Dict[str, Product], gst: GstSettings) -> List[CartItem]:
    """
    Re-price cart lines from the stored batches. Client-side prices are never trusted.
    Raises InsufficientStockError before any mutation when a batch cannot cover its lines.
    """
    out: List[CartItem] = []
    wanted: Dict[tuple, int] = {}
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise IntegrityError(f"product {line.product_id} not found")
        if line.batch_id:
            batch = product.batch(line.batch_id)
            if batch is None:
                raise IntegrityError(f"batch {line.batch_id} not found on product {product.name}")
        else:
            batch = require_fifo_batch(product)
        qty = line.quantity if line.quantity is not None else flat_quantity(product.pack, line.strips, line.units)
        if qty < 0:
            raise ValidationError("quantity cannot be negative")
        key = (product.id, batch.id)
        wanted[key] = wanted.get(key, 0) + qty
        ensure_available(product, batch, wanted[key])
        out.append(cart_line_for(product, batch, qty, gst))
    return out


def _quote(cur, data: CheckoutIn, *, lock: bool):
    gst = store.get_gst_settings(cur)
    products = store.load_products(cur, [l.product_id for l in data.items], lock=lock)
    lines = billable_items(_price_lines(data.items, products, gst))
    if not lines:
        raise ValidationError("cart is empty")
    check_prescription([products[l.product_id] for l in lines], data.doctor_name)

    voucher = None
    if data.voucher_id:
        voucher = store.get_voucher(cur, data.voucher_id, lock=lock)
        if voucher is None:
            raise HTTPException(status_code=404, detail="voucher not found")
        voucher = expire_voucher(voucher, utcnow().date(), settings.voucher_validity_days)
        if voucher.status == "expired":
            raise ValidationError(f"voucher {voucher.id} has expired")
        if not is_applicable(voucher, data.customer_name):
            raise ValidationError(f"voucher {voucher.id} cannot be applied to this customer")
    summary = compute_bill_summary(lines, data.discount_percent, data.is_rghs, voucher)
    return products, lines, voucher, summary


@router.post("/quote")
def quote_sale(data: CheckoutIn):
    """Price a cart without committing anything."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            _products, lines, _voucher, summary = _quote(cur, data, lock=False)
            return {"items": lines, "summary": summary}


@router.post("/checkout")
def checkout(data: CheckoutIn):
    """
    Commit a sale atomically:
    - re-price lines and lock the batches being sold
    - decrement stock, store the invoice
    - post the balanced sale journal
    - redeem the applied voucher
    Any failure rolls everything back.
    """
    if data.status == "credit" and not (data.customer_id or (data.customer_name or "").strip()):
        raise ValidationError("credit sale requires a customer")

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                products, lines, voucher, summary = _quote(cur, data, lock=True)

                customer = None
                if data.customer_id:
                    customer = store.get_party(cur, "customers", data.customer_id)
                    if customer is None:
                        raise IntegrityError(f"customer {data.customer_id} not found")
                elif (data.customer_name or "").strip():
                    customer = store.find_or_create_customer(cur, data.customer_name, data.contact_number)

                tx = Transaction(
                    id=new_id("INV"),
                    customer_id=customer["id"] if customer else None,
                    customer_name=customer["name"] if customer else "Walk-in Customer",
                    doctor_name=data.doctor_name,
                    doctor_reg_no=data.doctor_reg_no,
                    is_rghs=data.is_rghs,
                    items=lines,
                    total=q_inr(summary.grand_total),
                    date=utcnow(),
                    discount_percentage=data.discount_percent,
                    status=data.status,
                    payment_method=data.payment_method if data.status == "paid" else None,
                    voucher_id=voucher.id if voucher and summary.voucher_discount > 0 else None,
                    attached_prescriptions=data.attached_prescriptions,
                )

                new_products = apply_stock_delta(products.values(), stock_deltas_for_sale(lines))
                draft = sale_entry(tx, summary)

                store.insert_transaction(cur, tx)
                store.write_stock(cur, products, new_products)
                entry = None
                # A fully discounted bill moves no money.
                if draft.transactions:
                    entry = make_entry(draft)
                    store.insert_journal_entry(cur, entry)
                if voucher is not None and summary.voucher_discount > 0:
                    store.update_voucher(cur, redeem_voucher(voucher, q_inr(summary.voucher_discount)))
                store.write_audit(
                    cur,
                    "sale_completed",
                    "transaction",
                    tx.id,
                    {
                        "total": str(tx.total),
                        "status": tx.status,
                        "items": len(lines),
                        "journal_id": entry.id if entry else None,
                    },
                )

    json_log("info", "sale.committed", transaction_id=tx.id, total=tx.total, status=tx.status, items=len(lines))
    if entry:
        json_log("info", "journal.posted", journal_id=entry.id, reference_type="Sale", reference_id=tx.id)
    return {"transaction": tx, "summary": summary, "journal_id": entry.id if entry else None}


@router.post("/cart/quantity")
def clamp_cart_quantity(product_id: str, batch_id: str, quantity: int):
    """Clamp an edited cart quantity to the batch stock (no error above stock, just a message)."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            product = store.get_product(cur, product_id)
            if product is None:
                raise HTTPException(status_code=404, detail="product not found")
            batch = product.batch(batch_id)
            if batch is None:
                raise HTTPException(status_code=404, detail="batch not found")
            qty, message = clamp_quantity(batch, quantity)
            return {"quantity": qty, "message": message}


@router.get("/transactions")
def list_transactions(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[DocStatus] = None,
    customer_id: Optional[str] = None,
    limit: int = 100,
):
    limit = max(1, min(limit, 1000))
    with get_conn() as conn:
        with conn.cursor() as cur:
            rows = store.list_transactions(cur, start=start, end=end, status=status, customer_id=customer_id, limit=limit)
            return {"transactions": rows}


@router.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            tx = store.get_transaction(cur, transaction_id)
            if tx is None:
                raise HTTPException(status_code=404, detail="transaction not found")
            return {"transaction": tx}
