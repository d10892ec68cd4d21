from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal
import uuid

from ..db import get_conn
from .. import store
from ..billing import PurchaseLine, compute_purchase_summary
from ..errors import IntegrityError, ValidationError
from ..journal import make_entry, purchase_entry
from ..journal_utils import q_inr
from ..logs import json_log
from ..models import Batch, Product, Purchase, PurchaseItem, StockDelta, new_id, utcnow
from ..stock import apply_stock_delta
from ..validation import DocStatus, HsnCode, PaymentMethod, Schedule

router = APIRouter(prefix="/purchases", tags=["purchases"])


class PurchaseLineIn(BaseModel):
    # Existing product, or the fields for a new one.
    product_id: Optional[str] = None
    name: Optional[str] = None
    hsn_code: HsnCode = ""
    pack: str = ""
    manufacturer: str = ""
    salts: Optional[str] = None
    schedule: Schedule = "none"
    category: Optional[str] = None
    min_stock: Optional[int] = None

    batch_number: str = ""
    expiry_date: date
    quantity: int = Field(..., gt=0)
    mrp: Decimal = Field(..., ge=0)
    rate: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)
    sale_discount: Optional[Decimal] = Field(None, ge=0, le=100)


class PurchaseIn(BaseModel):
    supplier_id: Optional[str] = None
    invoice_number: Optional[str] = None
    status: DocStatus = "paid"
    payment_method: Optional[PaymentMethod] = "cash"
    notes: Optional[str] = None
    source_file_id: Optional[str] = None
    items: List[PurchaseLineIn]


class PurchaseQuoteLineIn(BaseModel):
    hsn_code: HsnCode = ""
    quantity: int = Field(..., ge=0)
    rate: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)


class PurchaseQuoteIn(BaseModel):
    items: List[PurchaseQuoteLineIn]


@router.post("/quote")
def quote_purchase(data: PurchaseQuoteIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            gst = store.get_gst_settings(cur)
    lines = [PurchaseLine(hsn_code=l.hsn_code, quantity=l.quantity, rate=l.rate, discount=l.discount) for l in data.items]
    return {"summary": compute_purchase_summary(lines, gst)}


def _resolve_products(cur, items: List[PurchaseLineIn]) -> tuple[Dict[str, Product], List[Product], List[str]]:
    """
    Map every line to a product: the given id, an existing product with the same
    name, or a new product. Returns (existing, created, product_id per line).
    """
    existing_ids = {l.product_id for l in items if l.product_id}
    existing = store.load_products(cur, existing_ids, lock=True)
    missing = existing_ids - set(existing)
    if missing:
        raise IntegrityError(f"product {sorted(missing)[0]} not found")

    created: Dict[str, Product] = {}
    line_pids: List[str] = []
    for line in items:
        if line.product_id:
            line_pids.append(line.product_id)
            continue
        name = (line.name or "").strip()
        if not name:
            raise ValidationError("new product requires a name")
        new_key = name.lower()
        found = next((p for p in created.values() if p.name.lower() == new_key), None)
        if found is None:
            pid = store.find_product_by_name(cur, name)
            if pid:
                if pid not in existing:
                    existing.update(store.load_products(cur, [pid], lock=True))
                line_pids.append(pid)
                continue
            found = Product(
                id=str(uuid.uuid4()),
                hsn_code=line.hsn_code,
                name=name,
                pack=line.pack,
                manufacturer=line.manufacturer,
                salts=line.salts,
                schedule=line.schedule,
                category=line.category,
                min_stock=line.min_stock,
            )
            created[found.id] = found
        line_pids.append(found.id)
    return existing, list(created.values()), line_pids


@router.post("")
def record_purchase(data: PurchaseIn):
    """
    Stock intake: each line becomes a new batch (on an existing or new product),
    stock rises through the stock mutator and the purchase journal is posted.
    """
    if not data.supplier_id:
        raise ValidationError("please select a supplier")
    if not data.items:
        raise ValidationError("purchase has no items")

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                supplier = store.get_party(cur, "suppliers", data.supplier_id)
                if supplier is None:
                    raise IntegrityError(f"supplier {data.supplier_id} not found")
                gst = store.get_gst_settings(cur)

                existing, created, line_pids = _resolve_products(cur, data.items)
                catalog: Dict[str, Product] = {**existing, **{p.id: p for p in created}}

                # New batches land with zero stock; the intake delta brings them up.
                deltas: List[StockDelta] = []
                new_batches: List[tuple[str, Batch]] = []
                summary_lines: List[PurchaseLine] = []
                for line, pid in zip(data.items, line_pids):
                    batch = Batch(
                        id=new_id("BATCH"),
                        batch_number=line.batch_number,
                        expiry_date=line.expiry_date,
                        stock=0,
                        mrp=line.mrp,
                        price=line.rate,
                        discount=line.discount,
                        sale_discount=line.sale_discount,
                    )
                    product = catalog[pid]
                    catalog[pid] = product.model_copy(update={"batches": [*product.batches, batch]})
                    new_batches.append((pid, batch))
                    deltas.append(StockDelta(product_id=pid, batch_id=batch.id, delta=line.quantity))
                    summary_lines.append(
                        PurchaseLine(hsn_code=catalog[pid].hsn_code, quantity=line.quantity, rate=line.rate, discount=line.discount)
                    )

                summary = compute_purchase_summary(summary_lines, gst)
                after = apply_stock_delta(catalog.values(), deltas)

                purchase = Purchase(
                    id=new_id("PUR"),
                    supplier_id=data.supplier_id,
                    invoice_number=data.invoice_number,
                    items=[
                        PurchaseItem(
                            product_id=pid,
                            product_name=catalog[pid].name,
                            batch_id=batch.id,
                            quantity=line.quantity,
                            price=line.rate,
                            amount=q_inr(amt.amount),
                        )
                        for line, (pid, batch), amt in zip(data.items, new_batches, summary.lines)
                    ],
                    total=q_inr(summary.total),
                    date=utcnow(),
                    status=data.status,
                    payment_method=data.payment_method if data.status == "paid" else None,
                    notes=data.notes,
                    source_file_id=data.source_file_id,
                )
                entry = make_entry(purchase_entry(purchase, summary, supplier_name=supplier["name"]))

                for p in created:
                    store.insert_product(cur, p)
                    store.write_audit(cur, "product_created", "product", p.id, {"name": p.name, "source": "purchase"})
                for pid, batch in new_batches:
                    store.insert_batch(cur, pid, batch)
                store.write_stock(cur, catalog, after)
                store.insert_purchase(cur, purchase)
                store.insert_journal_entry(cur, entry)
                store.write_audit(
                    cur,
                    "purchase_recorded",
                    "purchase",
                    purchase.id,
                    {"supplier_id": purchase.supplier_id, "total": str(purchase.total), "status": purchase.status, "journal_id": entry.id},
                )

    json_log("info", "purchase.committed", purchase_id=purchase.id, supplier_id=purchase.supplier_id, total=purchase.total)
    json_log("info", "journal.posted", journal_id=entry.id, reference_type="Purchase", reference_id=purchase.id)
    return {"purchase": purchase, "summary": summary, "journal_id": entry.id}


@router.get("")
def list_purchases(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[DocStatus] = None,
    supplier_id: Optional[str] = None,
    limit: int = 100,
):
    limit = max(1, min(limit, 1000))
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"purchases": store.list_purchases(cur, start=start, end=end, status=status, supplier_id=supplier_id, limit=limit)}


@router.get("/{purchase_id}")
def get_purchase(purchase_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            purchase = store.get_purchase(cur, purchase_id)
            if purchase is None:
                raise HTTPException(status_code=404, detail="purchase not found")
            return {"purchase": purchase}
