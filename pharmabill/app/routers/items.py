from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date
from decimal import Decimal
import uuid

from ..db import get_conn
from .. import store
from ..batches import (
    cart_line_for,
    clamp_quantity,
    expiring_batches,
    flat_quantity,
    low_stock,
    select_fifo_batch,
    units_per_pack,
)
from ..logs import json_log
from ..models import Batch, Product, new_id, utcnow
from ..validation import HsnCode, Schedule

router = APIRouter(prefix="/items", tags=["items"])


class BatchIn(BaseModel):
    batch_number: str = ""
    expiry_date: date
    stock: int = Field(0, ge=0)
    mrp: Decimal = Field(..., ge=0)
    price: Decimal = Field(Decimal("0"), ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)
    sale_discount: Optional[Decimal] = Field(None, ge=0, le=100)


class ProductIn(BaseModel):
    hsn_code: HsnCode = ""
    name: str
    pack: str = ""
    manufacturer: str = ""
    salts: Optional[str] = None
    schedule: Schedule = "none"
    category: Optional[str] = None
    min_stock: Optional[int] = Field(None, ge=0)
    batches: List[BatchIn] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    hsn_code: Optional[HsnCode] = None
    name: Optional[str] = None
    pack: Optional[str] = None
    manufacturer: Optional[str] = None
    salts: Optional[str] = None
    schedule: Optional[Schedule] = None
    category: Optional[str] = None
    min_stock: Optional[int] = Field(None, ge=0)


class CartLineQuery(BaseModel):
    batch_id: Optional[str] = None
    quantity: Optional[int] = None
    strips: int = 0
    units: int = 0


@router.get("")
def list_items(q: str = "", in_stock: bool = False, limit: int = 50):
    limit = max(1, min(limit, 500))
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"items": store.search_products(cur, q, in_stock=in_stock, limit=limit)}


@router.get("/alerts/expiring")
def list_expiring_batches(within: str = "30"):
    """In-stock batches that expired (`within=expired`) or expire within N days, soonest first."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            products = store.search_products(cur, limit=None)
    rows = expiring_batches(products, within, utcnow().date())
    return {"batches": rows, "count": len(rows)}


@router.get("/alerts/low-stock")
def list_low_stock():
    with get_conn() as conn:
        with conn.cursor() as cur:
            products = store.search_products(cur, limit=None)
    rows = low_stock(products)
    return {"items": rows, "count": len(rows)}


@router.get("/{product_id}")
def get_item(product_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            product = store.get_product(cur, product_id)
            if product is None:
                raise HTTPException(status_code=404, detail="product not found")
            return {"item": product, "units_per_pack": units_per_pack(product.pack)}


@router.post("")
def create_item(data: ProductIn):
    """Direct catalog entry (e.g. bulk upload). Stock intake normally goes through /purchases."""
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    product = Product(
        id=str(uuid.uuid4()),
        hsn_code=data.hsn_code,
        name=name,
        pack=data.pack,
        manufacturer=data.manufacturer,
        salts=data.salts,
        schedule=data.schedule,
        category=data.category,
        min_stock=data.min_stock,
        batches=[Batch(id=new_id("BATCH"), **b.model_dump()) for b in data.batches],
    )
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                store.insert_product(cur, product)
                store.write_audit(cur, "product_created", "product", product.id, {"name": product.name, "batches": len(product.batches)})
    json_log("info", "product.created", product_id=product.id)
    return {"item": product}


@router.patch("/{product_id}")
def update_item(product_id: str, data: ProductUpdate):
    patch = data.model_dump(exclude_unset=True)
    if "name" in patch:
        patch["name"] = (patch["name"] or "").strip()
        if not patch["name"]:
            raise HTTPException(status_code=400, detail="name cannot be empty")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if not store.update_product(cur, product_id, patch):
                    raise HTTPException(status_code=404, detail="product not found")
                store.write_audit(cur, "product_updated", "product", product_id, {"fields": sorted(patch.keys())})
                product = store.get_product(cur, product_id)
    return {"item": product}


@router.get("/{product_id}/fifo-batch")
def get_fifo_batch(product_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            product = store.get_product(cur, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="product not found")
    batch = select_fifo_batch(product)
    if batch is None:
        raise HTTPException(status_code=409, detail=f"{product.name}: out of stock")
    return {"batch": batch}


@router.post("/{product_id}/cart-line")
def build_cart_line(product_id: str, data: CartLineQuery):
    """Preview a cart line: chosen (or FIFO) batch, clamped quantity and per-unit price."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            product = store.get_product(cur, product_id)
            gst = store.get_gst_settings(cur)
    if product is None:
        raise HTTPException(status_code=404, detail="product not found")
    batch = product.batch(data.batch_id) if data.batch_id else select_fifo_batch(product)
    if batch is None:
        raise HTTPException(status_code=409, detail=f"{product.name}: no batch with stock")
    requested = data.quantity if data.quantity is not None else flat_quantity(product.pack, data.strips, data.units)
    qty, message = clamp_quantity(batch, requested)
    return {"line": cart_line_for(product, batch, qty, gst), "message": message}
