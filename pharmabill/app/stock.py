from __future__ import annotations

from typing import Dict, Iterable, List

from .errors import IntegrityError
from .models import Product, StockDelta


def apply_stock_delta(products: Iterable[Product], deltas: Iterable[StockDelta]) -> List[Product]:
    """
    Apply signed batch stock deltas as one unit and return the new product list.

    Every delta is validated against the running result before anything is
    returned, so a bad delta anywhere rejects the whole set. The input products
    are never modified.
    """
    products = list(products)
    index: Dict[str, int] = {p.id: i for i, p in enumerate(products)}

    # (product_id, batch_id) -> resulting stock
    pending: Dict[tuple[str, str], int] = {}
    for d in deltas:
        i = index.get(d.product_id)
        if i is None:
            raise IntegrityError(f"product {d.product_id} not found")
        batch = products[i].batch(d.batch_id)
        if batch is None:
            raise IntegrityError(f"batch {d.batch_id} not found on product {products[i].name}")
        key = (d.product_id, d.batch_id)
        new_stock = pending.get(key, batch.stock) + d.delta
        if new_stock < 0:
            raise IntegrityError(
                f"{products[i].name} (batch {batch.batch_number or batch.id}): stock would go negative ({new_stock})"
            )
        pending[key] = new_stock

    out = list(products)
    touched = {pid for pid, _ in pending}
    for pid in touched:
        i = index[pid]
        p = products[i]
        batches = [
            b.model_copy(update={"stock": pending[(pid, b.id)]}) if (pid, b.id) in pending else b
            for b in p.batches
        ]
        out[i] = p.model_copy(update={"batches": batches})
    return out


def stock_deltas_for_sale(items) -> List[StockDelta]:
    return [StockDelta(product_id=i.product_id, batch_id=i.batch_id, delta=-i.quantity) for i in items if i.quantity]


def stock_deltas_for_restock(items) -> List[StockDelta]:
    return [StockDelta(product_id=i.product_id, batch_id=i.batch_id, delta=i.quantity) for i in items if i.quantity]
