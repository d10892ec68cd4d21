"""
Cursor-level persistence helpers.

Every function takes an open psycopg cursor (dict_row) and never commits;
the caller's `with get_conn()` / `conn.transaction()` block owns atomicity.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .config import settings
from .journal_utils import q_inr, q_unit
from .models import (
    Batch,
    CreditNote,
    CustomerReturn,
    GstSettings,
    JournalEntry,
    JournalTransaction,
    Product,
    Purchase,
    PurchaseItem,
    ReturnItem,
    SupplierReturn,
    Transaction,
    TransactionItem,
    Voucher,
)

PRODUCT_COLUMNS = "id, hsn_code, name, pack, manufacturer, salts, schedule, category, min_stock"
BATCH_COLUMNS = "id, product_id, batch_number, expiry_date, stock, mrp, price, discount, sale_discount"


# --- GST settings ------------------------------------------------------------


def get_gst_settings(cur) -> GstSettings:
    cur.execute("SELECT subsidized, general, food FROM gst_settings WHERE id = 1")
    row = cur.fetchone()
    if not row:
        return GstSettings(
            subsidized=settings.gst_subsidized,
            general=settings.gst_general,
            food=settings.gst_food,
        )
    return GstSettings(**row)


def save_gst_settings(cur, gst: GstSettings) -> None:
    cur.execute(
        """
        INSERT INTO gst_settings (id, subsidized, general, food, updated_at)
        VALUES (1, %s, %s, %s, now())
        ON CONFLICT (id) DO UPDATE
          SET subsidized = EXCLUDED.subsidized,
              general = EXCLUDED.general,
              food = EXCLUDED.food,
              updated_at = now()
        """,
        (gst.subsidized, gst.general, gst.food),
    )


# --- Products / batches ------------------------------------------------------


def _assemble_products(product_rows: List[dict], batch_rows: List[dict]) -> Dict[str, Product]:
    by_product: Dict[str, List[Batch]] = {}
    for b in batch_rows:
        pid = b["product_id"]
        by_product.setdefault(pid, []).append(Batch(**{k: v for k, v in b.items() if k != "product_id"}))
    out: Dict[str, Product] = {}
    for r in product_rows:
        out[r["id"]] = Product(**r, batches=by_product.get(r["id"], []))
    return out


def load_products(cur, product_ids: Iterable[str], *, lock: bool = False) -> Dict[str, Product]:
    """
    Load products with all their batches. With `lock`, the batch rows are
    locked FOR UPDATE so concurrent checkouts on the same stock serialize.
    """
    ids = sorted({str(i) for i in product_ids if i})
    if not ids:
        return {}
    cur.execute(
        f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = ANY(%s::text[])",
        (ids,),
    )
    product_rows = cur.fetchall()
    cur.execute(
        f"""
        SELECT {BATCH_COLUMNS}
        FROM batches
        WHERE product_id = ANY(%s::text[])
        ORDER BY product_id, created_at, id
        {"FOR UPDATE" if lock else ""}
        """,
        (ids,),
    )
    return _assemble_products(product_rows, cur.fetchall())


def get_product(cur, product_id: str) -> Optional[Product]:
    return load_products(cur, [product_id]).get(product_id)


def search_products(cur, q: str = "", *, in_stock: bool = False, limit: Optional[int] = 50) -> List[Product]:
    """Catalog search by name, manufacturer or salt. `limit=None` returns the whole catalog."""
    where = ["TRUE"]
    params: list = []
    needle = (q or "").strip().lower()
    if needle:
        where.append("(lower(p.name) LIKE %s OR lower(p.manufacturer) LIKE %s OR lower(COALESCE(p.salts, '')) LIKE %s)")
        like = f"%{needle}%"
        params.extend([like, like, like])
    if in_stock:
        where.append("EXISTS (SELECT 1 FROM batches b WHERE b.product_id = p.id AND b.stock > 0)")
    limit_sql = ""
    if limit is not None:
        limit_sql = "LIMIT %s"
        params.append(limit)
    cur.execute(
        f"""
        SELECT {", ".join("p." + c.strip() for c in PRODUCT_COLUMNS.split(","))}
        FROM products p
        WHERE {" AND ".join(where)}
        ORDER BY p.name
        {limit_sql}
        """,
        params,
    )
    product_rows = cur.fetchall()
    if not product_rows:
        return []
    cur.execute(
        f"SELECT {BATCH_COLUMNS} FROM batches WHERE product_id = ANY(%s::text[]) ORDER BY product_id, created_at, id",
        ([r["id"] for r in product_rows],),
    )
    by_id = _assemble_products(product_rows, cur.fetchall())
    return [by_id[r["id"]] for r in product_rows]


def insert_product(cur, product: Product) -> None:
    cur.execute(
        """
        INSERT INTO products (id, hsn_code, name, pack, manufacturer, salts, schedule, category, min_stock)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            product.id,
            product.hsn_code,
            product.name,
            product.pack,
            product.manufacturer,
            product.salts,
            product.schedule,
            product.category,
            product.min_stock,
        ),
    )
    for b in product.batches:
        insert_batch(cur, product.id, b)


def update_product(cur, product_id: str, patch: dict) -> bool:
    if not patch:
        return True
    sets = []
    params: list = []
    for k, v in patch.items():
        sets.append(f"{k} = %s")
        params.append(v)
    params.append(product_id)
    cur.execute(
        f"UPDATE products SET {', '.join(sets)}, updated_at = now() WHERE id = %s RETURNING id",
        params,
    )
    return cur.fetchone() is not None


def find_product_by_name(cur, name: str) -> Optional[str]:
    cur.execute(
        "SELECT id FROM products WHERE lower(name) = lower(%s) ORDER BY created_at LIMIT 1",
        ((name or "").strip(),),
    )
    row = cur.fetchone()
    return row["id"] if row else None


def insert_batch(cur, product_id: str, batch: Batch) -> None:
    cur.execute(
        """
        INSERT INTO batches (id, product_id, batch_number, expiry_date, stock, mrp, price, discount, sale_discount)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            batch.id,
            product_id,
            batch.batch_number,
            batch.expiry_date,
            batch.stock,
            q_inr(batch.mrp),
            q_inr(batch.price),
            batch.discount,
            batch.sale_discount,
        ),
    )


def write_stock(cur, before: Dict[str, Product], after: Iterable[Product]) -> int:
    """Persist batch stock levels that changed between `before` and `after`. Returns rows written."""
    n = 0
    for p in after:
        old = before.get(p.id)
        for b in p.batches:
            prev = old.batch(b.id) if old else None
            if prev is not None and prev.stock == b.stock:
                continue
            cur.execute("UPDATE batches SET stock = %s WHERE id = %s AND product_id = %s", (b.stock, b.id, p.id))
            n += 1
    return n


# --- Parties -----------------------------------------------------------------


def search_parties(cur, table: str, q: str = "", *, limit: int = 50) -> List[dict]:
    if table not in {"customers", "suppliers"}:
        raise ValueError(f"unknown party table: {table}")
    needle = (q or "").strip().lower()
    cols = "id, name, contact" + (", gstin, address" if table == "suppliers" else "")
    if needle:
        cur.execute(
            f"""
            SELECT {cols} FROM {table}
            WHERE lower(name) LIKE %s OR COALESCE(contact, '') LIKE %s
            ORDER BY name LIMIT %s
            """,
            (f"%{needle}%", f"%{needle}%", limit),
        )
    else:
        cur.execute(f"SELECT {cols} FROM {table} ORDER BY name LIMIT %s", (limit,))
    return cur.fetchall()


def get_party(cur, table: str, party_id: str) -> Optional[dict]:
    if table not in {"customers", "suppliers"}:
        raise ValueError(f"unknown party table: {table}")
    cur.execute(f"SELECT id, name, contact FROM {table} WHERE id = %s", (party_id,))
    return cur.fetchone()


def upsert_customer(cur, customer_id: Optional[str], name: str, contact: Optional[str]) -> dict:
    if customer_id:
        cur.execute(
            """
            UPDATE customers SET name = %s, contact = %s, updated_at = now()
            WHERE id = %s
            RETURNING id, name, contact
            """,
            (name, contact, customer_id),
        )
        row = cur.fetchone()
        if row:
            return row
    cur.execute(
        "INSERT INTO customers (name, contact) VALUES (%s, %s) RETURNING id, name, contact",
        (name, contact),
    )
    return cur.fetchone()


def find_or_create_customer(cur, name: str, contact: Optional[str] = None) -> dict:
    name = (name or "").strip()
    cur.execute(
        """
        SELECT id, name, contact FROM customers
        WHERE lower(name) = lower(%s) AND (%s::text IS NULL OR contact IS NULL OR contact = %s)
        ORDER BY created_at
        LIMIT 1
        """,
        (name, contact, contact),
    )
    row = cur.fetchone()
    if row:
        return row
    return upsert_customer(cur, None, name, contact)


def upsert_supplier(cur, supplier_id: Optional[str], data: dict) -> dict:
    if supplier_id:
        cur.execute(
            """
            UPDATE suppliers SET name = %s, contact = %s, gstin = %s, address = %s, updated_at = now()
            WHERE id = %s
            RETURNING id, name, contact, gstin, address
            """,
            (data["name"], data.get("contact"), data.get("gstin"), data.get("address"), supplier_id),
        )
        row = cur.fetchone()
        if row:
            return row
    cur.execute(
        """
        INSERT INTO suppliers (name, contact, gstin, address)
        VALUES (%s, %s, %s, %s)
        RETURNING id, name, contact, gstin, address
        """,
        (data["name"], data.get("contact"), data.get("gstin"), data.get("address")),
    )
    return cur.fetchone()


# --- Sales -------------------------------------------------------------------


def insert_transaction(cur, tx: Transaction) -> None:
    cur.execute(
        """
        INSERT INTO transactions
          (id, customer_id, customer_name, doctor_name, doctor_reg_no, is_rghs, total,
           discount_percentage, status, payment_method, voucher_id, attached_prescriptions, date)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s)
        """,
        (
            tx.id,
            tx.customer_id,
            tx.customer_name,
            tx.doctor_name,
            tx.doctor_reg_no,
            tx.is_rghs,
            q_inr(tx.total),
            tx.discount_percentage,
            tx.status,
            tx.payment_method,
            tx.voucher_id,
            json.dumps(tx.attached_prescriptions),
            tx.date,
        ),
    )
    for n, item in enumerate(tx.items, start=1):
        cur.execute(
            """
            INSERT INTO transaction_items
              (transaction_id, line_no, product_id, product_name, batch_id, quantity, price, tax)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (tx.id, n, item.product_id, item.product_name, item.batch_id, item.quantity, q_unit(item.price), item.tax),
        )


def get_transaction(cur, tx_id: str, *, lock: bool = False) -> Optional[Transaction]:
    cur.execute(
        f"""
        SELECT id, customer_id, customer_name, doctor_name, doctor_reg_no, is_rghs, total,
               discount_percentage, status, payment_method, voucher_id, attached_prescriptions, date
        FROM transactions
        WHERE id = %s
        {"FOR UPDATE" if lock else ""}
        """,
        (tx_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    cur.execute(
        """
        SELECT product_id, product_name, batch_id, quantity, price, tax
        FROM transaction_items
        WHERE transaction_id = %s
        ORDER BY line_no
        """,
        (tx_id,),
    )
    items = [TransactionItem(**r) for r in cur.fetchall()]
    row = dict(row)
    row["attached_prescriptions"] = row.get("attached_prescriptions") or {}
    return Transaction(**row, items=items)


def list_transactions(
    cur,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
    customer_id: Optional[str] = None,
    limit: int = 100,
) -> List[dict]:
    where = ["TRUE"]
    params: list = []
    if start is not None:
        where.append("date >= %s")
        params.append(start)
    if end is not None:
        where.append("date < %s")
        params.append(end)
    if status:
        where.append("status = %s")
        params.append(status)
    if customer_id:
        where.append("customer_id = %s")
        params.append(customer_id)
    params.append(limit)
    cur.execute(
        f"""
        SELECT id, customer_id, customer_name, is_rghs, total, status, payment_method, date
        FROM transactions
        WHERE {" AND ".join(where)}
        ORDER BY date DESC
        LIMIT %s
        """,
        params,
    )
    return cur.fetchall()


def _period_where(start: Optional[datetime], end: Optional[datetime]) -> tuple[str, list]:
    where = ["TRUE"]
    params: list = []
    if start is not None:
        where.append("date >= %s")
        params.append(start)
    if end is not None:
        where.append("date < %s")
        params.append(end)
    return " AND ".join(where), params


def load_transactions(cur, *, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Transaction]:
    """Full invoices (with lines) dated in [start, end), oldest first."""
    where, params = _period_where(start, end)
    cur.execute(
        f"""
        SELECT id, customer_id, customer_name, doctor_name, doctor_reg_no, is_rghs, total,
               discount_percentage, status, payment_method, voucher_id, attached_prescriptions, date
        FROM transactions
        WHERE {where}
        ORDER BY date, id
        """,
        params,
    )
    heads = cur.fetchall()
    if not heads:
        return []
    cur.execute(
        """
        SELECT transaction_id, product_id, product_name, batch_id, quantity, price, tax
        FROM transaction_items
        WHERE transaction_id = ANY(%s::text[])
        ORDER BY transaction_id, line_no
        """,
        ([h["id"] for h in heads],),
    )
    items: Dict[str, list] = {}
    for r in cur.fetchall():
        r = dict(r)
        items.setdefault(r.pop("transaction_id"), []).append(TransactionItem(**r))
    out = []
    for h in heads:
        h = dict(h)
        h["attached_prescriptions"] = h.get("attached_prescriptions") or {}
        out.append(Transaction(**h, items=items.get(h["id"], [])))
    return out


# --- Purchases ---------------------------------------------------------------


def insert_purchase(cur, purchase: Purchase) -> None:
    cur.execute(
        """
        INSERT INTO purchases
          (id, supplier_id, invoice_number, total, status, payment_method, notes, source_file_id, date)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            purchase.id,
            purchase.supplier_id,
            purchase.invoice_number,
            q_inr(purchase.total),
            purchase.status,
            purchase.payment_method,
            purchase.notes,
            purchase.source_file_id,
            purchase.date,
        ),
    )
    for n, item in enumerate(purchase.items, start=1):
        cur.execute(
            """
            INSERT INTO purchase_items
              (purchase_id, line_no, product_id, product_name, batch_id, quantity, price, amount)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (purchase.id, n, item.product_id, item.product_name, item.batch_id, item.quantity, q_unit(item.price), q_inr(item.amount)),
        )


def get_purchase(cur, purchase_id: str, *, lock: bool = False) -> Optional[Purchase]:
    cur.execute(
        f"""
        SELECT id, supplier_id, invoice_number, total, status, payment_method, notes, source_file_id, date
        FROM purchases
        WHERE id = %s
        {"FOR UPDATE" if lock else ""}
        """,
        (purchase_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    cur.execute(
        """
        SELECT product_id, product_name, batch_id, quantity, price, amount
        FROM purchase_items
        WHERE purchase_id = %s
        ORDER BY line_no
        """,
        (purchase_id,),
    )
    return Purchase(**row, items=[PurchaseItem(**r) for r in cur.fetchall()])


def list_purchases(
    cur,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
    supplier_id: Optional[str] = None,
    limit: int = 100,
) -> List[dict]:
    where = ["TRUE"]
    params: list = []
    if start is not None:
        where.append("date >= %s")
        params.append(start)
    if end is not None:
        where.append("date < %s")
        params.append(end)
    if status:
        where.append("status = %s")
        params.append(status)
    if supplier_id:
        where.append("supplier_id = %s")
        params.append(supplier_id)
    params.append(limit)
    cur.execute(
        f"""
        SELECT id, supplier_id, invoice_number, total, status, payment_method, date
        FROM purchases
        WHERE {" AND ".join(where)}
        ORDER BY date DESC
        LIMIT %s
        """,
        params,
    )
    return cur.fetchall()


def load_purchases(cur, *, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Purchase]:
    where, params = _period_where(start, end)
    cur.execute(
        f"""
        SELECT id, supplier_id, invoice_number, total, status, payment_method, notes, source_file_id, date
        FROM purchases
        WHERE {where}
        ORDER BY date, id
        """,
        params,
    )
    heads = cur.fetchall()
    if not heads:
        return []
    cur.execute(
        """
        SELECT purchase_id, product_id, product_name, batch_id, quantity, price, amount
        FROM purchase_items
        WHERE purchase_id = ANY(%s::text[])
        ORDER BY purchase_id, line_no
        """,
        ([h["id"] for h in heads],),
    )
    items: Dict[str, list] = {}
    for r in cur.fetchall():
        r = dict(r)
        items.setdefault(r.pop("purchase_id"), []).append(PurchaseItem(**r))
    return [Purchase(**h, items=items.get(h["id"], [])) for h in heads]


# --- Returns -----------------------------------------------------------------


def _insert_return_items(cur, return_id: str, kind: str, items: List[ReturnItem]) -> None:
    for n, item in enumerate(items, start=1):
        cur.execute(
            """
            INSERT INTO return_items
              (return_id, return_kind, line_no, product_id, product_name, batch_id, quantity, price, discount, amount)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                return_id,
                kind,
                n,
                item.product_id,
                item.product_name,
                item.batch_id,
                item.quantity,
                q_unit(item.price),
                item.discount,
                q_inr(item.amount),
            ),
        )


def insert_customer_return(cur, ret: CustomerReturn) -> None:
    cur.execute(
        """
        INSERT INTO customer_returns (id, original_transaction_id, total_amount, settlement_type, voucher_id, date)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (
            ret.id,
            ret.original_transaction_id,
            q_inr(ret.total_amount),
            ret.settlement.type,
            ret.settlement.voucher_id,
            ret.date,
        ),
    )
    _insert_return_items(cur, ret.id, "customer", ret.items)


def insert_supplier_return(cur, ret: SupplierReturn) -> None:
    cur.execute(
        """
        INSERT INTO supplier_returns
          (id, original_purchase_id, supplier_id, total_amount, settlement_type, credit_note_id, date)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (
            ret.id,
            ret.original_purchase_id,
            ret.supplier_id,
            q_inr(ret.total_amount),
            ret.settlement.type,
            ret.settlement.credit_note_id,
            ret.date,
        ),
    )
    _insert_return_items(cur, ret.id, "supplier", ret.items)


def returned_items(cur, kind: str, original_id: str) -> List[ReturnItem]:
    """Lines already returned against an original invoice or purchase."""
    if kind == "customer":
        join = "JOIN customer_returns r ON r.id = ri.return_id AND r.original_transaction_id = %s"
    else:
        join = "JOIN supplier_returns r ON r.id = ri.return_id AND r.original_purchase_id = %s"
    cur.execute(
        f"""
        SELECT ri.product_id, ri.product_name, ri.batch_id, ri.quantity, ri.price, ri.discount, ri.amount
        FROM return_items ri
        {join}
        WHERE ri.return_kind = %s
        ORDER BY ri.return_id, ri.line_no
        """,
        (original_id, kind),
    )
    return [ReturnItem(**r) for r in cur.fetchall()]


# --- Vouchers / credit notes -------------------------------------------------


VOUCHER_COLUMNS = "id, customer_name, initial_amount, balance, created_date, status"


def insert_voucher(cur, v: Voucher) -> None:
    cur.execute(
        f"INSERT INTO vouchers ({VOUCHER_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s)",
        (v.id, v.customer_name, q_inr(v.initial_amount), q_inr(v.balance), v.created_date, v.status),
    )


def get_voucher(cur, voucher_id: str, *, lock: bool = False) -> Optional[Voucher]:
    cur.execute(
        f"SELECT {VOUCHER_COLUMNS} FROM vouchers WHERE id = %s {'FOR UPDATE' if lock else ''}",
        (voucher_id,),
    )
    row = cur.fetchone()
    return Voucher(**row) if row else None


def update_voucher(cur, v: Voucher) -> None:
    cur.execute(
        "UPDATE vouchers SET balance = %s, status = %s WHERE id = %s",
        (q_inr(v.balance), v.status, v.id),
    )


def list_vouchers(cur, *, customer_name: Optional[str] = None, status: Optional[str] = None) -> List[Voucher]:
    where = ["TRUE"]
    params: list = []
    if customer_name:
        where.append("lower(trim(customer_name)) = lower(trim(%s))")
        params.append(customer_name)
    if status:
        where.append("status = %s")
        params.append(status)
    cur.execute(
        f"SELECT {VOUCHER_COLUMNS} FROM vouchers WHERE {' AND '.join(where)} ORDER BY created_date",
        params,
    )
    return [Voucher(**r) for r in cur.fetchall()]


def insert_credit_note(cur, cn: CreditNote) -> None:
    cur.execute(
        """
        INSERT INTO credit_notes (id, supplier_id, supplier_return_id, amount, status, date)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (cn.id, cn.supplier_id, cn.supplier_return_id, q_inr(cn.amount), cn.status, cn.date),
    )


def list_credit_notes(cur, *, supplier_id: Optional[str] = None, status: Optional[str] = None) -> List[CreditNote]:
    where = ["TRUE"]
    params: list = []
    if supplier_id:
        where.append("supplier_id = %s")
        params.append(supplier_id)
    if status:
        where.append("status = %s")
        params.append(status)
    cur.execute(
        f"""
        SELECT id, supplier_id, supplier_return_id, amount, status, date
        FROM credit_notes
        WHERE {" AND ".join(where)}
        ORDER BY date
        """,
        params,
    )
    return [CreditNote(**r) for r in cur.fetchall()]


# --- Settlements / journal ---------------------------------------------------


def insert_settlement(
    cur,
    settlement_id: str,
    kind: str,
    party_id: str,
    amount: Decimal,
    method: str,
    when: datetime,
    notes: Optional[str] = None,
) -> None:
    cur.execute(
        """
        INSERT INTO settlements (id, kind, party_id, amount, method, notes, date)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (settlement_id, kind, party_id, q_inr(amount), method, notes, when),
    )


def insert_journal_entry(cur, entry: JournalEntry) -> None:
    cur.execute(
        """
        INSERT INTO journal_entries (id, date, reference_id, reference_type, narration)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (entry.id, entry.date, entry.reference_id, entry.reference_type, entry.narration),
    )
    for n, leg in enumerate(entry.transactions, start=1):
        cur.execute(
            """
            INSERT INTO journal_transactions (entry_id, line_no, account_id, account_name, type, amount)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (entry.id, n, leg.account_id, leg.account_name, leg.type, q_inr(leg.amount)),
        )


def load_journal(
    cur,
    *,
    account_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[JournalEntry]:
    """
    Journal entries in date order. With `account_id`, only entries with at
    least one leg on that account are returned (all their legs included).
    """
    where = ["TRUE"]
    params: list = []
    if account_id:
        where.append("EXISTS (SELECT 1 FROM journal_transactions t WHERE t.entry_id = e.id AND t.account_id = %s)")
        params.append(account_id)
    if reference_type:
        where.append("e.reference_type = %s")
        params.append(reference_type)
    if end is not None:
        where.append("e.date < %s")
        params.append(end)
    limit_sql = ""
    if limit is not None:
        limit_sql = "LIMIT %s"
        params.append(limit)
    cur.execute(
        f"""
        SELECT e.id, e.date, e.reference_id, e.reference_type, e.narration
        FROM journal_entries e
        WHERE {" AND ".join(where)}
        ORDER BY e.date, e.created_at, e.id
        {limit_sql}
        """,
        params,
    )
    heads = cur.fetchall()
    if not heads:
        return []
    cur.execute(
        """
        SELECT entry_id, account_id, account_name, type, amount
        FROM journal_transactions
        WHERE entry_id = ANY(%s::text[])
        ORDER BY entry_id, line_no
        """,
        ([h["id"] for h in heads],),
    )
    legs: Dict[str, List[JournalTransaction]] = {}
    for r in cur.fetchall():
        legs.setdefault(r["entry_id"], []).append(
            JournalTransaction(account_id=r["account_id"], account_name=r["account_name"], type=r["type"], amount=r["amount"])
        )
    return [JournalEntry(**h, transactions=legs.get(h["id"], [])) for h in heads]


# --- Audit -------------------------------------------------------------------


def write_audit(cur, action: str, entity_type: str, entity_id: Optional[str], details: Optional[dict] = None) -> None:
    cur.execute(
        """
        INSERT INTO audit_logs (id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, %s, %s::jsonb)
        """,
        (action, entity_type, entity_id, json.dumps(details or {}, default=str)),
    )
