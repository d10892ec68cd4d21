from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional

from ..db import get_conn
from .. import store
from ..billing import (
    ReturnRequestLine,
    check_original_references,
    customer_return_items,
    return_total,
    supplier_return_items,
)
from ..errors import IntegrityError, ValidationError
from ..journal import customer_return_entry, make_entry, supplier_return_entry
from ..journal_utils import q_inr
from ..logs import json_log
from ..models import (
    CustomerReturn,
    CustomerReturnSettlement,
    SupplierReturn,
    SupplierReturnSettlement,
    new_id,
    utcnow,
)
from ..stock import apply_stock_delta, stock_deltas_for_restock, stock_deltas_for_sale
from ..validation import CustomerSettlement, SupplierSettlement
from ..vouchers import issue_credit_note, issue_voucher

router = APIRouter(prefix="/returns", tags=["returns"])


class CustomerReturnIn(BaseModel):
    original_transaction_id: str
    items: List[ReturnRequestLine]
    settlement: CustomerSettlement = "refund"


class SupplierReturnIn(BaseModel):
    original_purchase_id: str
    items: List[ReturnRequestLine]
    # Defaults from the purchase: paid => credit note, credit => ledger adjustment.
    settlement: Optional[SupplierSettlement] = None


@router.post("/customer")
def process_customer_return(data: CustomerReturnIn):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                tx = store.get_transaction(cur, data.original_transaction_id, lock=True)
                if tx is None:
                    raise HTTPException(status_code=404, detail="transaction not found")
                # Vouchers are redeemed by customer name; a walk-in name is not an owner.
                if data.settlement == "voucher" and not tx.customer_id:
                    raise ValidationError("voucher settlement requires a registered customer")
                products = store.load_products(cur, [i.product_id for i in tx.items], lock=True)
                check_original_references(tx.items, products)

                already = store.returned_items(cur, "customer", tx.id)
                items = customer_return_items(tx, data.items, already)
                total = q_inr(return_total(items))
                if total <= 0:
                    raise ValidationError("return amount must be greater than zero")

                when = utcnow()
                voucher = None
                settlement = CustomerReturnSettlement(type=data.settlement)
                if data.settlement == "voucher":
                    voucher = issue_voucher(tx.customer_name, total, when=when)
                    settlement.voucher_id = voucher.id
                ret = CustomerReturn(
                    id=new_id("RTN-CUST"),
                    original_transaction_id=tx.id,
                    items=items,
                    total_amount=total,
                    date=when,
                    settlement=settlement,
                )
                after = apply_stock_delta(products.values(), stock_deltas_for_restock(items))
                entry = make_entry(customer_return_entry(ret, tx))

                if voucher is not None:
                    store.insert_voucher(cur, voucher)
                store.insert_customer_return(cur, ret)
                store.write_stock(cur, products, after)
                store.insert_journal_entry(cur, entry)
                store.write_audit(
                    cur,
                    "customer_return_processed",
                    "customer_return",
                    ret.id,
                    {
                        "original_transaction_id": tx.id,
                        "total": str(total),
                        "settlement": settlement.type,
                        "voucher_id": settlement.voucher_id,
                        "journal_id": entry.id,
                    },
                )

    json_log("info", "return.committed", kind="customer", return_id=ret.id, total=total, settlement=settlement.type)
    json_log("info", "journal.posted", journal_id=entry.id, reference_type="CustomerReturn", reference_id=ret.id)
    return {"return": ret, "voucher": voucher, "journal_id": entry.id}


@router.post("/supplier")
def process_supplier_return(data: SupplierReturnIn):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                purchase = store.get_purchase(cur, data.original_purchase_id, lock=True)
                if purchase is None:
                    raise HTTPException(status_code=404, detail="purchase not found")
                supplier = store.get_party(cur, "suppliers", purchase.supplier_id)
                if supplier is None:
                    raise IntegrityError("supplier for this purchase could not be found")
                products = store.load_products(cur, [i.product_id for i in purchase.items], lock=True)
                check_original_references(purchase.items, products)

                already = store.returned_items(cur, "supplier", purchase.id)
                items = supplier_return_items(purchase, data.items, already)
                total = q_inr(return_total(items))
                if total <= 0:
                    raise ValidationError("return amount must be greater than zero")

                kind = data.settlement or ("credit_note" if purchase.status == "paid" else "ledger_adjustment")
                when = utcnow()
                ret = SupplierReturn(
                    id=new_id("RTN-SUPP"),
                    original_purchase_id=purchase.id,
                    supplier_id=purchase.supplier_id,
                    items=items,
                    total_amount=total,
                    date=when,
                    settlement=SupplierReturnSettlement(type=kind),
                )
                credit_note = None
                if kind == "credit_note":
                    credit_note = issue_credit_note(purchase.supplier_id, ret.id, total, when=when)
                    ret.settlement.credit_note_id = credit_note.id

                # Goods leave the shelf; a negative result means the stock was already sold.
                after = apply_stock_delta(products.values(), stock_deltas_for_sale(items))
                draft = supplier_return_entry(ret, supplier_name=supplier["name"])
                entry = make_entry(draft) if draft is not None else None

                store.insert_supplier_return(cur, ret)
                if credit_note is not None:
                    store.insert_credit_note(cur, credit_note)
                store.write_stock(cur, products, after)
                if entry is not None:
                    store.insert_journal_entry(cur, entry)
                store.write_audit(
                    cur,
                    "supplier_return_processed",
                    "supplier_return",
                    ret.id,
                    {
                        "original_purchase_id": purchase.id,
                        "total": str(total),
                        "settlement": kind,
                        "credit_note_id": credit_note.id if credit_note else None,
                        "journal_id": entry.id if entry else None,
                    },
                )

    json_log("info", "return.committed", kind="supplier", return_id=ret.id, total=total, settlement=kind)
    if entry is not None:
        json_log("info", "journal.posted", journal_id=entry.id, reference_type="SupplierReturn", reference_id=ret.id)
    return {"return": ret, "credit_note": credit_note, "journal_id": entry.id if entry else None}


@router.get("/customer/{transaction_id}/returned")
def customer_returned_items(transaction_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"items": store.returned_items(cur, "customer", transaction_id)}


@router.get("/supplier/{purchase_id}/returned")
def supplier_returned_items(purchase_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"items": store.returned_items(cur, "supplier", purchase_id)}
