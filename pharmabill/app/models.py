from __future__ import annotations

import secrets
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .validation import (
    AccountId,
    CreditNoteStatus,
    CustomerSettlement,
    DocStatus,
    HsnCode,
    LegType,
    PaymentMethod,
    ReferenceType,
    Schedule,
    SupplierSettlement,
    VoucherStatus,
)


def new_id(prefix: str) -> str:
    """Timestamp-based document id, e.g. `JE-SALE-1718000000000-a1b2c3`."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GstSettings(BaseModel):
    subsidized: Decimal = Decimal("5")
    general: Decimal = Decimal("12")
    food: Decimal = Decimal("18")


class Batch(BaseModel):
    id: str
    batch_number: str = ""
    expiry_date: date
    stock: int = Field(0, ge=0)
    mrp: Decimal = Decimal("0")
    price: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    sale_discount: Optional[Decimal] = None


class Product(BaseModel):
    id: str
    hsn_code: HsnCode = ""
    name: str
    pack: str = ""
    manufacturer: str = ""
    salts: Optional[str] = None
    schedule: Schedule = "none"
    category: Optional[str] = None
    min_stock: Optional[int] = None
    batches: List[Batch] = Field(default_factory=list)

    def batch(self, batch_id: str) -> Optional[Batch]:
        for b in self.batches:
            if b.id == batch_id:
                return b
        return None


class CartItem(BaseModel):
    product_id: str
    product_name: str = ""
    quantity: int = 0
    # Per-unit selling price derived from the batch MRP at time of sale.
    price: Decimal
    tax: Decimal = Decimal("0")
    batch_id: str


TransactionItem = CartItem


class Transaction(BaseModel):
    id: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    doctor_name: Optional[str] = None
    doctor_reg_no: Optional[str] = None
    is_rghs: bool = False
    items: List[TransactionItem]
    total: Decimal
    date: datetime
    discount_percentage: Decimal = Decimal("0")
    status: DocStatus = "paid"
    payment_method: Optional[PaymentMethod] = None
    voucher_id: Optional[str] = None
    attached_prescriptions: Dict[str, str] = Field(default_factory=dict)


class PurchaseItem(BaseModel):
    product_id: str
    product_name: str = ""
    batch_id: str
    quantity: int
    price: Decimal
    # Pre-tax line value (after supplier discount).
    amount: Decimal


class Purchase(BaseModel):
    id: str
    supplier_id: str
    invoice_number: Optional[str] = None
    items: List[PurchaseItem]
    total: Decimal
    date: datetime
    status: DocStatus = "paid"
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    source_file_id: Optional[str] = None


class ReturnItem(BaseModel):
    product_id: str
    product_name: str = ""
    batch_id: str
    quantity: int
    price: Decimal
    discount: Decimal = Decimal("0")
    amount: Decimal


class CustomerReturnSettlement(BaseModel):
    type: CustomerSettlement
    voucher_id: Optional[str] = None


class SupplierReturnSettlement(BaseModel):
    type: SupplierSettlement
    credit_note_id: Optional[str] = None


class CustomerReturn(BaseModel):
    id: str
    original_transaction_id: str
    items: List[ReturnItem]
    total_amount: Decimal
    date: datetime
    settlement: CustomerReturnSettlement


class SupplierReturn(BaseModel):
    id: str
    original_purchase_id: str
    supplier_id: str
    items: List[ReturnItem]
    total_amount: Decimal
    date: datetime
    settlement: SupplierReturnSettlement


class Voucher(BaseModel):
    id: str
    customer_name: Optional[str] = None
    initial_amount: Decimal
    balance: Decimal
    created_date: datetime
    status: VoucherStatus = "active"


class CreditNote(BaseModel):
    id: str
    supplier_id: str
    supplier_return_id: str
    amount: Decimal
    date: datetime
    status: CreditNoteStatus = "open"


class JournalTransaction(BaseModel):
    account_id: AccountId
    account_name: str = ""
    type: LegType
    amount: Decimal


class NewJournalEntry(BaseModel):
    date: datetime
    reference_id: str
    reference_type: ReferenceType
    narration: str = ""
    transactions: List[JournalTransaction]


class JournalEntry(NewJournalEntry):
    id: str


class StockDelta(BaseModel):
    product_id: str
    batch_id: str
    delta: int
