from datetime import date
from decimal import Decimal

import pytest

from pharmabill.app import account_defaults as acc
from pharmabill.app.billing import ReturnRequestLine
from pharmabill.app.errors import IntegrityError, ValidationError
from pharmabill.app.models import Batch, CartItem, Product, Purchase, PurchaseItem, Transaction, utcnow
from pharmabill.app.routers import returns as returns_router
from pharmabill.tests.fakes import FakeStore, patch_conn


@pytest.fixture
def fake(monkeypatch):
    fake = FakeStore()
    fake.add_product(
        Product(
            id="P1",
            name="Cetirizine 10",
            pack="10 tabs",
            batches=[Batch(id="B1", batch_number="CTZ-1", stock=6, expiry_date=date(2025, 8, 1), mrp=Decimal("25"))],
        )
    )
    fake.add_supplier("sup-1", "Medline Distributors")
    fake.add_customer("cust-1", "Asha")
    fake.transactions["INV-1"] = Transaction(
        id="INV-1",
        customer_id="cust-1",
        customer_name="Asha",
        items=[CartItem(product_id="P1", product_name="Cetirizine 10", quantity=10, price=Decimal("2.5"), tax=Decimal("12"), batch_id="B1")],
        total=Decimal("28"),
        date=utcnow(),
    )
    fake.purchases["PUR-1"] = Purchase(
        id="PUR-1",
        supplier_id="sup-1",
        items=[PurchaseItem(product_id="P1", product_name="Cetirizine 10", batch_id="B1", quantity=10, price=Decimal("1.8"), amount=Decimal("18"))],
        total=Decimal("20.16"),
        date=utcnow(),
        status="paid",
        payment_method="cash",
    )
    fake.install(monkeypatch)
    fake.conn = patch_conn(monkeypatch, returns_router, fake)
    return fake


def _customer_return(qty, settlement="refund"):
    return returns_router.process_customer_return(
        returns_router.CustomerReturnIn(
            original_transaction_id="INV-1",
            items=[ReturnRequestLine(batch_id="B1", quantity=qty)],
            settlement=settlement,
        )
    )


def _supplier_return(qty, settlement=None):
    return returns_router.process_supplier_return(
        returns_router.SupplierReturnIn(
            original_purchase_id="PUR-1",
            items=[ReturnRequestLine(batch_id="B1", quantity=qty)],
            settlement=settlement,
        )
    )


def test_customer_refund_restocks_and_posts_sales_return(fake):
    out = _customer_return(4)
    ret = out["return"]
    assert ret.total_amount == Decimal("10.00")
    assert out["voucher"] is None
    assert fake.products["P1"].batch("B1").stock == 10
    (entry,) = fake.journal
    legs = {(t.account_id, t.type): t.amount for t in entry.transactions}
    assert legs == {(acc.SALES_RETURN, "debit"): Decimal("10.00"), (acc.CASH, "credit"): Decimal("10.00")}
    assert fake.actions() == ["customer_return_processed"]


def test_customer_return_by_voucher_issues_credit_for_the_customer(fake):
    out = _customer_return(2, settlement="voucher")
    voucher = out["voucher"]
    assert voucher.customer_name == "Asha"
    assert voucher.balance == Decimal("5.00")
    assert fake.vouchers[voucher.id] == voucher
    assert out["return"].settlement.voucher_id == voucher.id
    credit = [t for t in fake.journal[0].transactions if t.type == "credit"]
    assert [t.account_id for t in credit] == [acc.VOUCHERS_PAYABLE]


def test_customer_cannot_return_more_than_was_sold(fake):
    _customer_return(7)
    with pytest.raises(ValidationError):
        _customer_return(4)
    assert fake.products["P1"].batch("B1").stock == 13
    assert len(fake.customer_returns) == 1


def test_customer_return_fails_when_product_was_deleted(fake):
    del fake.products["P1"]
    with pytest.raises(IntegrityError) as exc_info:
        _customer_return(1)
    assert "no longer exists" in exc_info.value.detail
    assert fake.customer_returns == {}
    assert fake.journal == []
    assert fake.conn.rollbacks == 1


def test_supplier_return_on_paid_purchase_issues_credit_note(fake):
    out = _supplier_return(4)
    ret = out["return"]
    assert ret.settlement.type == "credit_note"
    assert ret.total_amount == Decimal("7.20")
    cn = out["credit_note"]
    assert fake.credit_notes[cn.id].supplier_return_id == ret.id
    assert ret.settlement.credit_note_id == cn.id
    assert out["journal_id"] is None
    assert fake.journal == []
    assert fake.products["P1"].batch("B1").stock == 2


def test_supplier_return_on_credit_purchase_adjusts_the_ledger(fake):
    fake.purchases["PUR-1"] = fake.purchases["PUR-1"].model_copy(update={"status": "credit", "payment_method": None})
    out = _supplier_return(1)
    assert out["credit_note"] is None
    assert fake.credit_notes == {}
    legs = {(t.account_id, t.type, t.account_name) for t in fake.journal[0].transactions}
    assert legs == {("sup-1", "debit", "Medline Distributors"), (acc.PURCHASE_RETURN, "credit", "Purchase Return")}


def test_supplier_return_cannot_take_stock_below_zero(fake):
    with pytest.raises(IntegrityError) as exc_info:
        _supplier_return(8)
    assert "stock would go negative" in exc_info.value.detail
    assert fake.products["P1"].batch("B1").stock == 6
    assert fake.supplier_returns == {}
    assert fake.credit_notes == {}


def test_returned_items_lists_prior_returns(fake):
    _customer_return(3)
    items = returns_router.customer_returned_items("INV-1")["items"]
    assert [(i.batch_id, i.quantity) for i in items] == [("B1", 3)]


def test_voucher_return_on_walk_in_sale_is_rejected(fake):
    fake.transactions["INV-1"] = fake.transactions["INV-1"].model_copy(update={"customer_id": None, "customer_name": "Walk-in Customer"})
    with pytest.raises(ValidationError) as exc_info:
        _customer_return(2, settlement="voucher")
    assert "registered customer" in exc_info.value.detail
    assert fake.vouchers == {}
    assert fake.customer_returns == {}
    assert fake.products["P1"].batch("B1").stock == 6


def test_refund_on_card_sale_comes_out_of_bank(fake):
    fake.transactions["INV-1"] = fake.transactions["INV-1"].model_copy(update={"payment_method": "card"})
    _customer_return(2)
    credit = [t for t in fake.journal[0].transactions if t.type == "credit"]
    assert [(t.account_id, t.amount) for t in credit] == [(acc.BANK, Decimal("5.00"))]


def test_refund_on_credit_sale_reduces_customer_dues(fake):
    fake.transactions["INV-1"] = fake.transactions["INV-1"].model_copy(update={"status": "credit", "payment_method": None})
    _customer_return(4)
    (entry,) = fake.journal
    legs = {(t.account_id, t.type, t.account_name): t.amount for t in entry.transactions}
    assert legs == {
        (acc.SALES_RETURN, "debit", "Sales Return"): Decimal("10.00"),
        ("cust-1", "credit", "Asha"): Decimal("10.00"),
    }
    assert acc.CASH not in {t.account_id for t in entry.transactions}
