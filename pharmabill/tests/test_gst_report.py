from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException

from pharmabill.app.gst_report import gst_summary, sale_lines
from pharmabill.app.models import CartItem, GstSettings, Product, Purchase, PurchaseItem, Transaction
from pharmabill.app.routers import reports as reports_router
from pharmabill.tests.fakes import FakeStore, patch_conn

APR = datetime(2024, 4, 10, 11, 0, tzinfo=timezone.utc)

PRODUCTS = {
    "P1": Product(id="P1", name="Paracetamol 500", hsn_code="30049099"),
    "P2": Product(id="P2", name="ORS Sachet", hsn_code="30039011"),
}


def _line(product_id, price, qty, tax):
    return CartItem(product_id=product_id, product_name=product_id, price=Decimal(price), quantity=qty, tax=Decimal(tax), batch_id="B")


def _sale(tx_id, items, total, when=APR, **kw):
    return Transaction(id=tx_id, items=items, total=Decimal(total), date=when, **kw)


def _purchase(pur_id, items, when=APR):
    return Purchase(id=pur_id, supplier_id="sup-1", items=items, total=sum(i.amount for i in items), date=when)


def _pitem(product_id, amount, name=""):
    return PurchaseItem(product_id=product_id, product_name=name, batch_id="B", quantity=1, price=Decimal(amount), amount=Decimal(amount))


def _month():
    sales = [
        # 2 x 100 at 12%, 10% discount: taxable 180, tax 21.60.
        _sale("INV-1", [_line("P1", "100", 2, "12")], "201.60", discount_percentage=Decimal("10")),
        # Rs 50 voucher spread over a 12% and a 5% line: 75 taxable each.
        _sale("INV-2", [_line("P1", "10", 10, "12"), _line("P2", "50", 2, "5")], "162.75", voucher_id="V1"),
        _sale("INV-3", [_line("P1", "10", 5, "12")], "50", is_rghs=True),
    ]
    purchases = [_purchase("PUR-1", [_pitem("P1", "100"), _pitem("gone", "40", name="Old stock")])]
    return sales, purchases


def test_sale_lines_recover_discounted_taxable_value():
    (line,) = sale_lines(_month()[0][0], PRODUCTS)
    assert line.taxable_value == Decimal("180")
    assert line.sgst == line.cgst == Decimal("10.8")
    assert line.hsn_code == "30049099"


def test_gst_summary_groups_output_by_hsn_and_rate():
    sales, purchases = _month()
    out = gst_summary(sales, purchases, PRODUCTS, GstSettings()).output

    assert out.documents == 3
    assert [(r.hsn_code, r.quantity, r.taxable_value, r.sgst, r.total_tax) for r in out.by_hsn] == [
        ("30039011", 2, Decimal("75.00"), Decimal("1.88"), Decimal("3.75")),
        ("30049099", 17, Decimal("305.00"), Decimal("15.30"), Decimal("30.60")),
    ]
    assert out.by_hsn[1].description == "Paracetamol 500"
    assert [(r.rate, r.taxable_value, r.cgst) for r in out.by_rate] == [
        (Decimal("0"), Decimal("50.00"), Decimal("0.00")),
        (Decimal("5"), Decimal("75.00"), Decimal("1.88")),
        (Decimal("12"), Decimal("255.00"), Decimal("15.30")),
    ]
    assert out.taxable_value == Decimal("380.00")
    assert out.total_tax == Decimal("34.35")


def test_gst_summary_input_credit_and_net_liability():
    sales, purchases = _month()
    summary = gst_summary(sales, purchases, PRODUCTS, GstSettings())
    inp = summary.input
    # A product deleted since purchase falls back to the subsidized band.
    assert [(r.hsn_code, r.description, r.taxable_value, r.total_tax) for r in inp.by_hsn] == [
        ("", "Old stock", Decimal("40.00"), Decimal("2.00")),
        ("30049099", "Paracetamol 500", Decimal("100.00"), Decimal("12.00")),
    ]
    assert inp.total_tax == Decimal("14.00")
    assert summary.net_liability == Decimal("20.35")


def test_gst_summary_of_nothing_is_zero():
    summary = gst_summary([], [], {}, GstSettings())
    assert summary.output.by_hsn == []
    assert summary.net_liability == Decimal("0")


@pytest.fixture
def fake(monkeypatch):
    fake = FakeStore()
    for p in PRODUCTS.values():
        fake.add_product(p)
    sales, purchases = _month()
    for tx in sales:
        fake.transactions[tx.id] = tx
    for p in purchases:
        fake.purchases[p.id] = p
    fake.transactions["INV-LATE"] = _sale(
        "INV-LATE", [_line("P1", "100", 1, "12")], "112", when=datetime(2024, 4, 30, 23, 30, tzinfo=timezone.utc)
    )
    fake.transactions["INV-MAY"] = _sale("INV-MAY", [_line("P1", "100", 1, "12")], "112", when=datetime(2024, 5, 1, tzinfo=timezone.utc))
    fake.install(monkeypatch)
    patch_conn(monkeypatch, reports_router, fake)
    return fake


def test_gst_report_endpoint_covers_whole_end_day(fake):
    out = reports_router.gst_report(start_date=date(2024, 4, 1), end_date=date(2024, 4, 30))
    assert out["start_date"] == "2024-04-01"
    assert out["end_date"] == "2024-04-30"
    gst = out["gst"]
    assert gst.output.documents == 4
    assert gst.output.taxable_value == Decimal("480.00")
    assert gst.input.total_tax == Decimal("14.00")


def test_gst_report_open_ended_and_bad_range(fake):
    out = reports_router.gst_report(start_date=date(2024, 5, 1), end_date=None)
    assert out["end_date"] is None
    assert out["gst"].output.documents == 1
    assert out["gst"].input.documents == 0

    with pytest.raises(HTTPException) as exc_info:
        reports_router.gst_report(start_date=date(2024, 5, 1), end_date=date(2024, 4, 1))
    assert exc_info.value.status_code == 400
