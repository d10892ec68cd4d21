from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from pharmabill.app.billing import (
    PurchaseLine,
    ReturnRequestLine,
    billable_items,
    check_original_references,
    compute_bill_summary,
    compute_purchase_summary,
    customer_return_items,
    return_total,
)
from pharmabill.app.errors import IntegrityError, ValidationError
from pharmabill.app.models import Batch, CartItem, GstSettings, Product, ReturnItem, Transaction, Voucher

NOW = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def _item(price, qty, tax, pid="P1", batch="B1"):
    return CartItem(product_id=pid, product_name=pid, quantity=qty, price=Decimal(price), tax=Decimal(tax), batch_id=batch)


def _voucher(balance, status="active"):
    return Voucher(
        id="VCHR-1", customer_name="Asha", initial_amount=Decimal("150"), balance=Decimal(balance), created_date=NOW, status=status
    )


def test_bill_summary_worked_example():
    s = compute_bill_summary([_item("100", 2, "12")], discount_percent=Decimal("10"))
    assert s.sub_total == Decimal("200")
    assert s.discount_amount == Decimal("20")
    assert s.taxable_value == Decimal("180")
    assert s.total_sgst == Decimal("10.8")
    assert s.total_cgst == Decimal("10.8")
    assert s.grand_total == Decimal("201.6")
    assert s.tax_breakdown[Decimal("12")].sgst == Decimal("10.8")


def test_bill_summary_conserves_totals_across_mixed_bands():
    cart = [_item("33.3333", 3, "12"), _item("7.5", 4, "5", pid="P2"), _item("120", 1, "18", pid="P3")]
    s = compute_bill_summary(cart, discount_percent=Decimal("7.5"), applied_voucher=_voucher("25"))
    lhs = s.sub_total - s.discount_amount - s.voucher_discount + s.total_sgst + s.total_cgst
    assert abs(lhs - s.grand_total) < Decimal("1e-9")
    assert set(s.tax_breakdown) == {Decimal("12"), Decimal("5"), Decimal("18")}
    assert s.voucher_discount == Decimal("25")


def test_bill_summary_rghs_is_tax_exempt():
    s = compute_bill_summary([_item("100", 2, "12")], discount_percent=Decimal("10"), is_rghs=True)
    assert s.tax_breakdown == {}
    assert s.total_sgst == 0 and s.total_cgst == 0
    assert s.grand_total == s.sub_total - s.discount_amount - s.voucher_discount == Decimal("180")


def test_voucher_discount_is_capped_at_bill_value():
    s = compute_bill_summary([_item("50", 2, "12")], applied_voucher=_voucher("150"))
    assert s.voucher_discount == Decimal("100")
    assert s.taxable_value == 0
    assert s.grand_total == 0


def test_inactive_voucher_is_ignored():
    s = compute_bill_summary([_item("50", 2, "12")], applied_voucher=_voucher("0", status="used"))
    assert s.voucher_discount == 0


def test_empty_cart_is_all_zero():
    s = compute_bill_summary([])
    assert s.sub_total == 0
    assert s.grand_total == 0
    assert s.tax_breakdown == {}


def test_discount_out_of_range_is_rejected():
    with pytest.raises(ValidationError):
        compute_bill_summary([_item("10", 1, "5")], discount_percent=Decimal("101"))
    with pytest.raises(ValidationError):
        compute_bill_summary([_item("10", 1, "5")], discount_percent=Decimal("-1"))


def test_billable_items_drops_zero_and_rejects_negative():
    assert [i.product_id for i in billable_items([_item("1", 0, "5"), _item("1", 2, "5", pid="P2")])] == ["P2"]
    with pytest.raises(ValidationError):
        billable_items([_item("1", -1, "5")])


def test_purchase_summary_applies_discount_before_gst():
    s = compute_purchase_summary(
        [
            PurchaseLine(hsn_code="30049099", quantity=10, rate=Decimal("20"), discount=Decimal("10")),
            PurchaseLine(hsn_code="21069099", quantity=1, rate=Decimal("100")),
        ],
        GstSettings(),
    )
    assert s.lines[0].amount == Decimal("180")
    assert s.lines[0].sgst == Decimal("10.8")
    assert s.lines[1].gst_rate == Decimal("18")
    assert s.subtotal == Decimal("280")
    assert s.total == Decimal("280") + Decimal("21.6") + Decimal("18")


def _sale():
    return Transaction(
        id="INV-1",
        customer_name="Asha",
        items=[_item("3.5", 10, "12", pid="P1", batch="B1"), _item("12", 2, "5", pid="P2", batch="B2")],
        total=Decimal("63.7"),
        date=NOW,
    )


def test_customer_return_items_price_at_original_sale_price():
    items = customer_return_items(_sale(), [ReturnRequestLine(batch_id="B1", quantity=4)])
    assert len(items) == 1
    assert items[0].price == Decimal("3.5")
    assert items[0].amount == Decimal("14.0")
    assert return_total(items) == Decimal("14.0")


def test_customer_return_items_respect_already_returned_quantity():
    prior = [ReturnItem(product_id="P1", batch_id="B1", quantity=8, price=Decimal("3.5"), amount=Decimal("28"))]
    customer_return_items(_sale(), [ReturnRequestLine(batch_id="B1", quantity=2)], prior)
    with pytest.raises(ValidationError) as exc_info:
        customer_return_items(_sale(), [ReturnRequestLine(batch_id="B1", quantity=3)], prior)
    assert "only 2 returnable" in exc_info.value.detail


def test_customer_return_items_reject_unknown_batch_and_empty_request():
    with pytest.raises(ValidationError):
        customer_return_items(_sale(), [ReturnRequestLine(batch_id="ZZ", quantity=1)])
    with pytest.raises(ValidationError) as exc_info:
        customer_return_items(_sale(), [ReturnRequestLine(batch_id="B1", quantity=0)])
    assert exc_info.value.detail == "nothing to return"


def test_check_original_references_reports_missing_product_and_batch():
    p1 = Product(id="P1", name="P1", batches=[Batch(id="B1", expiry_date=date(2026, 1, 1))])
    tx = _sale()
    with pytest.raises(IntegrityError) as exc_info:
        check_original_references(tx.items, {"P1": p1})
    assert "no longer exists" in exc_info.value.detail

    p2 = Product(id="P2", name="P2", batches=[])
    with pytest.raises(IntegrityError) as exc_info:
        check_original_references(tx.items, {"P1": p1, "P2": p2})
    assert "is missing" in exc_info.value.detail
