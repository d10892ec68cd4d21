from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException

from pharmabill.app.config import settings
from pharmabill.app.errors import ValidationError
from pharmabill.app.models import Batch, Product, Voucher, utcnow
from pharmabill.app.routers import attachments as attachments_router
from pharmabill.app.routers import config as config_router
from pharmabill.app.routers import items as items_router
from pharmabill.app.routers import vouchers as vouchers_router
from pharmabill.tests.fakes import FakeStore, patch_conn

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


@pytest.fixture
def fake(monkeypatch):
    fake = FakeStore()
    fake.add_product(
        Product(
            id="P1",
            name="Azithromycin 500",
            pack="3 tabs",
            hsn_code="30042019",
            batches=[
                Batch(id="A", stock=0, expiry_date=date(2024, 3, 1), mrp=Decimal("90")),
                Batch(id="B", stock=7, expiry_date=date(2025, 3, 1), mrp=Decimal("90"), sale_discount=Decimal("10")),
            ],
        )
    )
    fake.install(monkeypatch)
    for module in (items_router, vouchers_router, config_router):
        patch_conn(monkeypatch, module, fake)
    return fake


def test_get_item_reports_units_per_pack(fake):
    out = items_router.get_item("P1")
    assert out["units_per_pack"] == 3
    with pytest.raises(HTTPException) as exc_info:
        items_router.get_item("nope")
    assert exc_info.value.status_code == 404


def test_fifo_batch_route_skips_empty_batches(fake):
    assert items_router.get_fifo_batch("P1")["batch"].id == "B"


def test_cart_line_route_clamps_and_prices(fake):
    out = items_router.build_cart_line("P1", items_router.CartLineQuery(strips=3))
    line = out["line"]
    assert line.batch_id == "B"
    assert line.quantity == 7
    assert line.price == Decimal("27.0000")
    assert out["message"] == "cannot exceed available stock"


def test_alert_routes_report_expiring_and_low_stock(fake):
    today = utcnow().date()
    fake.add_product(
        Product(
            id="P2",
            name="Ondansetron 4",
            min_stock=5,
            batches=[
                Batch(id="C", stock=2, expiry_date=today + timedelta(days=10)),
                Batch(id="D", stock=1, expiry_date=today - timedelta(days=3)),
            ],
        )
    )
    out = items_router.list_expiring_batches("15")
    assert out["count"] == 1
    assert out["batches"][0].batch_id == "C"
    # Fixture batch B (2025-03-01) is long past its expiry too.
    assert [b.batch_id for b in items_router.list_expiring_batches("expired")["batches"]] == ["B", "D"]
    with pytest.raises(ValidationError):
        items_router.list_expiring_batches("0")

    low = items_router.list_low_stock()
    assert [(r.product_id, r.total_stock, r.min_stock) for r in low["items"]] == [("P2", 3, 5), ("P1", 7, 20)]


def test_create_and_update_item_are_audited(fake):
    created = items_router.create_item(
        items_router.ProductIn(
            name="  Vitamin D3 ",
            hsn_code="21069099",
            batches=[items_router.BatchIn(expiry_date=date(2026, 1, 1), stock=12, mrp=Decimal("150"))],
        )
    )["item"]
    assert created.name == "Vitamin D3"
    assert created.batches[0].stock == 12

    updated = items_router.update_item(created.id, items_router.ProductUpdate(schedule="h"))["item"]
    assert updated.schedule == "H"
    assert fake.actions() == ["product_created", "product_updated"]

    with pytest.raises(HTTPException):
        items_router.update_item("nope", items_router.ProductUpdate(name="x"))


def test_applicable_vouchers_route(fake):
    fake.vouchers["V1"] = Voucher(id="V1", customer_name="Asha", initial_amount=Decimal("50"), balance=Decimal("20"), created_date=NOW)
    fake.vouchers["V2"] = Voucher(
        id="V2", customer_name="Asha", initial_amount=Decimal("50"), balance=Decimal("0"), created_date=NOW, status="used"
    )
    fake.vouchers["V3"] = Voucher(id="V3", customer_name="Ravi", initial_amount=Decimal("50"), balance=Decimal("50"), created_date=NOW)
    assert [v.id for v in vouchers_router.list_applicable_vouchers("ASHA")["vouchers"]] == ["V1"]
    assert vouchers_router.list_applicable_vouchers("  ")["vouchers"] == []


def test_expire_route_flips_lapsed_vouchers_and_hides_them(fake, monkeypatch):
    monkeypatch.setattr(settings, "voucher_validity_days", 90)
    old = utcnow() - timedelta(days=120)
    fake.vouchers["V1"] = Voucher(id="V1", customer_name="Asha", initial_amount=Decimal("50"), balance=Decimal("20"), created_date=old)
    fake.vouchers["V2"] = Voucher(id="V2", customer_name="Asha", initial_amount=Decimal("30"), balance=Decimal("30"), created_date=utcnow())
    assert [v.id for v in vouchers_router.list_applicable_vouchers("Asha")["vouchers"]] == ["V2"]

    assert vouchers_router.expire_lapsed_vouchers() == {"expired": ["V1"]}
    assert fake.vouchers["V1"].status == "expired"
    assert fake.vouchers["V1"].balance == Decimal("20")
    assert fake.vouchers["V2"].status == "active"
    assert fake.actions() == ["voucher_expired"]
    assert vouchers_router.expire_lapsed_vouchers() == {"expired": []}


def test_gst_settings_update_is_audited(fake):
    out = config_router.update_gst_settings(
        config_router.GstSettingsIn(subsidized=Decimal("5"), general=Decimal("18"), food=Decimal("12"))
    )
    assert out["gst"].general == Decimal("18")
    assert config_router.get_gst_settings()["gst"].general == Decimal("18")
    (audit,) = fake.audit
    assert audit["details"]["before"]["general"] == "12"


def test_attachment_filename_is_header_safe():
    assert attachments_router._safe_filename_for_header('rx"\r\n.png') == "rx.png"
    assert attachments_router._safe_filename_for_header("   ") == "attachment"
    assert len(attachments_router._safe_filename_for_header("a" * 500)) == 180
