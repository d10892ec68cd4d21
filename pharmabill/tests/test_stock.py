from datetime import date

import pytest

from pharmabill.app.errors import IntegrityError
from pharmabill.app.models import Batch, CartItem, Product, StockDelta
from pharmabill.app.stock import apply_stock_delta, stock_deltas_for_restock, stock_deltas_for_sale


def _products():
    return [
        Product(
            id="P1",
            name="Amoxicillin",
            batches=[
                Batch(id="B1", stock=5, expiry_date=date(2025, 1, 1)),
                Batch(id="B2", stock=2, expiry_date=date(2025, 6, 1)),
            ],
        ),
        Product(id="P2", name="ORS", batches=[Batch(id="B3", stock=1, expiry_date=date(2026, 1, 1))]),
    ]


def test_apply_stock_delta_returns_new_state_and_leaves_input_alone():
    before = _products()
    after = apply_stock_delta(before, [StockDelta(product_id="P1", batch_id="B1", delta=-3)])
    assert after[0].batch("B1").stock == 2
    assert after[0].batch("B2").stock == 2
    assert after[1] is before[1]
    assert before[0].batch("B1").stock == 5


def test_apply_stock_delta_rejects_negative_stock_atomically():
    before = _products()
    deltas = [
        StockDelta(product_id="P2", batch_id="B3", delta=-1),
        StockDelta(product_id="P1", batch_id="B1", delta=-4),
        StockDelta(product_id="P1", batch_id="B1", delta=-2),
    ]
    with pytest.raises(IntegrityError) as exc_info:
        apply_stock_delta(before, deltas)
    assert "stock would go negative" in exc_info.value.detail
    assert before[1].batch("B3").stock == 1


def test_apply_stock_delta_rejects_unknown_product_or_batch():
    with pytest.raises(IntegrityError):
        apply_stock_delta(_products(), [StockDelta(product_id="PX", batch_id="B1", delta=1)])
    with pytest.raises(IntegrityError):
        apply_stock_delta(_products(), [StockDelta(product_id="P1", batch_id="B3", delta=1)])


def test_stock_never_goes_negative_over_a_sequence():
    state = _products()
    for delta in [-2, -2, +1, -2, -1]:
        try:
            state = apply_stock_delta(state, [StockDelta(product_id="P1", batch_id="B1", delta=delta)])
        except IntegrityError:
            pass
        assert all(b.stock >= 0 for p in state for b in p.batches)
    assert state[0].batch("B1").stock == 0


def test_sale_and_restock_deltas_have_opposite_signs():
    items = [
        CartItem(product_id="P1", quantity=3, price=1, batch_id="B1"),
        CartItem(product_id="P2", quantity=0, price=1, batch_id="B3"),
    ]
    assert [d.delta for d in stock_deltas_for_sale(items)] == [-3]
    assert [d.delta for d in stock_deltas_for_restock(items)] == [3]
