import json
from datetime import date, datetime, timezone
from decimal import Decimal

from pharmabill.app import store
from pharmabill.app.models import Batch, JournalEntry, JournalTransaction, Product


class _DummyCursor:
    def __init__(self, results=()):
        # Each execute() consumes the next scripted result set.
        self._results = list(results)
        self._current = []
        self.executed: list[tuple[str, tuple]] = []

    def execute(self, sql, params=()):
        self.executed.append((sql, tuple(params)))
        self._current = self._results.pop(0) if self._results else []

    def fetchall(self):
        return self._current

    def fetchone(self):
        return self._current[0] if self._current else None


def _batch_row(**kw):
    row = dict(
        id="B1",
        product_id="P1",
        batch_number="X1",
        expiry_date=date(2025, 1, 1),
        stock=4,
        mrp=Decimal("30"),
        price=Decimal("2"),
        discount=Decimal("0"),
        sale_discount=None,
    )
    row.update(kw)
    return row


def _product_row():
    return dict(
        id="P1", hsn_code="3004", name="Paracetamol", pack="10 tabs", manufacturer="Acme",
        salts=None, schedule="none", category=None, min_stock=None,
    )


def test_load_products_locks_batches_only_when_asked():
    cur = _DummyCursor([[_product_row()], [_batch_row()]])
    products = store.load_products(cur, ["P1", "P1"], lock=True)
    assert products["P1"].batch("B1").stock == 4
    assert "FOR UPDATE" in cur.executed[1][0]
    assert cur.executed[0][1] == (["P1"],)

    cur = _DummyCursor([[_product_row()], [_batch_row()]])
    store.load_products(cur, ["P1"])
    assert "FOR UPDATE" not in cur.executed[1][0]


def test_load_products_skips_query_for_empty_ids():
    cur = _DummyCursor()
    assert store.load_products(cur, []) == {}
    assert cur.executed == []


def test_write_stock_only_updates_changed_batches():
    before = Product(
        id="P1",
        name="Paracetamol",
        batches=[Batch(id="B1", stock=4, expiry_date=date(2025, 1, 1)), Batch(id="B2", stock=2, expiry_date=date(2025, 2, 1))],
    )
    after = before.model_copy(update={"batches": [before.batches[0].model_copy(update={"stock": 1}), before.batches[1]]})
    cur = _DummyCursor()
    assert store.write_stock(cur, {"P1": before}, [after]) == 1
    assert cur.executed[0][1] == (1, "B1", "P1")


def test_get_gst_settings_falls_back_to_config_when_unset():
    gst = store.get_gst_settings(_DummyCursor([[]]))
    assert gst.general == Decimal("12")
    gst = store.get_gst_settings(_DummyCursor([[{"subsidized": Decimal("0"), "general": Decimal("12"), "food": Decimal("5")}]]))
    assert gst.food == Decimal("5")


def test_insert_journal_entry_writes_numbered_legs_at_paise():
    entry = JournalEntry(
        id="JE-SALE-1",
        date=datetime(2024, 4, 1, tzinfo=timezone.utc),
        reference_id="INV-1",
        reference_type="Sale",
        narration="Sale INV-1",
        transactions=[
            JournalTransaction(account_id="AC-CASH", type="debit", amount=Decimal("10.004")),
            JournalTransaction(account_id="AC-SALES", type="credit", amount=Decimal("10")),
        ],
    )
    cur = _DummyCursor()
    store.insert_journal_entry(cur, entry)
    assert len(cur.executed) == 3
    assert cur.executed[1][1] == ("JE-SALE-1", 1, "AC-CASH", "", "debit", Decimal("10.00"))
    assert cur.executed[2][1][1] == 2


def test_load_journal_filters_and_groups_legs():
    heads = [{"id": "JE-1", "date": datetime(2024, 4, 1, tzinfo=timezone.utc), "reference_id": "INV-1", "reference_type": "Sale", "narration": "n"}]
    legs = [
        {"entry_id": "JE-1", "account_id": "AC-CASH", "account_name": "Cash Account", "type": "debit", "amount": Decimal("5")},
        {"entry_id": "JE-1", "account_id": "AC-SALES", "account_name": "Sales", "type": "credit", "amount": Decimal("5")},
    ]
    cur = _DummyCursor([heads, legs])
    out = store.load_journal(cur, account_id="AC-CASH", limit=10)
    assert len(out) == 1 and len(out[0].transactions) == 2
    sql, params = cur.executed[0]
    assert "EXISTS" in sql and "LIMIT %s" in sql
    assert params == ("AC-CASH", 10)


def test_write_audit_serializes_details():
    cur = _DummyCursor()
    store.write_audit(cur, "sale_completed", "transaction", "INV-1", {"total": Decimal("78.40")})
    _sql, params = cur.executed[0]
    assert params[:3] == ("sale_completed", "transaction", "INV-1")
    assert json.loads(params[3]) == {"total": "78.40"}


def test_search_products_without_limit_reads_whole_catalog():
    cur = _DummyCursor([[_product_row()], [_batch_row()]])
    out = store.search_products(cur, limit=None)
    assert [p.id for p in out] == ["P1"]
    sql, params = cur.executed[0]
    assert "LIMIT" not in sql
    assert params == ()

    cur = _DummyCursor([[]])
    store.search_products(cur, "para", limit=5)
    sql, params = cur.executed[0]
    assert "LIMIT %s" in sql
    assert params == ("%para%", "%para%", "%para%", 5)
