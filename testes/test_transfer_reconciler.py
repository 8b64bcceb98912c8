"""
Tests for transfer_reconciler.py and transfer_ledger.py

What it tests:
1. Period labels ("15/03/2024", "Março/2024")
2. Amount precedence: override taxa > 5.10% of override bruto > computed rate > 5.10%
3. Idempotence: reconciling twice leaves one repasse, updates money, keeps status
4. Zero bruto never creates a repasse
5. Store failures are swallowed (the save upstream is never undone)
6. transfer-reconciled events carry action and repasse id
"""
from datetime import datetime, timezone
from decimal import Decimal

from builders import make_snapshot
from fake_supabase import FakeSupabase

from app.models.spreadsheets import CardValueOverride
from app.services.metrics import SpreadsheetMetrics
from app.services.transfer_ledger import TABLE, list_transfers, update_transfer
from app.services.transfer_reconciler import (
    compute_transfer_amounts,
    period_label,
    reconcile_transfer,
    send_date,
)

DEFAULT = Decimal("5.10")

# ── Labels ────────────────────────────────────────────────────────────────────


def test_period_labels():
    assert period_label(make_snapshot(type="daily", reference_date="2024-03-05")) == "05/03/2024"
    assert period_label(make_snapshot(reference_month="2024-03")) == "Março/2024"
    assert period_label(make_snapshot(reference_month="2023-12")) == "Dezembro/2023"


def test_send_date_daily_is_reference_date_monthly_is_local_upload_day():
    assert send_date(make_snapshot(type="daily", reference_date="2024-03-05")) == "2024-03-05"
    # 2024-03-20 01:30 UTC is still the 19th in Brasília
    late = make_snapshot(uploaded_at=datetime(2024, 3, 20, 1, 30, tzinfo=timezone.utc))
    assert send_date(late) == "2024-03-19"


# ── Amounts ───────────────────────────────────────────────────────────────────


def _metrics(gross, rate="0"):
    return SpreadsheetMetrics(gross_amount=Decimal(gross), fee_rate=Decimal(rate))


def _override(**values):
    return CardValueOverride(customer_id="cust-1", reference_month="2024-03",
                             **{k: Decimal(v) for k, v in values.items()})


AMOUNT_CASES = [
    # (metrics gross, metrics rate, override fields, expected (bruto, taxas, liquido))
    ("1000", "2.5", {},                                        ("1000.00", "25.00", "975.00")),
    ("1000", "0",   {},                                        ("1000.00", "51.00", "949.00")),
    ("1000", "2.5", {"gross_amount": "2000"},                  ("2000.00", "102.00", "1898.00")),
    ("1000", "2.5", {"fee_amount": "10"},                      ("1000.00", "10.00", "990.00")),
    ("1000", "2.5", {"fee_amount": "0"},                       ("1000.00", "25.00", "975.00")),
    ("1000", "2.5", {"net_amount": "900"},                     ("1000.00", "25.00", "900.00")),
    ("1000", "2.5", {"gross_amount": "2000", "fee_amount": "40", "net_amount": "1950"},
                                                               ("2000.00", "40.00", "1950.00")),
    ("0",    "2.5", {},                                        ("0.00", "0.00", "0.00")),
]


def test_compute_transfer_amounts():
    for gross, rate, fields, expected in AMOUNT_CASES:
        override = _override(**fields) if fields else None
        amounts = compute_transfer_amounts(_metrics(gross, rate), override, DEFAULT)
        got = (amounts.gross_amount, amounts.fee_amount, amounts.net_amount)
        assert got == tuple(Decimal(e) for e in expected), (gross, rate, fields)


# ── Reconcile ─────────────────────────────────────────────────────────────────


def test_reconcile_twice_keeps_one_entry_and_status(db, bus):
    db.tables["customers"] = [{"id": "cust-1", "name": "Padaria Central"}]
    snapshot = make_snapshot(id="s1")

    first = reconcile_transfer(db, snapshot, bus)
    assert first.action == "created"
    entry = db.rows(TABLE)[0]
    assert entry["status"] == "pendente"
    assert entry["periodo"] == "Março/2024"
    assert entry["customer_name"] == "Padaria Central"
    assert entry["data_envio"] == "2024-03-20T12:00:00.000Z"
    assert entry["id"].startswith("transfer_")

    # admin pays the repasse, then a corrected planilha comes in
    entry["status"] = "pago"
    corrected = make_snapshot(
        ["Valor Bruto", "Taxa"], [["2.000,00", "2,5"]], id="s2",
    )
    second = reconcile_transfer(db, corrected, bus)

    assert second.action == "updated"
    assert second.transfer_id == first.transfer_id
    rows = db.rows(TABLE)
    assert len(rows) == 1
    assert rows[0]["status"] == "pago"
    assert rows[0]["valor_bruto"] == "2000.00"
    assert rows[0]["taxas"] == "50.00"
    assert rows[0]["valor_liquido"] == "1950.00"
    assert rows[0]["data_envio"] == "2024-03-20T12:00:00.000Z"


def test_daily_and_monthly_are_separate_periods(db, bus):
    reconcile_transfer(db, make_snapshot(), bus)
    reconcile_transfer(db, make_snapshot(type="daily", reference_date="2024-03-15"), bus)
    assert sorted(r["periodo"] for r in db.rows(TABLE)) == ["15/03/2024", "Março/2024"]


def test_override_and_customer_rate_flow_into_repasse(db, bus):
    db.tables["customer_taxes"] = [{"customer_id": "cust-1", "taxa": 3}]
    db.tables["customer_card_values"] = [{
        "id": "cv1", "customer_id": "cust-1", "terminal_id": None, "type": "monthly",
        "reference_month": "2024-03", "reference_date": None,
        "quantidade_vendas": None, "valor_bruto": None, "taxa": None, "valor_liquido": "1400",
        "updated_at": "2024-03-21T00:00:00+00:00",
    }]

    result = reconcile_transfer(db, make_snapshot(), bus)

    assert result.amounts.gross_amount == Decimal("1500.00")
    assert result.amounts.fee_amount == Decimal("45.00")
    assert result.amounts.net_amount == Decimal("1400.00")


def test_zero_gross_creates_nothing(db, bus):
    snapshot = make_snapshot(["Valor Bruto"], [["0"], [""]])
    assert reconcile_transfer(db, snapshot, bus) is None
    assert db.rows(TABLE) == []
    assert bus.recent_events() == []


def test_store_failure_is_swallowed(bus):
    db = FakeSupabase()
    db.fail_on.add(("transfers", "insert"))

    assert reconcile_transfer(db, make_snapshot(), bus) is None
    assert bus.recent_events() == []


def test_emits_transfer_reconciled(db, bus):
    seen = []
    bus.subscribe("transfer-reconciled", seen.append)

    created = reconcile_transfer(db, make_snapshot(), bus)
    updated = reconcile_transfer(db, make_snapshot(), bus)

    assert [e.action for e in seen] == ["created", "updated"]
    assert seen[0].transfer_id == created.transfer_id == updated.transfer_id
    assert seen[0].reference_month == "2024-03"


# ── Ledger ────────────────────────────────────────────────────────────────────


def test_update_transfer_only_touches_money(db, bus):
    created = reconcile_transfer(db, make_snapshot(), bus)

    entry = update_transfer(db, created.transfer_id, {
        "net_amount": Decimal("1.005"),
        "status": "pago",
    })
    assert entry.net_amount == Decimal("1.01")
    assert entry.status == "pendente"
    assert update_transfer(db, "missing", {"gross_amount": Decimal("1")}) is None


def test_list_transfers_newest_send_date_first(db, bus):
    reconcile_transfer(db, make_snapshot(type="daily", reference_date="2024-03-01"), bus)
    reconcile_transfer(db, make_snapshot(type="daily", reference_date="2024-03-09"), bus)
    reconcile_transfer(db, make_snapshot(customer_id="cust-2", type="daily", reference_date="2024-03-05"), bus)

    assert [t.sent_date for t in list_transfers(db)] == ["2024-03-09", "2024-03-05", "2024-03-01"]
    assert len(list_transfers(db, "cust-2")) == 1
