"""
Tests for notifications.py

What it tests:
1. Subscribed handlers receive the event they asked for, and only that one
2. A failing handler is logged and the remaining handlers still run
3. unsubscribe stops delivery; recent_events keeps recording
4. recent_events: newest first, per-customer filter, limit
"""
from builders import make_snapshot

from app.services.notifications import CardValuesUpdated, EventBus, SpreadsheetSaved
from app.services.transfer_reconciler import reconcile_transfer


def _saved(customer_id="cust-1", spreadsheet_id="s1"):
    return SpreadsheetSaved(customer_id=customer_id, terminal_id=None, type="monthly",
                            reference_month="2024-03", spreadsheet_id=spreadsheet_id)


# ── Delivery ──────────────────────────────────────────────────────────────────


def test_handler_receives_transfer_reconciled(db):
    bus = EventBus()
    reconciled, saved = [], []
    bus.subscribe("transfer-reconciled", reconciled.append)
    bus.subscribe("spreadsheet-saved", saved.append)

    result = reconcile_transfer(db, make_snapshot(), bus)

    assert [e.transfer_id for e in reconciled] == [result.transfer_id]
    assert reconciled[0].action == "created"
    assert saved == []


def test_failing_handler_does_not_stop_the_others(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("dashboard push down")

    bus.subscribe("spreadsheet-saved", broken)
    bus.subscribe("spreadsheet-saved", seen.append)

    bus.emit(_saved())

    assert len(seen) == 1
    assert "dashboard push down" in caplog.text
    assert [e["event"] for e in bus.recent_events()] == ["spreadsheet-saved"]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    seen = []
    bus.subscribe("spreadsheet-saved", seen.append)
    bus.emit(_saved(spreadsheet_id="s1"))

    bus.unsubscribe("spreadsheet-saved", seen.append)
    bus.unsubscribe("spreadsheet-saved", seen.append)  # second call is a no-op
    bus.emit(_saved(spreadsheet_id="s2"))

    assert [e.spreadsheet_id for e in seen] == ["s1"]
    assert len(bus.recent_events()) == 2


# ── Recent events ─────────────────────────────────────────────────────────────


def test_recent_events_filter_and_limit():
    bus = EventBus(history=3)
    bus.emit(_saved("cust-1", "s1"))
    bus.emit(_saved("cust-2", "s2"))
    bus.emit(CardValuesUpdated(customer_id="cust-1", terminal_id=None, type="monthly",
                               reference_month="2024-03", action="saved"))
    bus.emit(_saved("cust-1", "s3"))

    events = bus.recent_events()
    assert [e.get("spreadsheet_id") for e in events] == ["s3", None, "s2"]
    assert [e["event"] for e in bus.recent_events("cust-1")] == ["spreadsheet-saved", "card-values-updated"]
    assert len(bus.recent_events(limit=1)) == 1
