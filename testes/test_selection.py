"""
Tests for selection.py

What it tests:
1. UNSELECTED -> AUTO_SELECTED on first non-empty period list (most recent)
2. Operator choice is sticky across any number of background refreshes
3. Context change (customer/terminal/type) resets to UNSELECTED
4. Stale refresh results (old generation or old key) are dropped
5. ViewSession.refresh against the store, and the async ViewRefresher
6. Views the dashboard stopped touching are evicted and no longer refreshed
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from builders import make_snapshot

from app.services.selection import (
    PeriodSelection,
    SelectionContext,
    SelectionMachine,
    SelectionState,
    ViewContent,
    ViewRefresher,
    ViewRegistry,
    ViewSession,
)
from app.services.spreadsheet_store import save_spreadsheet

MONTHLY = SelectionContext(customer_id="cust-1")

# ── Pure transitions ──────────────────────────────────────────────────────────


def test_first_load_auto_selects_most_recent():
    s = PeriodSelection(context=MONTHLY)
    assert s.state == SelectionState.UNSELECTED

    s = s.on_periods_loaded(["2024-05", "2024-04"])
    assert s.state == SelectionState.AUTO_SELECTED
    assert s.selected_key == "2024-05"


def test_empty_load_stays_unselected():
    s = PeriodSelection(context=MONTHLY).on_periods_loaded([])
    assert s.state == SelectionState.UNSELECTED
    assert s.selected_key is None


def test_auto_selection_is_not_repeated_on_later_loads():
    s = PeriodSelection(context=MONTHLY).on_periods_loaded(["2024-05"])
    s = s.on_periods_loaded(["2024-06", "2024-05"])
    assert s.selected_key == "2024-05"
    assert s.available == ("2024-06", "2024-05")


def test_user_selection_survives_ten_refresh_cycles():
    s = PeriodSelection(context=MONTHLY).on_periods_loaded(["2024-05", "2024-04"])
    s = s.on_user_select("2024-04")
    assert s.state == SelectionState.USER_SELECTED

    period_lists = [
        ["2024-05", "2024-04"],
        ["2024-06", "2024-05", "2024-04"],
        [],
        ["2024-05"],
        ["2024-07"],
    ]
    for cycle in range(10):
        s = s.on_periods_loaded(period_lists[cycle % len(period_lists)])
        assert s.selected_key == "2024-04", f"cycle {cycle}"
        assert s.state == SelectionState.USER_SELECTED


def test_context_change_resets_and_reauto_selects():
    s = PeriodSelection(context=MONTHLY).on_periods_loaded(["2024-05", "2024-04"]).on_user_select("2024-04")

    s = s.on_context_change(SelectionContext(customer_id="cust-1", terminal_id="T2"))
    assert s.state == SelectionState.UNSELECTED
    assert s.selected_key is None
    assert s.generation == 1

    s = s.on_periods_loaded(["2024-03", "2024-02"])
    assert s.state == SelectionState.AUTO_SELECTED
    assert s.selected_key == "2024-03"


def test_same_context_is_a_no_op():
    s = PeriodSelection(context=MONTHLY).on_periods_loaded(["2024-05"]).on_user_select("2024-05")
    assert s.on_context_change(SelectionContext(customer_id="cust-1")) is s


def test_type_switch_is_a_context_change():
    s = PeriodSelection(context=MONTHLY).on_periods_loaded(["2024-05"])
    s = s.on_context_change(SelectionContext(customer_id="cust-1", type="daily"))
    assert s.state == SelectionState.UNSELECTED


@pytest.mark.parametrize("context,key", [
    (MONTHLY, "2024-13"),
    (MONTHLY, "2024-05-01"),
    (SelectionContext(customer_id="cust-1", type="daily"), "2024-05"),
    (SelectionContext(customer_id="cust-1", type="daily"), "15/05/2024"),
])
def test_invalid_user_keys_are_rejected(context, key):
    with pytest.raises(ValueError):
        PeriodSelection(context=context).on_user_select(key)


# ── Machine: stale results ────────────────────────────────────────────────────


def test_content_for_previous_key_is_dropped():
    machine = SelectionMachine(MONTHLY)
    machine.apply_periods(machine.begin_refresh(), ["2024-05", "2024-04"])

    in_flight = machine.begin_refresh()  # fetch for 2024-05 starts
    machine.select("2024-04")           # operator changes mid-flight

    assert machine.apply_content(in_flight, ViewContent(snapshot=None)) is False
    assert machine.content is None
    assert machine.selection.selected_key == "2024-04"


def test_results_from_before_context_change_are_dropped():
    machine = SelectionMachine(MONTHLY)
    in_flight = machine.begin_refresh()
    machine.change_context(SelectionContext(customer_id="cust-2"))

    assert machine.apply_periods(in_flight, ["2024-05"]) is False
    assert machine.selection.state == SelectionState.UNSELECTED
    assert machine.selection.available == ()


def test_current_content_is_applied():
    machine = SelectionMachine(MONTHLY)
    machine.apply_periods(machine.begin_refresh(), ["2024-05"])
    ticket = machine.begin_refresh()
    content = ViewContent(snapshot=make_snapshot(reference_month="2024-05"))

    assert machine.apply_content(ticket, content) is True
    assert machine.content is content


# ── ViewSession against the store ─────────────────────────────────────────────


def _seed_months(db):
    t0 = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)
    for i, month in enumerate(["2024-04", "2024-05"]):
        save_spreadsheet(db, make_snapshot(reference_month=month, file_name=f"{month}.xlsx",
                                           uploaded_at=t0 + timedelta(minutes=i)))


def test_session_refresh_auto_selects_and_loads_content(db):
    _seed_months(db)
    session = ViewSession(context=MONTHLY, db=db)

    selection = session.refresh()

    assert selection.state == SelectionState.AUTO_SELECTED
    assert selection.selected_key == "2024-05"
    assert session.machine.content.snapshot.file_name == "2024-05.xlsx"
    assert session.machine.content.metrics.gross_amount > 0


def test_session_keeps_user_choice_while_new_months_arrive(db):
    _seed_months(db)
    session = ViewSession(context=MONTHLY, db=db)
    session.refresh()
    session.machine.select("2024-04")

    for i in range(10):
        if i == 3:
            save_spreadsheet(db, make_snapshot(reference_month="2024-06"))
        session.refresh()
        assert session.machine.selection.selected_key == "2024-04"
        assert session.machine.content.snapshot.reference_month == "2024-04"

    assert session.machine.selection.available[0] == "2024-06"


def test_daily_session_lists_days(db):
    save_spreadsheet(db, make_snapshot(type="daily", reference_date="2024-05-02"))
    save_spreadsheet(db, make_snapshot(type="daily", reference_date="2024-05-03"))

    session = ViewSession(context=SelectionContext(customer_id="cust-1", type="daily"), db=db)
    session.refresh()

    payload = session.to_dict()
    assert payload["state"] == "auto_selected"
    assert payload["selected"] == "2024-05-03"
    assert payload["available"] == ["2024-05-03", "2024-05-02"]
    assert payload["spreadsheet"]["reference_date"] == "2024-05-03"


def test_session_without_data_stays_unselected(db):
    session = ViewSession(context=MONTHLY, db=db)
    session.refresh()
    payload = session.to_dict()
    assert payload["state"] == "unselected"
    assert payload["spreadsheet"] is None
    assert payload["metrics"] is None


# ── Refresher ─────────────────────────────────────────────────────────────────


def test_refresher_refreshes_every_view_and_survives_failures(db):
    _seed_months(db)
    registry = ViewRegistry()
    good = registry.add(ViewSession(context=MONTHLY, db=db))

    broken_db = type(db)()
    broken_db.fail_on.add("customer_spreadsheets")
    registry.add(ViewSession(context=MONTHLY, db=broken_db))

    refresher = ViewRefresher(registry, interval_seconds=0.01)
    refreshed = asyncio.run(refresher.refresh_all())

    assert refreshed == 1
    assert refresher.cycles == 1
    assert good.machine.selection.selected_key == "2024-05"


def test_registry_add_get_remove():
    registry = ViewRegistry()
    session = registry.add(ViewSession(context=MONTHLY, db=object()))
    assert registry.get(session.id) is session
    assert registry.remove(session.id) is True
    assert registry.remove(session.id) is False
    assert registry.all() == []


def test_idle_views_are_evicted_and_not_refreshed(db):
    _seed_months(db)
    registry = ViewRegistry()
    active = registry.add(ViewSession(context=MONTHLY, db=db))

    idle_db = type(db)()
    idle = registry.add(ViewSession(context=MONTHLY, db=idle_db))
    idle.last_seen -= 600

    refresher = ViewRefresher(registry, interval_seconds=0.01, idle_timeout_seconds=300)
    for _ in range(3):
        assert asyncio.run(refresher.refresh_all()) == 1

    assert registry.get(idle.id) is None
    assert registry.get(active.id) is active
    assert idle_db.calls == []
    assert idle.machine.selection.state == SelectionState.UNSELECTED


def test_touch_keeps_a_view_alive():
    registry = ViewRegistry()
    session = registry.add(ViewSession(context=MONTHLY, db=object()))
    session.last_seen -= 600
    session.touch()

    assert registry.evict_idle(300) == []
    assert registry.evict_idle(300, now=session.last_seen + 301) == [session.id]
    assert registry.all() == []
