"""
Period store - planilha snapshots in the customer_spreadsheets table.

Save semantics:
  - monthly: one live planilha per (customer, terminal, reference_month);
    a new upload replaces the existing row.
  - daily: every upload is a new row; the canonical one per reference_date is
    the most recently uploaded.

terminal_id None always means "customer-general planilha" (terminal_id IS NULL),
never "any terminal".
"""
import base64
import logging
import re
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from app.models.spreadsheets import SpreadsheetSnapshot, SpreadsheetType
from app.services.errors import SpreadsheetNotFound

logger = logging.getLogger(__name__)

TABLE = "customer_spreadsheets"


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


# PostgREST trims trailing zeros from fractional seconds (".12345"); older
# fromisoformat only takes 3 or 6 digits
_FRACTION_RE = re.compile(r"\.(\d+)")


def _pad_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        ts = raw
    elif raw:
        text = str(raw).replace("Z", "+00:00")
        ts = datetime.fromisoformat(_FRACTION_RE.sub(_pad_fraction, text, count=1))
    else:
        ts = datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def snapshot_to_row(snapshot: SpreadsheetSnapshot) -> dict:
    dumped = snapshot.model_dump(mode="json", by_alias=True)
    original = snapshot.original_file
    return {
        "id": snapshot.id,
        "customer_id": snapshot.customer_id,
        "terminal_id": snapshot.terminal_id or None,
        "file_name": snapshot.file_name,
        "uploaded_at": snapshot.uploaded_at.isoformat(),
        "reference_month": snapshot.reference_month,
        "reference_date": snapshot.reference_date or None,
        "type": snapshot.type,
        "data": {"data": dumped["rows"]},
        "headers": list(snapshot.headers),
        "sales": dumped["sales"],
        "original_file": base64.b64encode(original).decode("ascii") if original else None,
        "description": snapshot.description or None,
    }


def row_to_snapshot(row: dict) -> SpreadsheetSnapshot:
    uploaded_at = _parse_timestamp(row.get("uploaded_at"))
    data = row.get("data") or {}
    original = row.get("original_file")
    return SpreadsheetSnapshot(
        id=row.get("id"),
        customer_id=row["customer_id"],
        terminal_id=row.get("terminal_id") or None,
        file_name=row.get("file_name") or "",
        uploaded_at=uploaded_at,
        type=row.get("type") or "monthly",
        reference_month=(
            row.get("reference_month")
            or (row.get("reference_date") or "")[:7]
            or uploaded_at.strftime("%Y-%m")
        ),
        reference_date=row.get("reference_date") or None,
        headers=row.get("headers") or [],
        rows=data.get("data", []) if isinstance(data, dict) else data,
        sales=row.get("sales") or [],
        original_file=base64.b64decode(original) if original else None,
        description=row.get("description") or None,
    )


def _scope(query, customer_id: str, terminal_id: str | None):
    query = query.eq("customer_id", customer_id)
    if terminal_id:
        return query.eq("terminal_id", terminal_id)
    return query.is_("terminal_id", "null")


def _new_id(snapshot: SpreadsheetSnapshot) -> str:
    return (
        f"spreadsheet_{snapshot.type}_{snapshot.customer_id}_"
        f"{snapshot.terminal_id or 'general'}_{snapshot.period_key}_{int(time.time() * 1000)}"
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def save_spreadsheet(db, snapshot: SpreadsheetSnapshot) -> SpreadsheetSnapshot:
    """Persist a planilha. Store errors propagate to the caller."""
    if snapshot.type == "monthly":
        existing = (
            _scope(db.table(TABLE).select("id"), snapshot.customer_id, snapshot.terminal_id)
            .eq("reference_month", snapshot.reference_month)
            .eq("type", "monthly")
            .order("uploaded_at", desc=True)
            .execute()
        ).data or []

        if existing:
            saved = snapshot.model_copy(update={"id": existing[0]["id"]})
            db.table(TABLE).update(snapshot_to_row(saved)).eq("id", saved.id).execute()
            # Older duplicates would break the one-live-monthly invariant
            for stale in existing[1:]:
                db.table(TABLE).delete().eq("id", stale["id"]).execute()
            logger.info(
                "Monthly planilha replaced: %s %s (%s)",
                snapshot.customer_id, snapshot.reference_month, saved.id,
            )
            return saved

    saved = snapshot.model_copy(update={"id": _new_id(snapshot)})
    db.table(TABLE).insert(snapshot_to_row(saved)).execute()
    logger.info(
        "%s planilha inserted: %s %s (%s)",
        snapshot.type.capitalize(), snapshot.customer_id, snapshot.period_key, saved.id,
    )
    return saved


def update_description(db, spreadsheet_id: str, description: str | None) -> SpreadsheetSnapshot:
    result = (
        db.table(TABLE)
        .update({"description": (description or "").strip() or None})
        .eq("id", spreadsheet_id)
        .execute()
    )
    if not result.data:
        raise SpreadsheetNotFound(spreadsheet_id)
    return row_to_snapshot(result.data[0])


def delete_spreadsheets(db, customer_id: str, terminal_id: str | None = None) -> int:
    result = _scope(db.table(TABLE).delete(), customer_id, terminal_id).execute()
    deleted = len(result.data or [])
    logger.info("Deleted %d planilhas for %s/%s", deleted, customer_id, terminal_id or "general")
    return deleted


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_spreadsheet_by_id(db, spreadsheet_id: str) -> SpreadsheetSnapshot | None:
    result = db.table(TABLE).select("*").eq("id", spreadsheet_id).limit(1).execute()
    return row_to_snapshot(result.data[0]) if result.data else None


def get_latest_spreadsheet(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
) -> SpreadsheetSnapshot | None:
    query = _scope(db.table(TABLE).select("*"), customer_id, terminal_id).eq("type", type)
    if reference_month:
        query = query.eq("reference_month", reference_month)
    result = query.order("uploaded_at", desc=True).limit(1).execute()
    return row_to_snapshot(result.data[0]) if result.data else None


def get_spreadsheet_by_date(
    db,
    customer_id: str,
    reference_date: str,
    terminal_id: str | None = None,
) -> SpreadsheetSnapshot | None:
    """Most recent daily planilha for a day; a terminal falls back to the general one."""
    if not reference_date:
        return None
    reference_date = reference_date.strip()

    scopes = [terminal_id, None] if terminal_id else [None]
    for scope_terminal in scopes:
        result = (
            _scope(db.table(TABLE).select("*"), customer_id, scope_terminal)
            .eq("type", "daily")
            .eq("reference_date", reference_date)
            .order("uploaded_at", desc=True)
            .limit(1)
            .execute()
        )
        if result.data:
            return row_to_snapshot(result.data[0])
    return None


def list_spreadsheets(db, customer_id: str, terminal_id: str | None = None) -> list[SpreadsheetSnapshot]:
    """All planilhas of a customer (every terminal unless one is given), newest first."""
    query = db.table(TABLE).select("*").eq("customer_id", customer_id)
    if terminal_id:
        query = query.eq("terminal_id", terminal_id)
    result = query.order("uploaded_at", desc=True).execute()
    return [row_to_snapshot(r) for r in result.data or []]


def list_available_months(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
) -> list[str]:
    result = (
        _scope(db.table(TABLE).select("reference_month"), customer_id, terminal_id)
        .eq("type", type)
        .execute()
    )
    months = {r["reference_month"] for r in result.data or [] if r.get("reference_month")}
    return sorted(months, reverse=True)


def list_available_days(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    reference_month: str | None = None,
) -> list[str]:
    """Days with a daily planilha, newest first, one entry per day."""
    query = (
        _scope(db.table(TABLE).select("reference_date, uploaded_at"), customer_id, terminal_id)
        .eq("type", "daily")
        .not_.is_("reference_date", "null")
    )
    if reference_month:
        query = query.eq("reference_month", reference_month)
    result = query.order("uploaded_at", desc=True).execute()

    latest_upload: dict[str, str] = {}
    for row in result.data or []:
        day = row.get("reference_date")
        if not day:
            continue
        uploaded = row.get("uploaded_at") or ""
        if day not in latest_upload or uploaded > latest_upload[day]:
            latest_upload[day] = uploaded

    return sorted(latest_upload, reverse=True)


def get_spreadsheet_history(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
) -> dict[str, list[SpreadsheetSnapshot]]:
    """Planilhas grouped by reference_month, each group newest first."""
    history: dict[str, list[SpreadsheetSnapshot]] = defaultdict(list)
    for snapshot in list_spreadsheets(db, customer_id, terminal_id):
        if snapshot.type != type:
            continue
        history[snapshot.reference_month].append(snapshot)
    for group in history.values():
        group.sort(key=lambda s: s.uploaded_at, reverse=True)
    return dict(history)
