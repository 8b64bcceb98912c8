"""
Upload flow: read -> normalize -> preview -> confirm (save + repasse).

build_snapshot never touches the period store; nothing is persisted until
confirm_save. The repasse runs after a successful save and its failure never
undoes the save.
"""
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from openpyxl import Workbook
from pydantic import ValidationError

from app.models.customers import get_customer_fee_rate
from app.models.spreadsheets import CardValueOverride, SpreadsheetSnapshot, SpreadsheetType
from app.services.card_values import delete_card_values, get_card_values, save_card_values
from app.services.errors import SpreadsheetInputError
from app.services.metrics import SpreadsheetMetrics, aggregate_many, aggregate_metrics
from app.services.notifications import CardValuesUpdated, EventBus, SpreadsheetSaved, event_bus
from app.services.sales_normalizer import normalize_sales
from app.services.spreadsheet_reader import read_spreadsheet
from app.services.spreadsheet_store import get_spreadsheet_by_date, list_available_days, save_spreadsheet
from app.services.transfer_reconciler import ReconcileResult, reconcile_transfer

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class SaveResult:
    snapshot: SpreadsheetSnapshot
    reconciliation: ReconcileResult | None


def build_snapshot(
    db,
    content: bytes,
    file_name: str,
    customer_id: str,
    type: SpreadsheetType = "monthly",
    terminal_id: str | None = None,
    reference_month: str | None = None,
    reference_date: str | None = None,
    description: str | None = None,
) -> SpreadsheetSnapshot:
    """Parse an upload into an unsaved snapshot (preview)."""
    parsed = read_spreadsheet(content, file_name)
    uploaded_at = datetime.now(timezone.utc)

    fee_rate = get_customer_fee_rate(db, customer_id)
    normalized = normalize_sales(parsed.rows, parsed.headers, fee_rate)

    try:
        snapshot = SpreadsheetSnapshot(
            customer_id=customer_id,
            terminal_id=terminal_id or None,
            file_name=file_name,
            uploaded_at=uploaded_at,
            type=type,
            reference_month=reference_month or (reference_date or "")[:7] or uploaded_at.strftime("%Y-%m"),
            reference_date=reference_date or None,
            headers=parsed.headers,
            rows=parsed.rows,
            sales=normalized.sales,
            skipped_rows=normalized.skipped_rows,
            original_file=content,
            description=(description or "").strip() or None,
        )
    except ValidationError as e:
        raise SpreadsheetInputError(_first_error(e), file_name) from e

    logger.info(
        "Preview %s for %s: %d rows, %d sales, %d skipped",
        file_name, customer_id, len(parsed.rows), len(normalized.sales), normalized.skipped_count,
    )
    return snapshot


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    return str(errors[0].get("msg", e)).removeprefix("Value error, ")


def confirm_save(db, snapshot: SpreadsheetSnapshot, bus: EventBus = event_bus) -> SaveResult:
    """Persist the previewed snapshot. Store errors propagate; repasse errors don't."""
    saved = save_spreadsheet(db, snapshot)

    reconciliation = reconcile_transfer(db, saved, bus)
    if reconciliation is None:
        logger.warning("Planilha %s saved without repasse", saved.id)

    bus.emit(SpreadsheetSaved(
        customer_id=saved.customer_id,
        terminal_id=saved.terminal_id,
        type=saved.type,
        reference_month=saved.reference_month,
        reference_date=saved.reference_date,
        spreadsheet_id=saved.id,
    ))
    return SaveResult(snapshot=saved, reconciliation=reconciliation)


def get_metrics(db, snapshot: SpreadsheetSnapshot) -> SpreadsheetMetrics:
    override = get_card_values(
        db,
        snapshot.customer_id,
        snapshot.terminal_id,
        snapshot.type,
        snapshot.reference_month,
        snapshot.reference_date,
    )
    return aggregate_metrics(snapshot, get_customer_fee_rate(db, snapshot.customer_id), override)


def get_month_summary(
    db,
    customer_id: str,
    reference_month: str,
    terminal_id: str | None = None,
) -> tuple[list[str], SpreadsheetMetrics | None]:
    """Combined cards of the canonical daily planilha of every day in a month."""
    days = list_available_days(db, customer_id, terminal_id, reference_month)
    snapshots = []
    for day in days:
        snapshot = get_spreadsheet_by_date(db, customer_id, day, terminal_id)
        if snapshot is not None:
            snapshots.append(snapshot)
    return days, aggregate_many(snapshots, get_customer_fee_rate(db, customer_id))


def save_overrides(db, override: CardValueOverride, updated_by: str | None = None,
                   bus: EventBus = event_bus) -> CardValueOverride:
    if override.type == "daily" and not override.reference_date:
        raise SpreadsheetInputError("Valores diários exigem reference_date")
    if not override.reference_month and not override.reference_date:
        raise SpreadsheetInputError("Informe reference_month")

    saved = save_card_values(db, override, updated_by)
    bus.emit(CardValuesUpdated(
        customer_id=saved.customer_id,
        terminal_id=saved.terminal_id,
        type=saved.type,
        reference_month=saved.reference_month,
        reference_date=saved.reference_date,
        action="saved",
    ))
    return saved


def remove_overrides(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
    reference_date: str | None = None,
    bus: EventBus = event_bus,
) -> int:
    deleted = delete_card_values(db, customer_id, terminal_id, type, reference_month, reference_date)
    bus.emit(CardValuesUpdated(
        customer_id=customer_id,
        terminal_id=terminal_id,
        type=type,
        reference_month=reference_month or (reference_date or "")[:7] or None,
        reference_date=reference_date,
        action="deleted",
    ))
    return deleted


def export_spreadsheet(snapshot: SpreadsheetSnapshot) -> tuple[bytes, str, str]:
    """(content, file name, media type). Rebuilds an .xlsx when the original wasn't kept."""
    if snapshot.original_file:
        media_type = "text/csv" if snapshot.file_name.lower().endswith(".csv") else XLSX_MEDIA_TYPE
        return snapshot.original_file, snapshot.file_name, media_type

    wb = Workbook()
    ws = wb.active
    ws.title = "Planilha"
    ws.append(list(snapshot.headers))
    for row in snapshot.rows:
        ws.append([row.get(h) for h in snapshot.headers])

    buffer = io.BytesIO()
    wb.save(buffer)
    base = snapshot.file_name.rsplit(".", 1)[0] if snapshot.file_name else f"planilha_{snapshot.period_key}"
    return buffer.getvalue(), f"{base}.xlsx", XLSX_MEDIA_TYPE
