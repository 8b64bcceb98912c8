"""
Planilhas: upload (preview + save), period listings, metrics, download.
"""
import logging

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from app.db.supabase import get_db
from app.models.spreadsheets import SpreadsheetSnapshot, SpreadsheetType
from app.services.errors import SpreadsheetInputError, SpreadsheetNotFound
from app.services.spreadsheet_service import (
    build_snapshot,
    confirm_save,
    export_spreadsheet,
    get_metrics,
    get_month_summary,
)
from app.services.spreadsheet_store import (
    delete_spreadsheets,
    get_latest_spreadsheet,
    get_spreadsheet_by_date,
    get_spreadsheet_by_id,
    get_spreadsheet_history,
    list_available_days,
    list_available_months,
    update_description,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/spreadsheets", tags=["spreadsheets"])

PREVIEW_ROWS = 50


def snapshot_payload(snapshot: SpreadsheetSnapshot, include_rows: bool = True) -> dict:
    payload = snapshot.model_dump(mode="json", by_alias=True)
    payload["has_original_file"] = snapshot.original_file is not None
    payload["total_rows"] = len(snapshot.rows)
    if not include_rows:
        payload.pop("rows")
        payload.pop("sales")
    return payload


def _load(db, spreadsheet_id: str) -> SpreadsheetSnapshot:
    snapshot = get_spreadsheet_by_id(db, spreadsheet_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Planilha {spreadsheet_id} não encontrada")
    return snapshot


async def _read_upload(
    file: UploadFile, customer_id: str, type: SpreadsheetType, terminal_id: str | None,
    reference_month: str | None, reference_date: str | None, description: str | None,
) -> SpreadsheetSnapshot:
    content = await file.read()
    db = get_db()
    try:
        return build_snapshot(
            db, content, file.filename or "", customer_id,
            type=type, terminal_id=terminal_id, reference_month=reference_month,
            reference_date=reference_date, description=description,
        )
    except SpreadsheetInputError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.post("/preview")
async def preview_spreadsheet(
    file: UploadFile = File(...),
    customer_id: str = Form(...),
    type: SpreadsheetType = Form("monthly"),
    terminal_id: str | None = Form(None),
    reference_month: str | None = Form(None),
    reference_date: str | None = Form(None),
):
    """Parse an upload and return what would be saved. Nothing is persisted."""
    snapshot = await _read_upload(file, customer_id, type, terminal_id, reference_month, reference_date, None)
    db = get_db()
    try:
        metrics = get_metrics(db, snapshot)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    payload = snapshot_payload(snapshot, include_rows=False)
    payload["rows"] = snapshot.rows[:PREVIEW_ROWS]
    payload["skipped_rows"] = snapshot.skipped_rows
    payload["sales_count"] = len(snapshot.sales)
    payload["metrics"] = metrics.model_dump(mode="json")
    return payload


@router.post("")
async def upload_spreadsheet(
    file: UploadFile = File(...),
    customer_id: str = Form(...),
    type: SpreadsheetType = Form("monthly"),
    terminal_id: str | None = Form(None),
    reference_month: str | None = Form(None),
    reference_date: str | None = Form(None),
    description: str | None = Form(None),
):
    """Parse and save a planilha, then reconcile its repasse."""
    snapshot = await _read_upload(
        file, customer_id, type, terminal_id, reference_month, reference_date, description,
    )
    try:
        result = confirm_save(get_db(), snapshot)
    except Exception as e:
        logger.exception("Planilha save failed for %s", customer_id)
        raise HTTPException(status_code=500, detail=f"Planilha não foi salva: {e}")

    repasse = None
    if result.reconciliation:
        r = result.reconciliation
        repasse = {
            "action": r.action,
            "id": r.transfer_id,
            "periodo": r.period_label,
            "valor_bruto": str(r.amounts.gross_amount),
            "taxas": str(r.amounts.fee_amount),
            "valor_liquido": str(r.amounts.net_amount),
        }
    return {
        "status": "ok",
        "spreadsheet": snapshot_payload(result.snapshot, include_rows=False),
        "skipped_rows": snapshot.skipped_rows,
        "repasse": repasse,
    }


@router.get("/months")
async def get_months(customer_id: str, terminal_id: str | None = None, type: SpreadsheetType = "monthly"):
    return list_available_months(get_db(), customer_id, terminal_id, type)


@router.get("/days")
async def get_days(customer_id: str, terminal_id: str | None = None, reference_month: str | None = None):
    return list_available_days(get_db(), customer_id, terminal_id, reference_month)


@router.get("/history")
async def get_history(customer_id: str, terminal_id: str | None = None, type: SpreadsheetType = "monthly"):
    history = get_spreadsheet_history(get_db(), customer_id, terminal_id, type)
    return {
        month: [snapshot_payload(s, include_rows=False) for s in snapshots]
        for month, snapshots in history.items()
    }


@router.get("/month-summary")
async def get_month_summary_cards(customer_id: str, reference_month: str, terminal_id: str | None = None):
    """Totals of the daily planilhas of one month (latest upload per day)."""
    days, metrics = get_month_summary(get_db(), customer_id, reference_month, terminal_id)
    return {
        "reference_month": reference_month,
        "days": days,
        "metrics": metrics.model_dump(mode="json") if metrics else None,
    }


@router.get("/latest")
async def get_latest(
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
):
    db = get_db()
    snapshot = get_latest_spreadsheet(db, customer_id, terminal_id, type, reference_month)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Nenhuma planilha encontrada")
    return {"spreadsheet": snapshot_payload(snapshot), "metrics": get_metrics(db, snapshot).model_dump(mode="json")}


@router.get("/by-date")
async def get_by_date(customer_id: str, reference_date: str, terminal_id: str | None = None):
    db = get_db()
    snapshot = get_spreadsheet_by_date(db, customer_id, reference_date, terminal_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Nenhuma planilha para {reference_date}")
    return {"spreadsheet": snapshot_payload(snapshot), "metrics": get_metrics(db, snapshot).model_dump(mode="json")}


@router.get("/{spreadsheet_id}/metrics")
async def get_spreadsheet_metrics(spreadsheet_id: str):
    db = get_db()
    return get_metrics(db, _load(db, spreadsheet_id)).model_dump(mode="json")


@router.get("/{spreadsheet_id}/download")
async def download_spreadsheet(spreadsheet_id: str):
    content, file_name, media_type = export_spreadsheet(_load(get_db(), spreadsheet_id))
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


class DescriptionUpdate(BaseModel):
    description: str | None = None


@router.patch("/{spreadsheet_id}/description")
async def patch_description(spreadsheet_id: str, body: DescriptionUpdate):
    try:
        snapshot = update_description(get_db(), spreadsheet_id, body.description)
    except SpreadsheetNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return snapshot_payload(snapshot, include_rows=False)


@router.delete("")
async def remove_spreadsheets(customer_id: str, terminal_id: str | None = None):
    try:
        deleted = delete_spreadsheets(get_db(), customer_id, terminal_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", "deleted": deleted}
