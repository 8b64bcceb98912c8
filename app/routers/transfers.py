"""
Repasses: listing and manual re-reconciliation of a saved planilha.
"""
from fastapi import APIRouter, HTTPException

from app.db.supabase import get_db
from app.services.spreadsheet_store import get_spreadsheet_by_id
from app.services.transfer_ledger import delete_transfer, list_transfers
from app.services.transfer_reconciler import reconcile_transfer

router = APIRouter(prefix="/transfers", tags=["transfers"])


@router.get("")
async def get_transfers(customer_id: str | None = None):
    return [t.model_dump(mode="json") for t in list_transfers(get_db(), customer_id)]


@router.post("/reconcile/{spreadsheet_id}")
async def reconcile(spreadsheet_id: str):
    """Re-run the repasse for a stored planilha (e.g. after editing card values)."""
    db = get_db()
    snapshot = get_spreadsheet_by_id(db, spreadsheet_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Planilha {spreadsheet_id} não encontrada")

    result = reconcile_transfer(db, snapshot)
    if result is None:
        return {"status": "skipped"}
    return {
        "status": result.action,
        "id": result.transfer_id,
        "periodo": result.period_label,
        "valor_bruto": str(result.amounts.gross_amount),
        "taxas": str(result.amounts.fee_amount),
        "valor_liquido": str(result.amounts.net_amount),
    }


@router.delete("/{transfer_id}")
async def remove_transfer(transfer_id: str):
    if not delete_transfer(get_db(), transfer_id):
        raise HTTPException(status_code=404, detail=f"Repasse {transfer_id} não encontrado")
    return {"status": "ok"}
