"""
Card values editados pelo admin (quantidade, bruto, taxa R$, líquido) por período.
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.db.supabase import get_db
from app.models.spreadsheets import CardValueOverride, SpreadsheetType
from app.services.card_values import get_card_values, parse_override_value
from app.services.errors import SpreadsheetInputError
from app.services.spreadsheet_service import remove_overrides, save_overrides

router = APIRouter(prefix="/card-values", tags=["card-values"])


class CardValuesBody(BaseModel):
    customer_id: str
    terminal_id: str | None = None
    type: SpreadsheetType = "monthly"
    reference_month: str | None = None
    reference_date: str | None = None
    # Raw form values: "1.234,56", "1234.56", 1234.56 or "" (not overridden)
    quantidade_vendas: str | float | None = None
    valor_bruto: str | float | None = None
    taxa: str | float | None = None
    valor_liquido: str | float | None = None
    updated_by: str | None = None


def _override_payload(override: CardValueOverride | None) -> dict | None:
    if override is None:
        return None
    return override.model_dump(mode="json")


@router.get("")
async def read_card_values(
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
    reference_date: str | None = None,
):
    override = get_card_values(get_db(), customer_id, terminal_id, type, reference_month, reference_date)
    return {"card_values": _override_payload(override)}


@router.put("")
async def write_card_values(body: CardValuesBody):
    override = CardValueOverride(
        customer_id=body.customer_id,
        terminal_id=body.terminal_id or None,
        type=body.type,
        reference_month=body.reference_month or (body.reference_date or "")[:7] or None,
        reference_date=body.reference_date or None,
        sales_count=parse_override_value(body.quantidade_vendas),
        gross_amount=parse_override_value(body.valor_bruto),
        fee_amount=parse_override_value(body.taxa),
        net_amount=parse_override_value(body.valor_liquido),
    )
    try:
        saved = save_overrides(get_db(), override, body.updated_by)
    except SpreadsheetInputError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", "card_values": _override_payload(saved)}


@router.delete("")
async def clear_card_values(
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
    reference_date: str | None = None,
):
    try:
        deleted = remove_overrides(get_db(), customer_id, terminal_id, type, reference_month, reference_date)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", "deleted": deleted}
