"""
Card Value Override Store - admin-edited card values per period.

Key: (customer, terminal, type, reference_month[, reference_date for daily]).
terminal_id None is the customer-general override. Fields left empty are not
stored, so they keep falling back to the computed metric.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.models.spreadsheets import CardValueOverride, SpreadsheetType
from app.services.br_numbers import parse_br_number

logger = logging.getLogger(__name__)

TABLE = "customer_card_values"

# CardValueOverride field -> customer_card_values column
COLUMNS = {
    "sales_count": "quantidade_vendas",
    "gross_amount": "valor_bruto",
    "fee_amount": "taxa",
    "net_amount": "valor_liquido",
}


def parse_override_value(raw: Any) -> Decimal | None:
    """Form input -> Decimal. Empty input means "not overridden"."""
    if raw is None:
        return None
    if isinstance(raw, str) and raw.strip() == "":
        return None
    return parse_br_number(raw)


def _key_query(query, customer_id: str, terminal_id: str | None, type: SpreadsheetType,
               reference_month: str | None, reference_date: str | None):
    query = query.eq("customer_id", customer_id).eq("type", type)
    query = query.eq("terminal_id", terminal_id) if terminal_id else query.is_("terminal_id", "null")
    if reference_month:
        query = query.eq("reference_month", reference_month)
    if type == "daily":
        query = query.eq("reference_date", reference_date) if reference_date else query.is_("reference_date", "null")
    return query


def _row_to_override(row: dict) -> CardValueOverride:
    values = {
        field_name: (parse_br_number(row[column]) if row.get(column) is not None else None)
        for field_name, column in COLUMNS.items()
    }
    return CardValueOverride(
        customer_id=row["customer_id"],
        terminal_id=row.get("terminal_id") or None,
        reference_month=row.get("reference_month") or None,
        reference_date=row.get("reference_date") or None,
        type=row.get("type") or "monthly",
        **values,
    )


def get_card_values(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
    reference_date: str | None = None,
) -> CardValueOverride | None:
    if reference_date and not reference_month:
        reference_month = reference_date[:7]
    result = (
        _key_query(db.table(TABLE).select("*"), customer_id, terminal_id, type,
                   reference_month, reference_date)
        .order("updated_at", desc=True)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    override = _row_to_override(result.data[0])
    return override if override.has_values() else None


def save_card_values(db, override: CardValueOverride, updated_by: str | None = None) -> CardValueOverride:
    """Upsert by key. Update-then-insert: NULL terminal/date never conflict in a unique index."""
    reference_month = override.reference_month or (override.reference_date or "")[:7] or None
    row = {
        "customer_id": override.customer_id,
        "terminal_id": override.terminal_id or None,
        "type": override.type,
        "reference_month": reference_month,
        "reference_date": override.reference_date if override.type == "daily" else None,
        "updated_by": updated_by,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    for field_name, column in COLUMNS.items():
        value = getattr(override, field_name)
        row[column] = str(value) if value is not None else None

    existing = (
        _key_query(db.table(TABLE).select("id"), override.customer_id, override.terminal_id,
                   override.type, reference_month, override.reference_date)
        .execute()
    ).data or []

    if existing:
        db.table(TABLE).update(row).eq("id", existing[0]["id"]).execute()
    else:
        db.table(TABLE).insert(row).execute()

    logger.info(
        "Card values saved for %s/%s %s %s",
        override.customer_id, override.terminal_id or "general",
        override.type, override.reference_date or reference_month,
    )
    return override.model_copy(update={"reference_month": reference_month})


def delete_card_values(
    db,
    customer_id: str,
    terminal_id: str | None = None,
    type: SpreadsheetType = "monthly",
    reference_month: str | None = None,
    reference_date: str | None = None,
) -> int:
    if reference_date and not reference_month:
        reference_month = reference_date[:7]
    result = _key_query(db.table(TABLE).delete(), customer_id, terminal_id, type,
                        reference_month, reference_date).execute()
    return len(result.data or [])
