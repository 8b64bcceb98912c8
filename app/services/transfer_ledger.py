"""
Ledger Store - repasses (settlement transfers) in the transfers table.

One entry per (customer, periodo). `periodo` is the human label produced by
the reconciler ("15/03/2024" or "Março/2024"); data_envio is stored at noon UTC
so the calendar day survives any timezone conversion on the way back.
"""
import logging
import random
import string
import time
from datetime import datetime, timezone
from decimal import Decimal

from app.models.spreadsheets import TransferLedgerEntry
from app.services.br_numbers import parse_br_number, quantize_cents

logger = logging.getLogger(__name__)

TABLE = "transfers"

MONETARY_COLUMNS = {
    "gross_amount": "valor_bruto",
    "fee_amount": "taxas",
    "net_amount": "valor_liquido",
}


def _new_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"transfer_{int(time.time() * 1000)}_{suffix}"


def _send_date_to_db(sent_date: str | None) -> str | None:
    if not sent_date:
        return None
    return f"{sent_date[:10]}T12:00:00.000Z"


def _money(value: Decimal) -> str:
    return str(quantize_cents(value))


def row_to_entry(row: dict) -> TransferLedgerEntry:
    return TransferLedgerEntry(
        id=row.get("id"),
        period_label=row.get("periodo") or "",
        gross_amount=parse_br_number(row.get("valor_bruto")),
        fee_amount=parse_br_number(row.get("taxas")),
        net_amount=parse_br_number(row.get("valor_liquido")),
        status=row.get("status") or "pendente",
        sent_date=(row.get("data_envio") or "")[:10] or None,
        customer_id=row.get("customer_id") or "",
        customer_name=row.get("customer_name") or "",
        created_at=row.get("created_at"),
    )


def find_transfer_by_period(db, customer_id: str, period_label: str) -> TransferLedgerEntry | None:
    result = (
        db.table(TABLE)
        .select("*")
        .eq("customer_id", customer_id)
        .eq("periodo", period_label)
        .order("created_at")
        .limit(1)
        .execute()
    )
    return row_to_entry(result.data[0]) if result.data else None


def create_transfer(db, entry: TransferLedgerEntry) -> TransferLedgerEntry:
    created = entry.model_copy(update={
        "id": entry.id or _new_id(),
        "created_at": entry.created_at or datetime.now(timezone.utc).isoformat(),
    })
    row = {
        "id": created.id,
        "periodo": created.period_label,
        "valor_bruto": _money(created.gross_amount),
        "taxas": _money(created.fee_amount),
        "valor_liquido": _money(created.net_amount),
        "status": created.status or "pendente",
        "data_envio": _send_date_to_db(created.sent_date),
        "customer_id": created.customer_id,
        "customer_name": created.customer_name,
        "created_at": created.created_at,
    }
    db.table(TABLE).insert(row).execute()
    logger.info("Repasse %s created: %s %s", created.id, created.customer_id, created.period_label)
    return created


def update_transfer(db, transfer_id: str, amounts: dict[str, Decimal]) -> TransferLedgerEntry | None:
    """Merge monetary fields into an existing entry. Other fields are never touched."""
    changes = {
        MONETARY_COLUMNS[name]: _money(value)
        for name, value in amounts.items()
        if name in MONETARY_COLUMNS and value is not None
    }
    ignored = set(amounts) - set(MONETARY_COLUMNS)
    if ignored:
        logger.warning("update_transfer ignoring non-monetary fields: %s", sorted(ignored))
    if not changes:
        return None

    result = db.table(TABLE).update(changes).eq("id", transfer_id).execute()
    if not result.data:
        logger.warning("Repasse %s not found for update", transfer_id)
        return None
    logger.info("Repasse %s updated", transfer_id)
    return row_to_entry(result.data[0])


def list_transfers(db, customer_id: str | None = None) -> list[TransferLedgerEntry]:
    query = db.table(TABLE).select("*")
    if customer_id:
        query = query.eq("customer_id", customer_id)
    result = query.order("data_envio", desc=True).execute()
    return [row_to_entry(r) for r in result.data or []]


def delete_transfer(db, transfer_id: str) -> bool:
    result = db.table(TABLE).delete().eq("id", transfer_id).execute()
    return bool(result.data)
