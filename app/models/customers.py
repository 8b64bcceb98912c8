"""
Clientes (lojistas) e a taxa configurada pelo admin para cada um.
A taxa é percentual (ex.: 3.5 = 3,5%) e tem precedência sobre a taxa da planilha.
"""
import logging
from decimal import Decimal

from app.services.br_numbers import ZERO, parse_br_number

logger = logging.getLogger(__name__)


def get_customer_fee_rate(db, customer_id: str) -> Decimal | None:
    """Taxa do cliente em customer_taxes. None quando não configurada (ou <= 0)."""
    result = (
        db.table("customer_taxes")
        .select("taxa")
        .eq("customer_id", customer_id)
        .order("updated_at", desc=True)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    rate = parse_br_number(result.data[0].get("taxa"))
    return rate if rate > ZERO else None


def get_customer_name(db, customer_id: str) -> str:
    result = db.table("customers").select("name").eq("id", customer_id).limit(1).execute()
    if not result.data:
        logger.warning("Customer %s not found, repasse will carry an empty name", customer_id)
        return ""
    return result.data[0].get("name") or ""
