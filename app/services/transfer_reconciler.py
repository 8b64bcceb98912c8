"""
Transfer Reconciler - keeps one repasse per (customer, period) in sync with the
latest saved planilha.

Amount precedence:
  bruto    card values override > computed bruto
  taxas    override taxa (> 0) > 5.10% of override bruto > computed taxa rate
           > 5.10% of bruto
  líquido  override líquido (> 0) > bruto - taxas

Re-reconciling the same period updates only the monetary fields of the existing
repasse; status, data_envio and customer_name are set once, on creation.
Reconciliation is best-effort: any failure is logged and the planilha save it
follows is never rolled back.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta, timezone
from decimal import Decimal

from app.config import settings
from app.models.customers import get_customer_fee_rate, get_customer_name
from app.models.spreadsheets import CardValueOverride, SpreadsheetSnapshot, TransferLedgerEntry
from app.services.br_numbers import ZERO, format_brl, quantize_cents
from app.services.card_values import get_card_values
from app.services.metrics import SpreadsheetMetrics, aggregate_metrics, default_fee_rate
from app.services.notifications import EventBus, TransferReconciled, event_bus
from app.services.sales_normalizer import HUNDRED
from app.services.transfer_ledger import create_transfer, find_transfer_by_period, update_transfer

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "Janeiro", "Fevereiro", "Março", "Abril", "Maio", "Junho",
    "Julho", "Agosto", "Setembro", "Outubro", "Novembro", "Dezembro",
]


@dataclass
class TransferAmounts:
    gross_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal


@dataclass
class ReconcileResult:
    action: str  # created | updated
    transfer_id: str
    period_label: str
    amounts: TransferAmounts


def period_label(snapshot: SpreadsheetSnapshot) -> str:
    if snapshot.type == "daily":
        year, month, day = snapshot.reference_date.split("-")
        return f"{day}/{month}/{year}"
    year, month = snapshot.reference_month.split("-")
    return f"{MONTH_NAMES[int(month) - 1]}/{year}"


def _local_date(snapshot: SpreadsheetSnapshot) -> str:
    local_tz = timezone(timedelta(hours=settings.timezone_offset_hours))
    return snapshot.uploaded_at.astimezone(local_tz).date().isoformat()


def send_date(snapshot: SpreadsheetSnapshot) -> str:
    if snapshot.type == "daily":
        return snapshot.reference_date
    return _local_date(snapshot)


def compute_transfer_amounts(
    metrics: SpreadsheetMetrics,
    override: CardValueOverride | None,
    default_rate: Decimal | None = None,
) -> TransferAmounts:
    if default_rate is None:
        default_rate = default_fee_rate()

    override_gross = override.gross_amount if override else None
    override_fee = override.fee_amount if override else None
    override_net = override.net_amount if override else None

    gross = override_gross if override_gross is not None else metrics.gross_amount

    if override_fee is not None and override_fee > ZERO:
        fee = override_fee
    elif override_gross is not None and override_gross > ZERO:
        fee = override_gross * default_rate / HUNDRED
    elif metrics.fee_rate > ZERO:
        fee = metrics.gross_amount * metrics.fee_rate / HUNDRED
    else:
        fee = gross * default_rate / HUNDRED
    fee = quantize_cents(fee)

    if override_net is not None and override_net > ZERO:
        net = override_net
    else:
        net = gross - fee

    return TransferAmounts(
        gross_amount=quantize_cents(gross),
        fee_amount=fee,
        net_amount=quantize_cents(net),
    )


def reconcile_transfer(db, snapshot: SpreadsheetSnapshot, bus: EventBus = event_bus) -> ReconcileResult | None:
    """Create or update the repasse for the snapshot's period. Never raises."""
    try:
        label = period_label(snapshot)
        existing = find_transfer_by_period(db, snapshot.customer_id, label)

        override = get_card_values(
            db,
            snapshot.customer_id,
            snapshot.terminal_id,
            snapshot.type,
            snapshot.reference_month,
            snapshot.reference_date,
        )
        metrics = aggregate_metrics(snapshot, get_customer_fee_rate(db, snapshot.customer_id))
        amounts = compute_transfer_amounts(metrics, override)

        if amounts.gross_amount <= ZERO:
            logger.info("Repasse skipped for %s %s: bruto is zero", snapshot.customer_id, label)
            return None

        if existing:
            update_transfer(db, existing.id, {
                "gross_amount": amounts.gross_amount,
                "fee_amount": amounts.fee_amount,
                "net_amount": amounts.net_amount,
            })
            result = ReconcileResult("updated", existing.id, label, amounts)
        else:
            created = create_transfer(db, TransferLedgerEntry(
                period_label=label,
                gross_amount=amounts.gross_amount,
                fee_amount=amounts.fee_amount,
                net_amount=amounts.net_amount,
                status="pendente",
                sent_date=send_date(snapshot),
                customer_id=snapshot.customer_id,
                customer_name=get_customer_name(db, snapshot.customer_id),
            ))
            result = ReconcileResult("created", created.id, label, amounts)

        logger.info(
            "Repasse %s %s for %s: bruto=%s taxas=%s liquido=%s",
            result.transfer_id, result.action, label,
            format_brl(amounts.gross_amount), format_brl(amounts.fee_amount), format_brl(amounts.net_amount),
        )
        bus.emit(TransferReconciled(
            customer_id=snapshot.customer_id,
            terminal_id=snapshot.terminal_id,
            type=snapshot.type,
            reference_month=snapshot.reference_month,
            reference_date=snapshot.reference_date,
            action=result.action,
            transfer_id=result.transfer_id,
        ))
        return result

    except Exception:
        logger.exception("Repasse reconciliation failed for %s (%s)", snapshot.customer_id, snapshot.id)
        return None
