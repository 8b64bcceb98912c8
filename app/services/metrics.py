"""
Metrics Aggregator - summary cards for one planilha (or several).

Totals are read straight from the raw rows so they match the uploaded file
exactly: numbers summed as numbers, strings parsed as Brazilian/plain numbers,
zero and negative values included. Categorical counts come from the
normalized sales when present.

Precedence:
  taxa          customer rate (admin) > taxa column > default reference rate
  valor líquido column sum, unless the column is missing or sums to exactly 0
  card values   admin override replaces each computed field it carries
"""
import logging
from decimal import Decimal
from typing import Any, Iterable, Literal

from pydantic import BaseModel

from app.config import settings
from app.models.spreadsheets import CardValueOverride, Sale, SpreadsheetSnapshot
from app.services.br_numbers import ZERO, parse_br_number, quantize_cents
from app.services.column_mapper import find_metric_header
from app.services.sales_normalizer import HUNDRED, derive_net_amount

logger = logging.getLogger(__name__)

FEE_EQUALITY_TOLERANCE = Decimal("0.01")
_PLACEHOLDER_VALUES = {"", "-"}

FeeRateSource = Literal["customer", "spreadsheet", "default", "none"]
NetSource = Literal["spreadsheet", "derived", "none"]


class SpreadsheetMetrics(BaseModel):
    total_rows: int = 0
    total_columns: int = 0
    sales_count: Decimal = ZERO
    gross_amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    fee_rate: Decimal = ZERO
    fee_amount: Decimal = ZERO
    unique_merchants: int = 0
    unique_payment_methods: int = 0
    unique_card_brands: int = 0
    average_installments: Decimal = ZERO
    approved_count: int = 0
    pending_count: int = 0
    cancelled_count: int = 0
    has_custom_values: bool = False
    fee_rate_source: FeeRateSource = "none"
    net_source: NetSource = "none"
    degraded: bool = False


def default_fee_rate() -> Decimal:
    return parse_br_number(settings.default_fee_rate_percent)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _column_values(rows: list[dict[str, Any]], header: str) -> Iterable[Decimal]:
    for row in rows:
        value = row.get(header)
        if _is_blank(value):
            continue
        yield parse_br_number(value)


def sum_column(rows: list[dict[str, Any]], header: str | None) -> Decimal:
    if header is None:
        return ZERO
    return sum(_column_values(rows, header), ZERO)


def _count_non_empty_rows(rows: list[dict[str, Any]]) -> int:
    return sum(1 for row in rows if any(not _is_blank(v) for v in row.values()))


def resolve_sheet_fee_rate(rows: list[dict[str, Any]], header: str | None) -> Decimal | None:
    """First taxa when all agree (±0.01), otherwise the mean. None without usable values."""
    if header is None:
        return None
    rates = [r for r in _column_values(rows, header) if r > ZERO]
    if not rates:
        return None
    first = rates[0]
    if all(abs(r - first) < FEE_EQUALITY_TOLERANCE for r in rates):
        return first
    return sum(rates, ZERO) / len(rates)


def status_bucket(status: str) -> str:
    s = (status or "").lower()
    if "aprov" in s or "conclu" in s:
        return "approved"
    if "pendente" in s:
        return "pending"
    return "cancelled"


def _distinct(values: Iterable[str]) -> set[str]:
    return {v for v in (str(x).strip() for x in values) if v not in _PLACEHOLDER_VALUES}


def _apply_sales_categories(metrics: SpreadsheetMetrics, sales: list[Sale]) -> None:
    metrics.unique_merchants = len(_distinct(s.merchant_name for s in sales))
    metrics.unique_payment_methods = len(_distinct(s.payment_method for s in sales))
    metrics.unique_card_brands = len(_distinct(s.card_brand for s in sales))

    installments = [s.installment_count for s in sales if s.installment_count > 0]
    if installments:
        metrics.average_installments = quantize_cents(Decimal(sum(installments)) / len(installments))

    for sale in sales:
        bucket = status_bucket(sale.sale_status)
        if bucket == "approved":
            metrics.approved_count += 1
        elif bucket == "pending":
            metrics.pending_count += 1
        else:
            metrics.cancelled_count += 1


def _apply_raw_categories(metrics: SpreadsheetMetrics, snapshot: SpreadsheetSnapshot) -> None:
    merchant_header = find_metric_header(snapshot.headers, "merchant")
    if merchant_header:
        metrics.unique_merchants = len(_distinct(r.get(merchant_header) or "" for r in snapshot.rows))

    payment_header = find_metric_header(snapshot.headers, "payment_method")
    if payment_header:
        metrics.unique_payment_methods = len(_distinct(r.get(payment_header) or "" for r in snapshot.rows))


def apply_override(metrics: SpreadsheetMetrics, override: CardValueOverride | None) -> SpreadsheetMetrics:
    if override is None:
        return metrics
    replacements = {
        "sales_count": override.sales_count,
        "gross_amount": override.gross_amount,
        "fee_amount": override.fee_amount,
        "net_amount": override.net_amount,
    }
    for field_name, value in replacements.items():
        if value is not None:
            setattr(metrics, field_name, value)
            metrics.has_custom_values = True
    return metrics


def aggregate_metrics(
    snapshot: SpreadsheetSnapshot,
    customer_fee_rate: Decimal | None = None,
    override: CardValueOverride | None = None,
) -> SpreadsheetMetrics:
    """Compute the summary cards for one planilha."""
    rows = snapshot.rows
    headers = snapshot.headers
    metrics = SpreadsheetMetrics(total_rows=len(rows), total_columns=len(headers))

    count_header = find_metric_header(headers, "sales_count")
    gross_header = find_metric_header(headers, "gross_amount")
    net_header = find_metric_header(headers, "net_amount")
    fee_header = find_metric_header(headers, "fee")

    # Quantidade de vendas: explicit column, else one sale per non-empty row
    if count_header is not None:
        metrics.sales_count = sum_column(rows, count_header)
    else:
        metrics.sales_count = Decimal(_count_non_empty_rows(rows))

    metrics.gross_amount = sum_column(rows, gross_header)
    net_total = sum_column(rows, net_header)

    if customer_fee_rate is not None:
        metrics.fee_rate = customer_fee_rate
        metrics.fee_rate_source = "customer"
    else:
        sheet_rate = resolve_sheet_fee_rate(rows, fee_header)
        if sheet_rate is not None:
            metrics.fee_rate = sheet_rate
            metrics.fee_rate_source = "spreadsheet"

    if net_header is not None and net_total != ZERO:
        metrics.net_amount = net_total
        metrics.net_source = "spreadsheet"
    elif metrics.gross_amount > ZERO and metrics.fee_rate > ZERO:
        metrics.net_amount = derive_net_amount(metrics.gross_amount, metrics.fee_rate)
        metrics.net_source = "derived"

    if metrics.fee_rate > ZERO:
        metrics.fee_amount = quantize_cents(metrics.gross_amount * metrics.fee_rate / HUNDRED)
    else:
        # No rate anywhere: the repasse falls back to the reference rate
        metrics.fee_rate_source = "default"
        metrics.degraded = True
        metrics.fee_amount = quantize_cents(metrics.gross_amount * default_fee_rate() / HUNDRED)

    if snapshot.sales:
        _apply_sales_categories(metrics, snapshot.sales)
    else:
        _apply_raw_categories(metrics, snapshot)

    return apply_override(metrics, override)


def aggregate_many(
    snapshots: list[SpreadsheetSnapshot],
    customer_fee_rate: Decimal | None = None,
) -> SpreadsheetMetrics | None:
    """Combined cards for several planilhas (e.g. every daily sheet of a month)."""
    if not snapshots:
        return None

    combined = SpreadsheetMetrics()
    rates: list[Decimal] = []
    merchants: set[str] = set()
    payment_methods: set[str] = set()
    brands: set[str] = set()
    installments: list[int] = []
    any_default = False

    for snapshot in snapshots:
        if not snapshot.rows:
            continue
        metrics = aggregate_metrics(snapshot, customer_fee_rate)

        combined.total_rows += metrics.total_rows
        combined.total_columns = max(combined.total_columns, metrics.total_columns)
        combined.sales_count += metrics.sales_count
        combined.gross_amount += metrics.gross_amount
        combined.net_amount += metrics.net_amount
        combined.fee_amount += metrics.fee_amount
        any_default = any_default or metrics.degraded
        if metrics.fee_rate > ZERO:
            rates.append(metrics.fee_rate)

        merchants |= _distinct(s.merchant_name for s in snapshot.sales)
        payment_methods |= _distinct(s.payment_method for s in snapshot.sales)
        brands |= _distinct(s.card_brand for s in snapshot.sales)
        installments.extend(s.installment_count for s in snapshot.sales if s.installment_count > 0)
        combined.approved_count += metrics.approved_count
        combined.pending_count += metrics.pending_count
        combined.cancelled_count += metrics.cancelled_count

    if rates:
        combined.fee_rate = sum(rates, ZERO) / len(rates)
        combined.fee_rate_source = "customer" if customer_fee_rate is not None else "spreadsheet"
    if any_default:
        combined.degraded = True
        if not rates:
            combined.fee_rate_source = "default"
    combined.net_source = "spreadsheet" if combined.net_amount != ZERO else "none"
    combined.unique_merchants = len(merchants)
    combined.unique_payment_methods = len(payment_methods)
    combined.unique_card_brands = len(brands)
    if installments:
        combined.average_installments = quantize_cents(Decimal(sum(installments)) / len(installments))
    return combined
