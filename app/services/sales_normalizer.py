"""
Sales Record Normalizer - raw planilha rows -> canonical Sale records.

Fee precedence: a customer-level taxa configured by the admin replaces any
taxa present in the row; otherwise the row's own taxa is used.
valorLiquido is only derived (bruto * (1 - taxa/100)) when the source value is
zero/missing and both bruto and an effective taxa are available.

A malformed row is skipped and logged; it never aborts the batch.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from app.models.spreadsheets import Sale
from app.services.br_numbers import ZERO, parse_br_number, quantize_cents
from app.services.column_mapper import resolve_columns

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass
class NormalizeResult:
    sales: list[Sale] = field(default_factory=list)
    skipped_rows: list[int] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_rows)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # machine numbers / CNPJs typed as numbers by Excel
        return str(int(value))
    return str(value).strip()


def _as_installments(value: Any) -> int:
    number = parse_br_number(value)
    if number <= 0:
        return 0
    return int(number)


def derive_net_amount(gross: Decimal, fee_rate: Decimal) -> Decimal:
    return quantize_cents(gross * (1 - fee_rate / HUNDRED))


def _normalize_row(row: dict[str, Any], columns: dict[str, str | None],
                   fee_rate_override: Decimal | None) -> Sale:
    def value(field_name: str) -> Any:
        header = columns.get(field_name)
        if header is None:
            return ""
        return row.get(header, "")

    gross = parse_br_number(value("valorBruto"))
    if fee_rate_override is not None:
        fee_rate = fee_rate_override
    else:
        fee_rate = parse_br_number(value("taxaTotal"))

    net = parse_br_number(value("valorLiquido"))
    if net == ZERO and gross > ZERO and fee_rate > ZERO:
        net = derive_net_amount(gross, fee_rate)

    return Sale(
        sale_date=_as_text(value("dataVenda")),
        sale_time=_as_text(value("horaVenda")),
        merchant_name=_as_text(value("estabelecimento")),
        merchant_tax_id=_as_text(value("cpfCnpj")),
        payment_method=_as_text(value("formaPagamento")),
        installment_count=_as_installments(value("quantidadeParcelas")),
        card_brand=_as_text(value("bandeira")),
        gross_amount=gross,
        fee_rate_total=fee_rate,
        net_amount=net,
        sale_status=_as_text(value("statusVenda")),
        settlement_type=_as_text(value("tipoLancamento")),
        settlement_date=_as_text(value("dataLancamento")),
        terminal_number=_as_text(value("numeroMaquina")),
    )


def normalize_sales(
    rows: list[dict[str, Any]],
    headers: list[str],
    fee_rate_override: Decimal | None = None,
) -> NormalizeResult:
    """Convert raw rows to Sales, preserving row order."""
    columns = resolve_columns(headers)
    unresolved = [f for f, h in columns.items() if h is None]
    if unresolved:
        logger.debug("Unresolved sale fields for headers %s: %s", headers, unresolved)

    result = NormalizeResult()
    for idx, row in enumerate(rows):
        try:
            result.sales.append(_normalize_row(row, columns, fee_rate_override))
        except (ValidationError, ValueError, TypeError, AttributeError, ArithmeticError) as e:
            logger.warning("Skipping planilha row %d: %s (row=%r)", idx, e, row)
            result.skipped_rows.append(idx)

    if result.skipped_rows:
        logger.warning(
            "Normalized %d/%d rows (%d skipped)",
            len(result.sales), len(rows), result.skipped_count,
        )
    return result
