"""
Tests for sales_normalizer.py

What it tests:
1. Raw rows -> Sale records with Brazilian numbers parsed
2. Customer taxa overrides the row taxa
3. valorLiquido derived only when missing and bruto/taxa are available
4. A malformed row is skipped and counted; the rest of the batch survives
5. Sales serialize with the camelCase keys stored in the sales column
"""
from decimal import Decimal

from builders import SALES_HEADERS, SALES_ROWS

from app.services.sales_normalizer import derive_net_amount, normalize_sales


def _rows(headers, raw_rows):
    return [dict(zip(headers, r)) for r in raw_rows]


def test_normalizes_rows_in_order():
    result = normalize_sales(_rows(SALES_HEADERS, SALES_ROWS), SALES_HEADERS)

    assert result.skipped_count == 0
    assert len(result.sales) == 2
    first, second = result.sales
    assert first.sale_date == "2024-03-15"
    assert first.merchant_name == "Loja Centro"
    assert first.card_brand == "Visa"
    assert first.gross_amount == Decimal("1000.00")
    assert first.fee_rate_total == Decimal("2.5")
    assert first.net_amount == Decimal("975.00")
    assert first.sale_status == "Aprovada"
    assert second.gross_amount == Decimal("500.0")
    assert second.payment_method == "Débito"


def test_customer_fee_rate_overrides_row_fee():
    result = normalize_sales(_rows(SALES_HEADERS, SALES_ROWS), SALES_HEADERS, Decimal("3.9"))
    assert {s.fee_rate_total for s in result.sales} == {Decimal("3.9")}
    # existing líquido is kept as uploaded
    assert result.sales[0].net_amount == Decimal("975.00")


NET_CASES = [
    # (bruto, taxa, liquido, expected liquido)
    ("200,00", "5",   "",       Decimal("190.00")),
    ("200,00", "5",   "0",      Decimal("190.00")),
    ("200,00", "5",   "180,00", Decimal("180.00")),
    ("200,00", "",    "",       Decimal("0")),
    ("",       "5",   "",       Decimal("0")),
    ("-50,00", "5",   "",       Decimal("0")),
]


def test_net_amount_derivation():
    headers = ["Valor Bruto", "Taxa", "Valor Líquido"]
    for bruto, taxa, liquido, expected in NET_CASES:
        result = normalize_sales([{"Valor Bruto": bruto, "Taxa": taxa, "Valor Líquido": liquido}], headers)
        assert result.sales[0].net_amount == expected, (bruto, taxa, liquido)


def test_bare_valor_header_is_gross_only():
    result = normalize_sales([{"Valor": "100,00", "Taxa": "2"}], ["Valor", "Taxa"])
    sale = result.sales[0]
    assert sale.gross_amount == Decimal("100")
    assert sale.net_amount == Decimal("98.00")


def test_derive_net_amount_quantizes():
    assert derive_net_amount(Decimal("99.99"), Decimal("3.33")) == Decimal("96.66")


def test_malformed_row_is_skipped_and_batch_continues():
    headers = ["Valor Bruto", "Parcelas"]
    rows = [
        {"Valor Bruto": "10,00", "Parcelas": "1"},
        None,
        {"Valor Bruto": "30,00", "Parcelas": "3"},
    ]
    result = normalize_sales(rows, headers)

    assert result.skipped_rows == [1]
    assert len(result.sales) == len(rows) - result.skipped_count
    assert [s.gross_amount for s in result.sales] == [Decimal("10.00"), Decimal("30.00")]
    assert result.sales[1].installment_count == 3


def test_numbers_typed_by_excel_become_text():
    headers = ["Número da Máquina", "CNPJ"]
    result = normalize_sales([{"Número da Máquina": 123456.0, "CNPJ": 12345678000199}], headers)
    assert result.sales[0].terminal_number == "123456"
    assert result.sales[0].merchant_tax_id == "12345678000199"


def test_unmapped_fields_default_to_empty():
    result = normalize_sales([{"Qualquer": "x"}], ["Qualquer"])
    sale = result.sales[0]
    assert sale.gross_amount == Decimal("0")
    assert sale.card_brand == ""
    assert sale.installment_count == 0


def test_sale_dump_uses_stored_keys():
    result = normalize_sales(_rows(SALES_HEADERS, SALES_ROWS[:1]), SALES_HEADERS)
    dumped = result.sales[0].model_dump(mode="json", by_alias=True)
    assert dumped["valorBruto"] == "1000.00"
    assert dumped["bandeira"] == "Visa"
    assert "gross_amount" not in dumped
