"""Planilha builders shared by the test modules."""
import io
from datetime import datetime, timezone

from openpyxl import Workbook

from app.models.spreadsheets import SpreadsheetSnapshot
from app.services.sales_normalizer import normalize_sales

SALES_HEADERS = ["Data da Venda", "Estabelecimento", "Forma de Pagamento", "Bandeira",
                 "Valor Bruto", "Taxa", "Valor Líquido", "Status"]

SALES_ROWS = [
    ["2024-03-15", "Loja Centro", "Crédito", "Visa", "1.000,00", "2,5", "975,00", "Aprovada"],
    ["2024-03-15", "Loja Centro", "Débito", "Master", 500.0, 2.5, 487.5, "Pendente"],
]


def make_xlsx(headers, rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def make_snapshot(headers=None, rows=None, **kwargs) -> SpreadsheetSnapshot:
    headers = headers if headers is not None else SALES_HEADERS
    raw = rows if rows is not None else SALES_ROWS
    dict_rows = [dict(zip(headers, r)) if isinstance(r, list) else r for r in raw]
    defaults = {
        "customer_id": "cust-1",
        "file_name": "vendas.xlsx",
        "type": "monthly",
        "reference_month": "2024-03",
        "uploaded_at": datetime(2024, 3, 20, 15, 0, tzinfo=timezone.utc),
    }
    defaults.update(kwargs)
    if kwargs.get("reference_date") and "reference_month" not in kwargs:
        defaults["reference_month"] = kwargs["reference_date"][:7]
    return SpreadsheetSnapshot(
        headers=headers,
        rows=dict_rows,
        sales=normalize_sales(dict_rows, headers).sales,
        **defaults,
    )
