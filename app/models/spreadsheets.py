"""
Planilha (spreadsheet snapshot), Sale, card value overrides and repasses.

Sale fields keep the camelCase keys already stored in the `sales` JSONB column
(dataVenda, valorBruto, ...) as aliases.
"""
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SpreadsheetType = Literal["monthly", "daily"]

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
DATE_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")


class Sale(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sale_date: str = Field("", alias="dataVenda")
    sale_time: str = Field("", alias="horaVenda")
    merchant_name: str = Field("", alias="estabelecimento")
    merchant_tax_id: str = Field("", alias="cpfCnpj")
    payment_method: str = Field("", alias="formaPagamento")
    installment_count: int = Field(0, alias="quantidadeParcelas", ge=0)
    card_brand: str = Field("", alias="bandeira")
    gross_amount: Decimal = Field(Decimal("0"), alias="valorBruto")
    fee_rate_total: Decimal = Field(Decimal("0"), alias="taxaTotal")
    net_amount: Decimal = Field(Decimal("0"), alias="valorLiquido")
    sale_status: str = Field("", alias="statusVenda")
    settlement_type: str = Field("", alias="tipoLancamento")
    settlement_date: str = Field("", alias="dataLancamento")
    terminal_number: str = Field("", alias="numeroMaquina")


class SpreadsheetSnapshot(BaseModel):
    id: str | None = None
    customer_id: str
    terminal_id: str | None = None
    file_name: str = ""
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: SpreadsheetType = "monthly"
    reference_month: str
    reference_date: str | None = None
    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    sales: list[Sale] = Field(default_factory=list)
    skipped_rows: list[int] = Field(default_factory=list, exclude=True)
    original_file: bytes | None = Field(default=None, exclude=True)
    description: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_reference_month(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("reference_month") and data.get("reference_date"):
            data = {**data, "reference_month": str(data["reference_date"])[:7]}
        return data

    @model_validator(mode="after")
    def _check_periods(self) -> "SpreadsheetSnapshot":
        if not MONTH_RE.match(self.reference_month):
            raise ValueError(f"reference_month must be YYYY-MM, got {self.reference_month!r}")
        if self.type == "daily" and not self.reference_date:
            raise ValueError("daily planilhas require reference_date")
        if self.reference_date is not None:
            self.reference_date = self.reference_date.strip()
            if not DATE_RE.match(self.reference_date):
                raise ValueError(f"reference_date must be YYYY-MM-DD, got {self.reference_date!r}")
            if self.reference_date[:7] != self.reference_month:
                raise ValueError(
                    f"reference_month {self.reference_month} does not match "
                    f"reference_date {self.reference_date}"
                )
            if self.type == "monthly":
                # only daily planilhas carry a day
                self.reference_date = None
        return self

    @property
    def period_key(self) -> str:
        return self.reference_date if self.type == "daily" else self.reference_month


class CardValueOverride(BaseModel):
    """Admin-edited card values for one period; absent fields fall back to computed ones."""

    customer_id: str
    terminal_id: str | None = None
    reference_month: str | None = None
    reference_date: str | None = None
    type: SpreadsheetType = "monthly"
    sales_count: Decimal | None = None
    gross_amount: Decimal | None = None
    fee_amount: Decimal | None = None  # absolute R$, not a percentage
    net_amount: Decimal | None = None

    def has_values(self) -> bool:
        return any(
            v is not None
            for v in (self.sales_count, self.gross_amount, self.fee_amount, self.net_amount)
        )


class TransferLedgerEntry(BaseModel):
    id: str | None = None
    period_label: str
    gross_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    status: str = "pendente"
    sent_date: str | None = None  # YYYY-MM-DD
    customer_id: str
    customer_name: str = ""
    created_at: str | None = None
