"""
Column Mapper - resolves arbitrary planilha headers to canonical sale fields.

Matching priority (first hit wins):
  1. exact match against the canonical field name itself
  2. exact match against FIELD_SYNONYMS (known header spellings)
  3. substring containment in either direction (resolve_columns only
     considers headers no field claimed in steps 1-2)

All comparisons run on accent-stripped, lowercased text. Nothing here raises
on unknown headers: an unresolved field is simply None.
"""
import unicodedata
from dataclasses import dataclass

CANONICAL_FIELDS: tuple[str, ...] = (
    "dataVenda",
    "horaVenda",
    "estabelecimento",
    "cpfCnpj",
    "formaPagamento",
    "quantidadeParcelas",
    "bandeira",
    "valorBruto",
    "taxaTotal",
    "valorLiquido",
    "statusVenda",
    "tipoLancamento",
    "dataLancamento",
    "numeroMaquina",
    "quantidadeVendas",
)

# ---------------------------------------------------------------------------
# Static synonym table (order is significant within a field: first match wins)
# ---------------------------------------------------------------------------

FIELD_SYNONYMS: list[tuple[str, str]] = [
    # Data da venda
    ("data da venda",                 "dataVenda"),
    ("data venda",                    "dataVenda"),
    ("data",                          "dataVenda"),
    ("data de venda",                 "dataVenda"),
    ("date",                          "dataVenda"),
    # Hora da venda
    ("hora da venda",                 "horaVenda"),
    ("hora venda",                    "horaVenda"),
    ("hora",                          "horaVenda"),
    ("hora de venda",                 "horaVenda"),
    ("time",                          "horaVenda"),
    ("horário",                       "horaVenda"),
    # Estabelecimento
    ("estabelecimento",               "estabelecimento"),
    ("loja",                          "estabelecimento"),
    ("store",                         "estabelecimento"),
    ("nome estabelecimento",          "estabelecimento"),
    # CPF/CNPJ do estabelecimento
    ("cpf/cnpj",                      "cpfCnpj"),
    ("cpf cnpj",                      "cpfCnpj"),
    ("cpf",                           "cpfCnpj"),
    ("cnpj",                          "cpfCnpj"),
    ("cpf/cnpj do estabelecimento",   "cpfCnpj"),
    ("cpf cnpj estabelecimento",      "cpfCnpj"),
    # Forma de pagamento
    ("forma de pagamento",            "formaPagamento"),
    ("forma pagamento",               "formaPagamento"),
    ("pagamento",                     "formaPagamento"),
    ("payment",                       "formaPagamento"),
    ("tipo pagamento",                "formaPagamento"),
    # Parcelas
    ("quantidade total de parcelas",  "quantidadeParcelas"),
    ("quantidade parcelas",           "quantidadeParcelas"),
    ("parcelas",                      "quantidadeParcelas"),
    ("qtd parcelas",                  "quantidadeParcelas"),
    ("total parcelas",                "quantidadeParcelas"),
    ("installments",                  "quantidadeParcelas"),
    # Bandeira
    ("bandeira",                      "bandeira"),
    ("bandeira cartão",               "bandeira"),
    ("cartão",                        "bandeira"),
    ("card",                          "bandeira"),
    ("brand",                         "bandeira"),
    # Valor bruto
    ("valor bruto",                   "valorBruto"),
    ("valor",                         "valorBruto"),
    ("bruto",                         "valorBruto"),
    ("total",                         "valorBruto"),
    # Taxa
    ("taxa total",                    "taxaTotal"),
    ("taxa",                          "taxaTotal"),
    ("taxas",                         "taxaTotal"),
    ("mdr",                           "taxaTotal"),
    # Valor líquido
    ("valor líquido",                 "valorLiquido"),
    ("líquido",                       "valorLiquido"),
    ("valor a receber",               "valorLiquido"),
    # Status da venda
    ("status da venda",               "statusVenda"),
    ("status venda",                  "statusVenda"),
    ("status",                        "statusVenda"),
    ("status de venda",               "statusVenda"),
    ("situação",                      "statusVenda"),
    # Tipo de lançamento
    ("tipo de lançamento",            "tipoLancamento"),
    ("tipo lançamento",               "tipoLancamento"),
    ("lançamento",                    "tipoLancamento"),
    # Data do lançamento
    ("data do lançamento",            "dataLancamento"),
    ("data lançamento",               "dataLancamento"),
    ("data de lançamento",            "dataLancamento"),
    # Número da máquina
    ("número da máquina",             "numeroMaquina"),
    ("número máquina",                "numeroMaquina"),
    ("num máquina",                   "numeroMaquina"),
    ("máquina",                       "numeroMaquina"),
    ("terminal",                      "numeroMaquina"),
    # Quantidade de vendas
    ("quantidade de vendas",          "quantidadeVendas"),
    ("quantidade vendas",             "quantidadeVendas"),
    ("qtd vendas",                    "quantidadeVendas"),
]


def normalize_column_name(name) -> str:
    """Lowercase, trim and strip diacritics ('Horário' -> 'horario')."""
    nfd = unicodedata.normalize("NFD", str(name if name is not None else ""))
    stripped = "".join(c for c in nfd if not unicodedata.combining(c))
    return stripped.strip().lower()


def _synonyms_by_field() -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for spelling, field in FIELD_SYNONYMS:
        normalized = normalize_column_name(spelling)
        bucket = grouped.setdefault(field, [])
        if normalized not in bucket:
            bucket.append(normalized)
    return grouped


_SYNONYMS_BY_FIELD = _synonyms_by_field()


def _direct_match(normalized_headers: list[str], canonical_field: str) -> int | None:
    normalized_field = normalize_column_name(canonical_field)

    # 1. the field's own name
    for idx, header in enumerate(normalized_headers):
        if header and header == normalized_field:
            return idx

    # 2. synonym table, in table order
    for spelling in _SYNONYMS_BY_FIELD.get(canonical_field, []):
        for idx, header in enumerate(normalized_headers):
            if header == spelling:
                return idx
    return None


def _contained_match(normalized_headers: list[str], canonical_field: str,
                     skip: frozenset[int] = frozenset()) -> int | None:
    normalized_field = normalize_column_name(canonical_field)
    if not normalized_field:
        return None
    for idx, header in enumerate(normalized_headers):
        if not header or idx in skip:
            continue
        if normalized_field in header or header in normalized_field:
            return idx
    return None


def resolve_column(headers: list[str], canonical_field: str) -> int | None:
    """Return the header index for a canonical field, or None."""
    normalized_headers = [normalize_column_name(h) for h in headers]
    idx = _direct_match(normalized_headers, canonical_field)
    if idx is not None:
        return idx
    # 3. similarity by containment
    return _contained_match(normalized_headers, canonical_field)


def resolve_columns(headers: list[str]) -> dict[str, str | None]:
    """Map every canonical field to its header name (or None).

    Containment only looks at headers no field claimed by name or synonym, so
    a bare "Valor" (valorBruto) is not also read as valorLiquido.
    """
    normalized_headers = [normalize_column_name(h) for h in headers]
    direct = {field: _direct_match(normalized_headers, field) for field in CANONICAL_FIELDS}
    claimed = frozenset(idx for idx in direct.values() if idx is not None)

    mapping: dict[str, str | None] = {}
    for field in CANONICAL_FIELDS:
        idx = direct[field]
        if idx is None:
            idx = _contained_match(normalized_headers, field, claimed)
        mapping[field] = headers[idx] if idx is not None else None
    return mapping


# ---------------------------------------------------------------------------
# Metric header rules (used by the aggregator)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeaderRule:
    exact: tuple[str, ...] = ()
    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()
    none_of: tuple[str, ...] = ()

    def matches(self, normalized: str) -> bool:
        if not normalized:
            return False
        if self.exact:
            return normalized in self.exact
        if self.all_of and not all(tok in normalized for tok in self.all_of):
            return False
        if self.any_of and not any(tok in normalized for tok in self.any_of):
            return False
        return not any(tok in normalized for tok in self.none_of)


METRIC_HEADER_RULES: dict[str, list[HeaderRule]] = {
    "sales_count": [
        HeaderRule(exact=("quantidade de vendas", "quantidade vendas", "qtd vendas")),
        HeaderRule(all_of=("quantidade", "venda")),
        HeaderRule(exact=("quantidade", "qtd")),
    ],
    "gross_amount": [
        HeaderRule(exact=("valor bruto",)),
        HeaderRule(all_of=("valor", "bruto"), none_of=("liquido",)),
        HeaderRule(all_of=("valor",), none_of=("liquido", "taxa")),
    ],
    "net_amount": [
        HeaderRule(exact=("valor liquido",)),
        HeaderRule(all_of=("valor", "liquido")),
    ],
    "fee": [
        HeaderRule(exact=("taxa total",)),
        HeaderRule(all_of=("taxa", "total")),
        HeaderRule(exact=("taxa",)),
        HeaderRule(all_of=("taxa",)),
    ],
    "merchant": [
        HeaderRule(any_of=("estabelecimento", "loja")),
    ],
    "payment_method": [
        HeaderRule(any_of=("pagamento", "forma")),
    ],
}


def find_metric_header(headers: list[str], metric: str) -> str | None:
    """Best header for an aggregate metric; rules are tried in order."""
    normalized = [normalize_column_name(h) for h in headers]
    for rule in METRIC_HEADER_RULES.get(metric, []):
        for idx, header in enumerate(normalized):
            if rule.matches(header):
                return headers[idx]
    return None


# ---------------------------------------------------------------------------
# Header row construction
# ---------------------------------------------------------------------------


def build_headers(header_row: list, width: int = 0) -> list[str]:
    """Header names for every column of the sheet.

    Blank cells become 'Column N' (1-based) and repeated names get ' (2)',
    ' (3)' so rows keyed by header never collapse two columns into one.
    """
    total = max(len(header_row), width)
    headers: list[str] = []
    seen: set[str] = set()
    for idx in range(total):
        value = header_row[idx] if idx < len(header_row) else None
        text = str(value).strip() if value is not None else ""
        name = text or f"Column {idx + 1}"
        if name in seen:
            n = 2
            while f"{name} ({n})" in seen:
                n += 1
            name = f"{name} ({n})"
        seen.add(name)
        headers.append(name)
    return headers
