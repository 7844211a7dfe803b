"""
Category normalization.

Categories are stored as lower-case, accent-free slugs. Rows without a
category get one from description keywords, falling back to `outros`.
"""
from typing import Optional

from ledgermatch.utils.parsing import normalize_text

DEFAULT_CATEGORY = "outros"

CATEGORY_KEYWORDS = {
    "alimentacao": ["restaurante", "lanchonete", "padaria", "ifood", "mercado", "supermercado", "food"],
    "transporte": ["uber", "99", "combustivel", "posto", "gasolina", "estacionamento", "pedagio", "taxi"],
    "moradia": ["aluguel", "condominio", "iptu", "energia", "luz", "agua", "gas"],
    "servicos": ["internet", "telefone", "celular", "assinatura", "software", "hospedagem"],
    "salario": ["salario", "folha", "pagamento de pessoal", "payroll"],
    "impostos": ["imposto", "darf", "das", "inss", "fgts", "iss", "icms", "tributo"],
    "tarifas_bancarias": ["tarifa", "taxa bancaria", "iof", "juros", "anuidade"],
    "transferencia": ["pix", "ted", "doc", "transferencia"],
    "fornecedores": ["fornecedor", "boleto", "nota fiscal", "nf"],
    "receitas": ["recebimento", "venda", "deposito", "cliente"],
}


def normalize_category(value: Optional[str]) -> Optional[str]:
    """Slug form of a category, or None when blank."""
    text = normalize_text(value)
    if not text:
        return None
    return text.replace(" ", "_")


def default_category(description: Optional[str]) -> str:
    """Keyword-based category for rows that did not provide one."""
    words = normalize_text(description)
    tokens = set(words.split())
    for category, keywords in CATEGORY_KEYWORDS.items():
        for keyword in keywords:
            if (" " in keyword and keyword in words) or keyword in tokens:
                return category
    return DEFAULT_CATEGORY
