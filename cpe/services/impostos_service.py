# cpe/services/impostos_service.py
"""
Cálculo dos totais (base, IGV, total) de um CPE.

Regras:
  - Cada linha é calculada isoladamente e arredondada a 2 casas (ROUND_HALF_UP).
  - Os totais do documento são a SOMA dos valores arredondados das linhas,
    nunca um cálculo global separado. Assim a soma das linhas exibidas
    sempre fecha com o total exibido.
  - total == subtotal + imposto, em cada linha e no documento.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Tuple

from django.conf import settings

from cpe.dto import InvoiceLine, LineBreakdown, MonetaryBreakdown

DUAS_CASAS = Decimal("0.01")
CINCO_CASAS = Decimal("0.00001")

ZERO = Decimal("0.00")


def q2(valor: Decimal) -> Decimal:
    return Decimal(valor).quantize(DUAS_CASAS, rounding=ROUND_HALF_UP)


def q5(valor: Decimal) -> Decimal:
    return Decimal(valor).quantize(CINCO_CASAS, rounding=ROUND_HALF_UP)


def get_igv_rate() -> Decimal:
    return Decimal(str(getattr(settings, "CPE_IGV_RATE", "0.18")))


def is_igv_taxed(tax_affectation: str) -> bool:
    """
    Catálogo 07: 1x = gravado com IGV; 2x = exonerado; 3x = inafeto.
    """
    return str(tax_affectation).startswith("1")


def rate_for_affectation(tax_affectation: str, rate: Decimal) -> Decimal:
    return rate if is_igv_taxed(tax_affectation) else Decimal("0")


def split_amount(
    amount: Decimal,
    *,
    includes_tax: bool,
    rate: Decimal,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Decompõe um valor em (subtotal, imposto, total), todos com 2 casas.

    Ex (r=0.18):
      118.00 com imposto -> (100.00, 18.00, 118.00)
      100.00 sem imposto -> (100.00, 18.00, 118.00)
    """
    if includes_tax:
        total = q2(amount)
        subtotal = q2(total / (Decimal("1") + rate))
        tax = total - subtotal
    else:
        subtotal = q2(amount)
        tax = q2(subtotal * rate)
        total = subtotal + tax
    return subtotal, tax, total


def compute_line_breakdown(line: InvoiceLine, rate: Decimal) -> LineBreakdown:
    line_rate = rate_for_affectation(line.tax_affectation, rate)
    quantity = Decimal(line.quantity)
    unit_price = Decimal(line.unit_price)

    subtotal, tax, total = split_amount(
        quantity * unit_price,
        includes_tax=line.price_includes_tax,
        rate=line_rate,
    )

    # Preço unitário com 5 casas para evitar deriva quando o preço vem
    # de um total de pacote dividido pela quantidade
    if quantity > 0:
        unit_value = q5(subtotal / quantity)
        unit_price_with_tax = q5(total / quantity)
    elif line.price_includes_tax:
        unit_price_with_tax = q5(unit_price)
        unit_value = q5(unit_price / (Decimal("1") + line_rate))
    else:
        unit_value = q5(unit_price)
        unit_price_with_tax = q5(unit_price * (Decimal("1") + line_rate))

    return LineBreakdown(
        subtotal=subtotal,
        tax_amount=tax,
        total=total,
        tax_rate=line_rate,
        unit_value=unit_value,
        unit_price_with_tax=unit_price_with_tax,
    )


def compute_breakdown(
    lines: Iterable[InvoiceLine],
    rate: Optional[Decimal] = None,
) -> MonetaryBreakdown:
    rate = get_igv_rate() if rate is None else Decimal(rate)

    line_breakdowns = tuple(compute_line_breakdown(line, rate) for line in lines)

    subtotal = sum((b.subtotal for b in line_breakdowns), ZERO)
    tax_amount = sum((b.tax_amount for b in line_breakdowns), ZERO)
    total = sum((b.total for b in line_breakdowns), ZERO)

    return MonetaryBreakdown(
        subtotal=q2(subtotal),
        tax_amount=q2(tax_amount),
        total=q2(total),
        lines=line_breakdowns,
    )
