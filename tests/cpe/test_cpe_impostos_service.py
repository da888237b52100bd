# tests/cpe/test_cpe_impostos_service.py
from decimal import Decimal

import pytest

from cpe.dto import InvoiceLine
from cpe.services.impostos_service import compute_breakdown, get_igv_rate, split_amount

IGV = Decimal("0.18")


def _line(unit_price, quantity="1", includes_tax=True, affectation="10"):
    return InvoiceLine(
        description="Item",
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        tax_affectation=affectation,
        price_includes_tax=includes_tax,
    )


def test_valor_com_imposto_decompoe_em_base_e_igv():
    assert split_amount(Decimal("118.00"), includes_tax=True, rate=IGV) == (
        Decimal("100.00"),
        Decimal("18.00"),
        Decimal("118.00"),
    )


def test_valor_sem_imposto_soma_igv():
    assert split_amount(Decimal("100.00"), includes_tax=False, rate=IGV) == (
        Decimal("100.00"),
        Decimal("18.00"),
        Decimal("118.00"),
    )


def test_arredondamento_half_up_em_cada_parcela():
    # 10.005 -> 10.01 (half up); 10.01 * 0.18 = 1.8018 -> 1.80
    subtotal, tax, total = split_amount(Decimal("10.005"), includes_tax=False, rate=IGV)
    assert (subtotal, tax, total) == (Decimal("10.01"), Decimal("1.80"), Decimal("11.81"))

    # 10 / 1.18 = 8.4745... -> 8.47; imposto é a diferença
    subtotal, tax, total = split_amount(Decimal("10"), includes_tax=True, rate=IGV)
    assert (subtotal, tax, total) == (Decimal("8.47"), Decimal("1.53"), Decimal("10.00"))


@pytest.mark.parametrize(
    "amount,includes_tax",
    [
        ("0.01", True),
        ("0.99", False),
        ("3.33", True),
        ("19.99", False),
        ("1234.56", True),
        ("7.77", False),
    ],
)
def test_total_sempre_igual_a_base_mais_imposto(amount, includes_tax):
    subtotal, tax, total = split_amount(Decimal(amount), includes_tax=includes_tax, rate=IGV)
    assert total == subtotal + tax
    for value in (subtotal, tax, total):
        assert value == value.quantize(Decimal("0.01"))


def test_totais_do_documento_sao_soma_das_linhas_arredondadas():
    # Cálculo global daria 30 / 1.18 = 25.42; por linha: 3 x 8.47 = 25.41
    breakdown = compute_breakdown([_line("10.00"), _line("10.00"), _line("10.00")], rate=IGV)

    assert breakdown.subtotal == Decimal("25.41")
    assert breakdown.tax_amount == Decimal("4.59")
    assert breakdown.total == Decimal("30.00")
    assert breakdown.subtotal == sum(b.subtotal for b in breakdown.lines)
    assert breakdown.tax_amount == sum(b.tax_amount for b in breakdown.lines)
    assert breakdown.total == breakdown.subtotal + breakdown.tax_amount


def test_precos_unitarios_com_cinco_casas():
    breakdown = compute_breakdown([_line("59.00", quantity="2")], rate=IGV)
    line = breakdown.lines[0]

    assert (line.subtotal, line.tax_amount, line.total) == (
        Decimal("100.00"),
        Decimal("18.00"),
        Decimal("118.00"),
    )
    assert line.unit_value == Decimal("50.00000")
    assert line.unit_price_with_tax == Decimal("59.00000")


def test_precos_unitarios_de_pacote_dividido_pela_quantidade():
    # 3 unidades por 10.00 (com IGV): 8.47 / 3 = 2.82333...
    line = compute_breakdown([_line("3.33333", quantity="3")], rate=IGV).lines[0]

    assert line.total == Decimal("10.00")
    assert line.unit_value == Decimal("2.82333")
    assert line.unit_price_with_tax == Decimal("3.33333")


def test_linha_exonerada_nao_tem_igv():
    breakdown = compute_breakdown(
        [_line("118.00"), _line("50.00", affectation="20")],
        rate=IGV,
    )
    exonerada = breakdown.lines[1]

    assert exonerada.tax_rate == Decimal("0")
    assert (exonerada.subtotal, exonerada.tax_amount, exonerada.total) == (
        Decimal("50.00"),
        Decimal("0.00"),
        Decimal("50.00"),
    )
    assert breakdown.subtotal == Decimal("150.00")
    assert breakdown.tax_amount == Decimal("18.00")
    assert breakdown.total == Decimal("168.00")


def test_linhas_com_e_sem_imposto_no_mesmo_documento():
    breakdown = compute_breakdown(
        [_line("118.00", includes_tax=True), _line("100.00", includes_tax=False)],
        rate=IGV,
    )
    assert breakdown.total == Decimal("236.00")
    assert breakdown.subtotal == Decimal("200.00")


def test_quantidade_zero_gera_valores_zerados():
    line = compute_breakdown([_line("59.00", quantity="0")], rate=IGV).lines[0]

    assert (line.subtotal, line.tax_amount, line.total) == (Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))
    assert line.unit_price_with_tax == Decimal("59.00000")
    assert line.unit_value == Decimal("50.00000")


def test_taxa_padrao_vem_dos_settings(settings):
    settings.CPE_IGV_RATE = "0.10"
    assert get_igv_rate() == Decimal("0.10")

    breakdown = compute_breakdown([_line("110.00")])
    assert (breakdown.subtotal, breakdown.tax_amount) == (Decimal("100.00"), Decimal("10.00"))
