# cpe/services/validacao_service.py
"""
Validação de entrada da emissão.

Roda ANTES da alocação do correlativo: entrada malformada nunca queima número.
Cada função devolve um ValidationResult em vez de levantar exceção; quem
decide levantar (InvalidEmissionInput) é o orquestrador.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from cpe.dto import Customer, DocumentHeader, InvoiceLine
from cpe.models import DocumentType

SERIES_RE = re.compile(r"^[A-Z0-9]{4}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
AFFECTATION_RE = re.compile(r"^[1-4]\d$")

NOTE_TYPES = {DocumentType.CREDIT_NOTE.value, DocumentType.DEBIT_NOTE.value}

# Tipo de documento de identidade (catálogo 06)
DOC_TYPE_RUC = "6"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    field: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, field: str, reason: str) -> "ValidationResult":
        return cls(valid=False, field=field, reason=reason)


def _as_decimal(value) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def validate_header(document_type: str, header: DocumentHeader) -> ValidationResult:
    if document_type not in DocumentType.values:
        return ValidationResult.invalid("document_type", f"Tipo de documento desconhecido: {document_type!r}.")

    series = header.series or ""
    if not SERIES_RE.match(series):
        return ValidationResult.invalid("series", "Série deve ter 4 caracteres alfanuméricos maiúsculos.")

    if document_type == DocumentType.INVOICE and not series.startswith("F"):
        return ValidationResult.invalid("series", "Série de factura deve começar com 'F'.")
    if document_type == DocumentType.RECEIPT and not series.startswith("B"):
        return ValidationResult.invalid("series", "Série de boleta deve começar com 'B'.")
    if document_type in NOTE_TYPES and series[0] not in ("F", "B"):
        return ValidationResult.invalid("series", "Série de nota deve começar com 'F' ou 'B'.")

    if not CURRENCY_RE.match(header.currency or ""):
        return ValidationResult.invalid("currency", "Moeda deve ser um código ISO 4217 (ex: PEN).")

    if header.issue_date is None:
        return ValidationResult.invalid("issue_date", "Data de emissão obrigatória.")

    if document_type in NOTE_TYPES:
        ref = header.reference
        if ref is None:
            return ValidationResult.invalid("reference", "Nota de crédito/débito exige documento de referência.")
        if not ref.document_id or not ref.document_type:
            return ValidationResult.invalid("reference", "Referência incompleta (tipo e id do documento).")
        if not ref.reason_code:
            return ValidationResult.invalid("reference.reason_code", "Motivo da nota obrigatório.")

    return ValidationResult.ok()


def validate_customer(document_type: str, customer: Optional[Customer]) -> ValidationResult:
    if customer is None:
        return ValidationResult.invalid("customer", "Cliente obrigatório.")
    if not (customer.name or "").strip():
        return ValidationResult.invalid("customer.name", "Nome/razão social do cliente obrigatório.")
    if not (customer.doc_type or "").strip():
        return ValidationResult.invalid("customer.doc_type", "Tipo de documento do cliente obrigatório.")

    doc_number = (customer.doc_number or "").strip()
    if not 8 <= len(doc_number) <= 15:
        return ValidationResult.invalid("customer.doc_number", "Documento do cliente deve ter entre 8 e 15 caracteres.")

    # Factura só para cliente com RUC
    if document_type == DocumentType.INVOICE:
        if customer.doc_type != DOC_TYPE_RUC:
            return ValidationResult.invalid("customer.doc_type", "Factura exige cliente com RUC (tipo 6).")
        if not (doc_number.isdigit() and len(doc_number) == 11):
            return ValidationResult.invalid("customer.doc_number", "RUC deve ter 11 dígitos.")

    return ValidationResult.ok()


def validate_lines(lines: Iterable[InvoiceLine]) -> ValidationResult:
    lines = list(lines or [])
    if not lines:
        return ValidationResult.invalid("lines", "Documento sem itens.")

    for idx, line in enumerate(lines):
        prefix = f"lines[{idx}]"

        if not (line.description or "").strip():
            return ValidationResult.invalid(f"{prefix}.description", "Descrição obrigatória.")

        quantity = _as_decimal(line.quantity)
        if quantity is None or not quantity.is_finite() or quantity < 0:
            return ValidationResult.invalid(f"{prefix}.quantity", "Quantidade deve ser um decimal >= 0.")

        unit_price = _as_decimal(line.unit_price)
        if unit_price is None or not unit_price.is_finite() or unit_price < 0:
            return ValidationResult.invalid(f"{prefix}.unit_price", "Preço unitário deve ser um decimal >= 0.")

        if not (line.unit_code or "").strip():
            return ValidationResult.invalid(f"{prefix}.unit_code", "Unidade de medida obrigatória.")

        if not AFFECTATION_RE.match(line.tax_affectation or ""):
            return ValidationResult.invalid(
                f"{prefix}.tax_affectation",
                "Código de afetação do IGV inválido (catálogo 07).",
            )

    return ValidationResult.ok()


def validate_emission_input(
    document_type: str,
    header: DocumentHeader,
    customer: Customer,
    lines: Iterable[InvoiceLine],
) -> ValidationResult:
    for result in (
        validate_header(document_type, header),
        validate_customer(document_type, customer),
        validate_lines(lines),
    ):
        if not result.valid:
            return result
    return ValidationResult.ok()
