# cpe/dto.py
"""
Estruturas de dados da emissão de CPE.

EmissionPayload é a estrutura intermediária única compartilhada entre o
builder UBL e o caminho de assinatura/transmissão: cabeçalho, emissor,
cliente, linhas e totais já calculados.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID


def format_document_id(series: str, number: int) -> str:
    """Ex: ("F001", 42) -> "F001-00000042"."""
    return f"{series}-{number:08d}"


def build_filename(issuer_id: str, document_type: str, series: str, number: int) -> str:
    """
    Nome base dos artefatos (XML, ZIP, CDR): RUC-TIPO-SERIE-NUMERO.

    Ex: ("20123456789", "01", "F001", 42) -> "20123456789-01-F001-00000042"
    """
    return f"{issuer_id}-{document_type}-{format_document_id(series, number)}"


@dataclass(frozen=True)
class Issuer:
    tax_id: str
    legal_name: str
    trade_name: str = ""
    # 0000 = domicílio fiscal; obrigatório (rejeição SUNAT 3030)
    address_type_code: str = "0000"
    ubigeo: str = "150101"
    address_line: str = ""
    district: str = ""
    province: str = ""
    department: str = ""
    country_code: str = "PE"
    tax_id_scheme: str = "6"


@dataclass(frozen=True)
class Customer:
    doc_type: str  # 6=RUC, 1=DNI, 0=sem documento...
    doc_number: str
    name: str
    address: str = ""


@dataclass(frozen=True)
class NoteReference:
    """
    Documento afetado por uma nota de crédito/débito.
    """

    document_type: str
    document_id: str  # ex: F001-00000010
    reason_code: str  # catálogo 09 (NC) / 10 (ND)
    description: str


@dataclass(frozen=True)
class DocumentHeader:
    series: str
    issue_date: date
    currency: str = "PEN"
    operation_type: str = "0101"
    related_sale_id: Optional[UUID] = None
    reference: Optional[NoteReference] = None
    # Preenchidos pelo orquestrador
    document_type: Optional[str] = None
    number: Optional[int] = None

    @property
    def document_id(self) -> str:
        return format_document_id(self.series, self.number)


@dataclass(frozen=True)
class InvoiceLine:
    description: str
    quantity: Decimal
    unit_price: Decimal
    unit_code: str = "NIU"
    tax_affectation: str = "10"  # catálogo 07; 10 = gravado
    price_includes_tax: bool = True
    product_code: Optional[str] = None


@dataclass(frozen=True)
class LineBreakdown:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    tax_rate: Decimal
    # Preços unitários com 5 casas (sem e com imposto)
    unit_value: Decimal
    unit_price_with_tax: Decimal


@dataclass(frozen=True)
class MonetaryBreakdown:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    lines: Tuple[LineBreakdown, ...] = ()


@dataclass(frozen=True)
class EmissionPayload:
    header: DocumentHeader
    issuer: Issuer
    customer: Customer
    lines: Tuple[InvoiceLine, ...]
    breakdown: MonetaryBreakdown

    @property
    def filename(self) -> str:
        return build_filename(
            self.issuer.tax_id,
            self.header.document_type,
            self.header.series,
            self.header.number,
        )


@dataclass(frozen=True)
class EmittedDocumentRecord:
    """
    Retrato imutável de um EmittedDocument, devolvido pelos repositórios.
    """

    id: UUID
    document_type: str
    series: str
    number: int
    issue_date: date
    filename: str
    status: str
    related_sale_id: Optional[UUID] = None
    content_hash: str = ""
    xml_storage_path: str = ""
    package_storage_path: str = ""
    response_archive_path: Optional[str] = None
    authority_code: Optional[str] = None
    authority_message: Optional[str] = None
    raw_response: Optional[str] = field(default=None, repr=False)
    retry_count: int = 0
    created_at: Optional[datetime] = None
