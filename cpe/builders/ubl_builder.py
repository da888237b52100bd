# cpe/builders/ubl_builder.py
"""
Builder UBL 2.1 (padrão SUNAT Peru) para facturas, boletas e notas.

Função pura: as mesmas entradas (incluindo número e data de emissão) geram
exatamente os mesmos bytes. Nada de timestamp, id aleatório ou formatação
dependente de locale.

Raízes:
  - 01 / 03 -> Invoice
  - 07      -> CreditNote
  - 08      -> DebitNote

Campos estruturalmente obrigatórios são verificados ANTES de renderizar
(DocumentBuildError): rejeição da SUNAT por estrutura é a mais cara, então
tem que falhar aqui e não na transmissão.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from lxml import etree

from cpe.dto import Customer, DocumentHeader, InvoiceLine, Issuer, LineBreakdown, MonetaryBreakdown
from cpe.exceptions import DocumentBuildError
from cpe.services.impostos_service import q2, q5

CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
EXT_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"
DS_NS = "http://www.w3.org/2000/09/xmldsig#"

PREFIXES = {"cac": CAC_NS, "cbc": CBC_NS, "ext": EXT_NS, "ds": DS_NS}

UBL_VERSION = "2.1"
CUSTOMIZATION_ID = "2.0"

# Código do domicílio fiscal (RegistrationAddress/AddressTypeCode)
ADDRESS_TYPE_FISCAL = "0000"

SUNAT_AGENCY = "PE:SUNAT"
UNECE_AGENCY = "United Nations Economic Commission for Europe"
CATALOGO_URI = "urn:pe:gob:sunat:cpe:see:gem:catalogos:catalogo{:02d}"


class _Shape:
    """Variações de elementos por tipo de raiz."""

    def __init__(self, root: str, type_code: str | None, line: str, quantity: str, monetary_total: str):
        self.root = root
        self.type_code = type_code
        self.line = line
        self.quantity = quantity
        self.monetary_total = monetary_total

    @property
    def namespace(self) -> str:
        return f"urn:oasis:names:specification:ubl:schema:xsd:{self.root}-2"


INVOICE = _Shape("Invoice", "InvoiceTypeCode", "InvoiceLine", "InvoicedQuantity", "LegalMonetaryTotal")
CREDIT_NOTE = _Shape("CreditNote", None, "CreditNoteLine", "CreditedQuantity", "LegalMonetaryTotal")
DEBIT_NOTE = _Shape("DebitNote", None, "DebitNoteLine", "DebitedQuantity", "RequestedMonetaryTotal")

SHAPES: Dict[str, _Shape] = {
    "01": INVOICE,
    "03": INVOICE,
    "07": CREDIT_NOTE,
    "08": DEBIT_NOTE,
}

NOTE_REASON_CATALOG = {"07": (9, "Tipo de nota de credito"), "08": (10, "Tipo de nota de debito")}

# Tributos (catálogo 05): código -> (nome, código internacional)
TAX_SCHEMES: Dict[str, Tuple[str, str]] = {
    "1000": ("IGV", "VAT"),
    "9995": ("EXP", "FRE"),
    "9997": ("EXO", "VAT"),
    "9998": ("INA", "FRE"),
}
TAX_SCHEME_ORDER = ("1000", "9995", "9997", "9998")


def tax_scheme_for(tax_affectation: str) -> str:
    """
    Catálogo 07 -> catálogo 05.
      1x gravado -> 1000 (IGV); 2x exonerado -> 9997;
      3x inafeto -> 9998; 4x exportação -> 9995.
    """
    first = str(tax_affectation)[:1]
    return {"1": "1000", "2": "9997", "3": "9998", "4": "9995"}.get(first, "1000")


# ---------------------------------------------------------------------------
# Formatação
# ---------------------------------------------------------------------------


def fmt_amount(value: Decimal) -> str:
    return f"{q2(value):.2f}"


def fmt_price(value: Decimal) -> str:
    return f"{q5(value):.5f}"


def fmt_quantity(value: Decimal) -> str:
    # 2.50 -> "2.5", 100 -> "100"
    return f"{Decimal(value).normalize():f}"


def fmt_percent(rate: Decimal) -> str:
    return f"{q2(Decimal(rate) * 100):.2f}"


# ---------------------------------------------------------------------------
# Helpers lxml
# ---------------------------------------------------------------------------


def _qname(tag: str) -> str:
    prefix, local = tag.split(":", 1)
    return f"{{{PREFIXES[prefix]}}}{local}"


def _el(parent, tag: str, text: str | None = None, attrs: Dict[str, str] | None = None):
    node = etree.SubElement(parent, _qname(tag))
    for key, value in (attrs or {}).items():
        node.set(key, value)
    if text is not None:
        node.text = text
    return node


def _amount(parent, tag: str, value: Decimal, currency: str):
    return _el(parent, tag, fmt_amount(value), {"currencyID": currency})


def _tax_scheme(parent, scheme_code: str):
    name, type_code = TAX_SCHEMES[scheme_code]
    scheme = _el(parent, "cac:TaxScheme")
    _el(scheme, "cbc:ID", scheme_code, {"schemeID": "UN/ECE 5153", "schemeAgencyID": "6"})
    _el(scheme, "cbc:Name", name)
    _el(scheme, "cbc:TaxTypeCode", type_code)
    return scheme


# ---------------------------------------------------------------------------
# Validação estrutural
# ---------------------------------------------------------------------------


def validate_structure(
    header: DocumentHeader,
    issuer: Issuer,
    customer: Customer,
    lines: Sequence[InvoiceLine],
    breakdown: MonetaryBreakdown,
) -> None:
    if header.document_type not in SHAPES:
        raise DocumentBuildError(
            f"Tipo de documento não suportado: {header.document_type!r}.",
            field="header.document_type",
        )
    if not header.number or header.number < 1:
        raise DocumentBuildError("Documento sem correlativo alocado.", field="header.number")
    if header.issue_date is None:
        raise DocumentBuildError("Documento sem data de emissão.", field="header.issue_date")

    # Rejeição SUNAT 3030
    if issuer.address_type_code != ADDRESS_TYPE_FISCAL:
        raise DocumentBuildError(
            "Falta cbc:AddressTypeCode=0000 na RegistrationAddress do emissor.",
            field="issuer.address_type_code",
        )
    if not (issuer.tax_id or "").strip():
        raise DocumentBuildError("RUC do emissor obrigatório.", field="issuer.tax_id")
    if not (issuer.legal_name or "").strip():
        raise DocumentBuildError("Razão social do emissor obrigatória.", field="issuer.legal_name")

    if not (customer.doc_number or "").strip() or not (customer.name or "").strip():
        raise DocumentBuildError("Cliente sem documento ou nome.", field="customer")

    if header.document_type in NOTE_REASON_CATALOG and header.reference is None:
        raise DocumentBuildError(
            "Nota de crédito/débito sem documento de referência.",
            field="header.reference",
        )

    if not lines:
        raise DocumentBuildError("Documento sem linhas.", field="lines")
    if len(breakdown.lines) != len(lines):
        raise DocumentBuildError(
            "Totais por linha não correspondem às linhas do documento.",
            field="breakdown.lines",
        )


# ---------------------------------------------------------------------------
# Blocos
# ---------------------------------------------------------------------------


def _build_header(root, shape: _Shape, header: DocumentHeader):
    _el(root, "cbc:UBLVersionID", UBL_VERSION)
    _el(root, "cbc:CustomizationID", CUSTOMIZATION_ID)

    if shape is INVOICE:
        _el(
            root,
            "cbc:ProfileID",
            header.operation_type,
            {
                "schemeName": "Tipo de Operacion",
                "schemeAgencyName": SUNAT_AGENCY,
                "schemeURI": CATALOGO_URI.format(17),
            },
        )

    _el(root, "cbc:ID", header.document_id)
    _el(root, "cbc:IssueDate", header.issue_date.isoformat())

    if shape.type_code:
        _el(
            root,
            f"cbc:{shape.type_code}",
            header.document_type,
            {
                "listID": header.operation_type,
                "listAgencyName": SUNAT_AGENCY,
                "listName": "Tipo de Documento",
                "listURI": CATALOGO_URI.format(1),
            },
        )

    _el(
        root,
        "cbc:DocumentCurrencyCode",
        header.currency,
        {"listID": "ISO 4217 Alpha", "listName": "Currency", "listAgencyName": UNECE_AGENCY},
    )


def _build_note_references(root, header: DocumentHeader):
    ref = header.reference
    catalog, list_name = NOTE_REASON_CATALOG[header.document_type]

    discrepancy = _el(root, "cac:DiscrepancyResponse")
    _el(discrepancy, "cbc:ReferenceID", ref.document_id)
    _el(
        discrepancy,
        "cbc:ResponseCode",
        ref.reason_code,
        {"listAgencyName": SUNAT_AGENCY, "listName": list_name, "listURI": CATALOGO_URI.format(catalog)},
    )
    _el(discrepancy, "cbc:Description", ref.description)

    billing = _el(root, "cac:BillingReference")
    invoice_ref = _el(billing, "cac:InvoiceDocumentReference")
    _el(invoice_ref, "cbc:ID", ref.document_id)
    _el(
        invoice_ref,
        "cbc:DocumentTypeCode",
        ref.document_type,
        {"listAgencyName": SUNAT_AGENCY, "listName": "Tipo de Documento", "listURI": CATALOGO_URI.format(1)},
    )


def _build_signature(root, issuer: Issuer):
    # Referência à assinatura; o bloco ds:Signature é inserido pelo assinador
    signature = _el(root, "cac:Signature")
    _el(signature, "cbc:ID", "IDSignST")
    party = _el(signature, "cac:SignatoryParty")
    _el(_el(party, "cac:PartyIdentification"), "cbc:ID", issuer.tax_id)
    _el(_el(party, "cac:PartyName"), "cbc:Name", issuer.legal_name)
    attachment = _el(signature, "cac:DigitalSignatureAttachment")
    _el(_el(attachment, "cac:ExternalReference"), "cbc:URI", "#SignatureST")


def _company_id(parent, scheme_id: str, value: str):
    return _el(
        parent,
        "cbc:CompanyID",
        value,
        {
            "schemeID": scheme_id,
            "schemeName": "SUNAT:Identificador de Documento de Identidad",
            "schemeAgencyName": SUNAT_AGENCY,
            "schemeURI": CATALOGO_URI.format(6),
        },
    )


def _country(parent, code: str):
    country = _el(parent, "cac:Country")
    _el(
        country,
        "cbc:IdentificationCode",
        code,
        {"listID": "ISO 3166-1", "listAgencyName": UNECE_AGENCY, "listName": "Country"},
    )


def _build_supplier(root, issuer: Issuer):
    party = _el(_el(root, "cac:AccountingSupplierParty"), "cac:Party")
    _el(_el(party, "cac:PartyName"), "cbc:Name", issuer.trade_name or issuer.legal_name)

    tax_scheme = _el(party, "cac:PartyTaxScheme")
    _el(tax_scheme, "cbc:RegistrationName", issuer.legal_name)
    _company_id(tax_scheme, issuer.tax_id_scheme, issuer.tax_id)

    address = _el(tax_scheme, "cac:RegistrationAddress")
    _el(address, "cbc:ID", issuer.ubigeo, {"schemeName": "Ubigeos", "schemeAgencyName": "PE:INEI"})
    _el(
        address,
        "cbc:AddressTypeCode",
        issuer.address_type_code,
        {"listAgencyName": SUNAT_AGENCY, "listName": "Establecimientos anexos"},
    )
    _el(address, "cbc:CitySubdivisionName", issuer.district or "-")
    _el(address, "cbc:CityName", issuer.province or "-")
    _el(address, "cbc:CountrySubentity", issuer.department or "-")
    _el(address, "cbc:District", issuer.district or "-")
    _el(_el(address, "cac:AddressLine"), "cbc:Line", issuer.address_line or "-")
    _country(address, issuer.country_code)

    scheme = _el(tax_scheme, "cac:TaxScheme")
    _el(scheme, "cbc:ID", "-", {"schemeID": "UN/ECE 5153", "schemeAgencyID": "6"})


def _build_customer(root, customer: Customer):
    party = _el(_el(root, "cac:AccountingCustomerParty"), "cac:Party")

    tax_scheme = _el(party, "cac:PartyTaxScheme")
    _el(tax_scheme, "cbc:RegistrationName", customer.name)
    _company_id(tax_scheme, customer.doc_type, customer.doc_number)

    if customer.address:
        address = _el(tax_scheme, "cac:RegistrationAddress")
        _el(_el(address, "cac:AddressLine"), "cbc:Line", customer.address)
        _country(address, "PE")

    scheme = _el(tax_scheme, "cac:TaxScheme")
    _el(scheme, "cbc:ID", "-", {"schemeID": "UN/ECE 5153", "schemeAgencyID": "6"})


def _group_by_scheme(
    lines: Sequence[InvoiceLine],
    breakdowns: Sequence[LineBreakdown],
) -> List[Tuple[str, Decimal, Decimal]]:
    """(esquema, base tributável, imposto) por tributo presente, em ordem fixa."""
    totals: Dict[str, List[Decimal]] = {}
    for line, b in zip(lines, breakdowns):
        acc = totals.setdefault(tax_scheme_for(line.tax_affectation), [Decimal("0"), Decimal("0")])
        acc[0] += b.subtotal
        acc[1] += b.tax_amount
    return [(code, *totals[code]) for code in TAX_SCHEME_ORDER if code in totals]


def _build_tax_total(root, lines, breakdown: MonetaryBreakdown, currency: str):
    tax_total = _el(root, "cac:TaxTotal")
    _amount(tax_total, "cbc:TaxAmount", breakdown.tax_amount, currency)

    for scheme_code, taxable, tax in _group_by_scheme(lines, breakdown.lines):
        subtotal = _el(tax_total, "cac:TaxSubtotal")
        _amount(subtotal, "cbc:TaxableAmount", taxable, currency)
        _amount(subtotal, "cbc:TaxAmount", tax, currency)
        category = _el(subtotal, "cac:TaxCategory")
        _tax_scheme(category, scheme_code)


def _build_monetary_total(root, shape: _Shape, breakdown: MonetaryBreakdown, currency: str):
    monetary = _el(root, f"cac:{shape.monetary_total}")
    _amount(monetary, "cbc:LineExtensionAmount", breakdown.subtotal, currency)
    _amount(monetary, "cbc:TaxInclusiveAmount", breakdown.total, currency)
    _amount(monetary, "cbc:PayableAmount", breakdown.total, currency)


def _build_line(root, shape: _Shape, index: int, line: InvoiceLine, b: LineBreakdown, currency: str):
    node = _el(root, f"cac:{shape.line}")
    _el(node, "cbc:ID", str(index))
    _el(
        node,
        f"cbc:{shape.quantity}",
        fmt_quantity(line.quantity),
        {
            "unitCode": line.unit_code,
            "unitCodeListID": "UN/ECE rec 20",
            "unitCodeListAgencyName": UNECE_AGENCY,
        },
    )
    _amount(node, "cbc:LineExtensionAmount", b.subtotal, currency)

    pricing = _el(_el(node, "cac:PricingReference"), "cac:AlternativeConditionPrice")
    _el(pricing, "cbc:PriceAmount", fmt_price(b.unit_price_with_tax), {"currencyID": currency})
    _el(
        pricing,
        "cbc:PriceTypeCode",
        "01",
        {"listName": "Tipo de Precio", "listAgencyName": SUNAT_AGENCY, "listURI": CATALOGO_URI.format(16)},
    )

    tax_total = _el(node, "cac:TaxTotal")
    _amount(tax_total, "cbc:TaxAmount", b.tax_amount, currency)
    subtotal = _el(tax_total, "cac:TaxSubtotal")
    _amount(subtotal, "cbc:TaxableAmount", b.subtotal, currency)
    _amount(subtotal, "cbc:TaxAmount", b.tax_amount, currency)
    category = _el(subtotal, "cac:TaxCategory")
    _el(category, "cbc:Percent", fmt_percent(b.tax_rate))
    _el(
        category,
        "cbc:TaxExemptionReasonCode",
        line.tax_affectation,
        {"listAgencyName": SUNAT_AGENCY, "listName": "Afectacion del IGV", "listURI": CATALOGO_URI.format(7)},
    )
    _tax_scheme(category, tax_scheme_for(line.tax_affectation))

    item = _el(node, "cac:Item")
    _el(item, "cbc:Description", line.description)
    if line.product_code:
        _el(_el(item, "cac:SellersItemIdentification"), "cbc:ID", line.product_code)

    _el(_el(node, "cac:Price"), "cbc:PriceAmount", fmt_price(b.unit_value), {"currencyID": currency})


# ---------------------------------------------------------------------------
# API pública
# ---------------------------------------------------------------------------


def build(
    header: DocumentHeader,
    issuer: Issuer,
    customer: Customer,
    lines: Sequence[InvoiceLine],
    breakdown: MonetaryBreakdown,
) -> bytes:
    """
    Renderiza o XML UBL do documento.

    Levanta DocumentBuildError (com o campo) se faltar algo estruturalmente
    obrigatório. Devolve bytes UTF-8 com declaração XML.
    """
    lines = list(lines)
    validate_structure(header, issuer, customer, lines, breakdown)

    shape = SHAPES[header.document_type]
    nsmap = {None: shape.namespace, **PREFIXES}
    root = etree.Element(f"{{{shape.namespace}}}{shape.root}", nsmap=nsmap)

    _build_header(root, shape, header)
    if header.document_type in NOTE_REASON_CATALOG:
        _build_note_references(root, header)
    _build_signature(root, issuer)
    _build_supplier(root, issuer)
    _build_customer(root, customer)
    _build_tax_total(root, lines, breakdown, header.currency)
    _build_monetary_total(root, shape, breakdown, header.currency)

    for index, (line, b) in enumerate(zip(lines, breakdown.lines), start=1):
        _build_line(root, shape, index, line, b, header.currency)

    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)
