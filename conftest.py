# conftest.py (na raiz do projeto)

import base64
import io
import zipfile
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from cpe.dto import Customer, DocumentHeader, InvoiceLine, Issuer
from cpe.sunat_clients import (
    OUTCOME_ACCEPTED,
    OUTCOME_REJECTED,
    SubmissionOutcome,
)
from cpe.xades_signer import SIGNER_DISABLED, SigningResult


ISSUER_RUC = "20123456789"
CUSTOMER_RUC = "20555555551"

CDR_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<ar:ApplicationResponse
    xmlns:ar="urn:oasis:names:specification:ubl:schema:xsd:ApplicationResponse-2"
    xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
    xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">
  <cbc:ID>1700000000000</cbc:ID>
  <cac:DocumentResponse>
    <cac:Response>
      <cbc:ReferenceID>F001-00000001</cbc:ReferenceID>
      {response_code}
      <cbc:Description>{description}</cbc:Description>
    </cac:Response>
  </cac:DocumentResponse>
</ar:ApplicationResponse>
"""

SOAP_OK_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<soap-env:Envelope xmlns:soap-env="http://schemas.xmlsoap.org/soap/envelope/">
  <soap-env:Body>
    <br:sendBillResponse xmlns:br="http://service.sunat.gob.pe">
      <applicationResponse>{payload}</applicationResponse>
    </br:sendBillResponse>
  </soap-env:Body>
</soap-env:Envelope>
"""

SOAP_FAULT_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<soap-env:Envelope xmlns:soap-env="http://schemas.xmlsoap.org/soap/envelope/">
  <soap-env:Body>
    <soap-env:Fault>
      <faultcode>{code}</faultcode>
      <faultstring>{string}</faultstring>
    </soap-env:Fault>
  </soap-env:Body>
</soap-env:Envelope>
"""


# =============================================================================
# ARMAZENAMENTO / USUÁRIO / CLIENT HTTP
# =============================================================================

@pytest.fixture(autouse=True)
def cpe_storage_path(settings, tmp_path):
    """
    Cada teste grava os artefatos em um diretório próprio.
    """
    path = tmp_path / "cpe"
    settings.CPE_STORAGE_PATH = str(path)
    return path


@pytest.fixture
def operador(db):
    User = get_user_model()
    return User.objects.create_user(username="operador", password="123456")


@pytest.fixture
def api_client(operador):
    client = APIClient()
    token = str(RefreshToken.for_user(operador).access_token)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
    return client


# =============================================================================
# DADOS DE EMISSÃO
# =============================================================================

@pytest.fixture
def issuer():
    return Issuer(
        tax_id=ISSUER_RUC,
        legal_name="LAPIZ Y PAPEL S.A.C.",
        trade_name="LAPIZ Y PAPEL",
        ubigeo="150101",
        address_line="Av. Arequipa 123",
        district="Lima",
        province="Lima",
        department="Lima",
    )


@pytest.fixture
def customer():
    return Customer(doc_type="6", doc_number=CUSTOMER_RUC, name="CLIENTE EMPRESA S.A.")


@pytest.fixture
def invoice_header():
    return DocumentHeader(series="F001", issue_date=date(2024, 3, 15))


@pytest.fixture
def invoice_lines():
    return [
        InvoiceLine(
            description="Cuaderno A4",
            quantity=Decimal("2"),
            unit_price=Decimal("59.00"),
            product_code="CUA-A4",
        ),
    ]


# =============================================================================
# FAKES (assinador / SUNAT)
# =============================================================================

class FakeSignerClient:
    """
    Assinador em memória: "assina" anexando um comentário ao XML.
    """

    def __init__(self, *, enabled=True, result=None):
        self.enabled = enabled
        self.result = result
        self.calls = []

    def is_enabled(self):
        return self.enabled

    def health(self):
        return self.enabled

    def sign(self, xml):
        self.calls.append(xml)
        if not self.enabled:
            return SigningResult.failure(SIGNER_DISABLED, "Assinatura XAdES desabilitada.")
        if self.result is not None:
            return self.result
        return SigningResult.success(xml + b"<!-- assinado -->")


class FakeSunatClient:
    """
    Client SUNAT em memória.

    `errors` são levantados em ordem (um por chamada) antes de devolver `outcome`.
    """

    def __init__(self, outcome=None, errors=None):
        self.outcome = outcome
        self.errors = list(errors or [])
        self.calls = []

    def submit(self, endpoint, credentials, package_name, package_bytes):
        self.calls.append(
            {
                "endpoint": endpoint,
                "username": credentials.username,
                "package_name": package_name,
                "package_bytes": package_bytes,
            }
        )
        if self.errors:
            raise self.errors.pop(0)
        return self.outcome


@pytest.fixture
def fake_signer():
    return FakeSignerClient()


@pytest.fixture
def fake_signer_cls():
    return FakeSignerClient


@pytest.fixture
def fake_sunat_cls():
    return FakeSunatClient


# =============================================================================
# RESPOSTAS SUNAT
# =============================================================================

def _zip_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def make_cdr_archive():
    def _make(code="0", description="La Factura numero F001-00000001, ha sido aceptada", entry_name="R-cdr.xml"):
        response_code = "" if code is None else f"<cbc:ResponseCode>{code}</cbc:ResponseCode>"
        cdr = CDR_TEMPLATE.format(response_code=response_code, description=description)
        return _zip_bytes({entry_name: cdr.encode("utf-8")})

    return _make


@pytest.fixture
def make_soap_response(make_cdr_archive):
    def _make(archive=None, **cdr_kwargs):
        archive = archive if archive is not None else make_cdr_archive(**cdr_kwargs)
        payload = base64.b64encode(archive).decode("ascii")
        return SOAP_OK_TEMPLATE.format(payload=payload).encode("utf-8")

    return _make


@pytest.fixture
def make_soap_fault():
    def _make(code="soap-env:Client.0306", string="No se puede leer (parsear) el archivo XML"):
        return SOAP_FAULT_TEMPLATE.format(code=code, string=string).encode("utf-8")

    return _make


@pytest.fixture
def accepted_outcome(make_cdr_archive):
    return SubmissionOutcome(
        status=OUTCOME_ACCEPTED,
        code="0",
        description="La Factura numero F001-00000001, ha sido aceptada",
        raw_response=b"<soap/>",
        response_archive=make_cdr_archive(),
    )


@pytest.fixture
def rejected_outcome(make_cdr_archive):
    return SubmissionOutcome(
        status=OUTCOME_REJECTED,
        code="2335",
        description="El documento electronico ingresado ha sido alterado",
        raw_response=b"<soap/>",
        response_archive=make_cdr_archive(code="2335"),
    )
