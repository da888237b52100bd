# tests/cpe/test_cpe_emissao_service.py
import dataclasses
import io
import uuid
import zipfile
from pathlib import Path

import pytest

from cpe.dto import NoteReference
from cpe.exceptions import AllocationError, DocumentBuildError, InvalidEmissionInput
from cpe.models import DocumentSequence, EmittedDocument, EmittedDocumentStatus
from cpe.services.emissao_service import MAX_DIAGNOSTIC_LENGTH, EmissaoService, build_package
from cpe.storage import CpeStorage
from cpe.sunat_clients import (
    CODE_NO_CDR_XML,
    OUTCOME_ERROR,
    SubmissionOutcome,
    SunatTechnicalError,
    SunatUnavailableError,
)
from cpe.xades_signer import compute_digest

FILENAME = "20123456789-01-F001-00000001"


@pytest.fixture
def make_service(fake_signer, cpe_storage_path):
    def _make(sunat_client, *, signer=None, **kwargs):
        return EmissaoService(
            signer=signer or fake_signer,
            sunat_client=sunat_client,
            storage=CpeStorage(cpe_storage_path),
            **kwargs,
        )

    return _make


def _emit(service, header, issuer, customer, lines, document_type="01"):
    return service.emit(document_type, header, issuer, customer, lines)


# =============================================================================
# CAMINHO FELIZ
# =============================================================================


@pytest.mark.django_db
def test_emissao_aceita(
    make_service, fake_sunat_cls, fake_signer, accepted_outcome, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls(outcome=accepted_outcome)
    service = make_service(sunat)

    record = _emit(service, invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ACCEPTED
    assert (record.document_type, record.series, record.number) == ("01", "F001", 1)
    assert record.filename == FILENAME
    assert record.authority_code == "0"
    assert record.authority_message == accepted_outcome.description
    assert record.raw_response == "<soap/>"
    assert record.retry_count == 0

    # Hash calculado sobre os bytes assinados efetivamente gravados/enviados
    (xml_enviado,) = fake_signer.calls
    signed = xml_enviado + b"<!-- assinado -->"
    assert record.content_hash == compute_digest(signed)
    assert Path(record.xml_storage_path).read_bytes() == signed
    assert record.xml_storage_path.endswith(f"2024-03-15/{FILENAME}.xml")

    package = Path(record.package_storage_path).read_bytes()
    with zipfile.ZipFile(io.BytesIO(package)) as zf:
        assert zf.namelist() == [f"{FILENAME}.xml"]
        assert zf.read(f"{FILENAME}.xml") == signed

    assert Path(record.response_archive_path).read_bytes() == accepted_outcome.response_archive
    assert record.response_archive_path.endswith(f"cdr/R-{FILENAME}.zip")

    (call,) = sunat.calls
    assert call["package_name"] == f"{FILENAME}.zip"
    assert call["package_bytes"] == package
    assert call["username"] == "20123456789"

    doc = EmittedDocument.objects.get(id=record.id)
    assert doc.status == EmittedDocumentStatus.ACCEPTED


@pytest.mark.django_db
def test_emissao_rejeitada(
    make_service, fake_sunat_cls, rejected_outcome, invoice_header, issuer, customer, invoice_lines
):
    record = _emit(make_service(fake_sunat_cls(outcome=rejected_outcome)), invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.REJECTED
    assert record.authority_code == "2335"
    assert record.response_archive_path is not None


@pytest.mark.django_db
def test_numeros_consecutivos_por_serie(
    make_service, fake_sunat_cls, accepted_outcome, invoice_header, issuer, customer, invoice_lines
):
    service = make_service(fake_sunat_cls(outcome=accepted_outcome))

    primeiro = _emit(service, invoice_header, issuer, customer, invoice_lines)
    segundo = _emit(service, invoice_header, issuer, customer, invoice_lines)

    assert (primeiro.number, segundo.number) == (1, 2)
    assert segundo.filename == "20123456789-01-F001-00000002"


@pytest.mark.django_db
def test_nota_de_credito(make_service, fake_sunat_cls, accepted_outcome, invoice_header, issuer, customer, invoice_lines):
    header = dataclasses.replace(
        invoice_header,
        reference=NoteReference(
            document_type="01",
            document_id="F001-00000001",
            reason_code="01",
            description="Anulación de la operación",
        ),
    )
    sunat = fake_sunat_cls(outcome=accepted_outcome)

    record = _emit(make_service(sunat), header, issuer, customer, invoice_lines, document_type="07")

    assert record.status == EmittedDocumentStatus.ACCEPTED
    assert record.filename == "20123456789-07-F001-00000001"
    assert b"<CreditNote" in Path(record.xml_storage_path).read_bytes()


def test_pacote_e_deterministico(invoice_header):
    first = build_package(FILENAME, b"<Invoice/>", invoice_header.issue_date)
    second = build_package(FILENAME, b"<Invoice/>", invoice_header.issue_date)

    assert first == second
    with zipfile.ZipFile(io.BytesIO(first)) as zf:
        (info,) = zf.infolist()
        assert info.date_time == (2024, 3, 15, 0, 0, 0)
        assert info.compress_type == zipfile.ZIP_DEFLATED


# =============================================================================
# FALHAS APÓS O REGISTRO PENDING -> ERROR
# =============================================================================


@pytest.mark.django_db
def test_assinador_desabilitado_vira_erro_sem_transmitir(
    make_service, fake_sunat_cls, fake_signer_cls, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls()
    service = make_service(sunat, signer=fake_signer_cls(enabled=False))

    record = _emit(service, invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ERROR
    assert record.authority_code == "SIGNER_DISABLED"
    assert record.authority_message
    assert sunat.calls == []
    assert record.content_hash == ""
    assert record.package_storage_path == ""


@pytest.mark.django_db
def test_timeout_da_sunat_vira_erro_sem_retry(
    make_service, fake_sunat_cls, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls(errors=[SunatTechnicalError("Timeout aguardando resposta", codigo="TIMEOUT")])

    record = _emit(make_service(sunat, max_retries=3), invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ERROR
    assert record.authority_code == "TIMEOUT"
    assert record.retry_count == 0
    assert len(sunat.calls) == 1
    # Artefatos já gravados continuam referenciados
    assert Path(record.package_storage_path).exists()
    assert record.content_hash


@pytest.mark.django_db
def test_http_5xx_guarda_resposta_bruta(make_service, fake_sunat_cls, invoice_header, issuer, customer, invoice_lines):
    sunat = fake_sunat_cls(
        errors=[SunatTechnicalError("HTTP 502", codigo="HTTP_502", raw_response=b"<html>Bad Gateway</html>")]
    )

    record = _emit(make_service(sunat), invoice_header, issuer, customer, invoice_lines)

    assert (record.status, record.authority_code) == (EmittedDocumentStatus.ERROR, "HTTP_502")
    assert record.raw_response == "<html>Bad Gateway</html>"


@pytest.mark.django_db
def test_indisponibilidade_e_repetida(
    make_service, fake_sunat_cls, accepted_outcome, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls(
        outcome=accepted_outcome,
        errors=[SunatUnavailableError("Connection refused", codigo="UNAVAILABLE")],
    )

    record = _emit(make_service(sunat, max_retries=1), invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ACCEPTED
    assert record.retry_count == 1
    assert len(sunat.calls) == 2
    assert sunat.calls[0]["package_bytes"] == sunat.calls[1]["package_bytes"]


@pytest.mark.django_db
def test_indisponibilidade_esgota_tentativas(
    make_service, fake_sunat_cls, accepted_outcome, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls(
        outcome=accepted_outcome,
        errors=[SunatUnavailableError("Connection refused", codigo="UNAVAILABLE") for _ in range(3)],
    )

    record = _emit(make_service(sunat, max_retries=2), invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ERROR
    assert record.authority_code == "UNAVAILABLE"
    assert record.retry_count == 2
    assert len(sunat.calls) == 3


@pytest.mark.django_db
def test_erro_inesperado_vira_erro_com_mensagem_truncada(
    make_service, fake_sunat_cls, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls(errors=[RuntimeError("x" * 2000)])

    record = _emit(make_service(sunat), invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ERROR
    assert record.authority_code is None
    assert record.authority_message.startswith("RuntimeError: xxx")
    assert len(record.authority_message) == MAX_DIAGNOSTIC_LENGTH


@pytest.mark.django_db
def test_resposta_sem_xml_do_cdr_vira_erro(
    make_service, fake_sunat_cls, invoice_header, issuer, customer, invoice_lines
):
    outcome = SubmissionOutcome(
        status=OUTCOME_ERROR,
        code=CODE_NO_CDR_XML,
        description="XML do CDR não encontrado na resposta",
        raw_response=b"<soap/>",
        response_archive=b"PK\x05\x06" + b"\x00" * 18,
    )

    record = _emit(make_service(fake_sunat_cls(outcome=outcome)), invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ERROR
    assert record.authority_code == CODE_NO_CDR_XML
    assert Path(record.response_archive_path).read_bytes() == outcome.response_archive


class DiscoCheioNoCdr(CpeStorage):
    def save_response_archive(self, filename, archive):
        raise OSError(28, "No space left on device")


@pytest.mark.django_db
def test_falha_ao_gravar_cdr_preserva_decisao_da_sunat(
    fake_signer, fake_sunat_cls, accepted_outcome, cpe_storage_path, invoice_header, issuer, customer, invoice_lines
):
    service = EmissaoService(
        signer=fake_signer,
        sunat_client=fake_sunat_cls(outcome=accepted_outcome),
        storage=DiscoCheioNoCdr(cpe_storage_path),
    )

    record = _emit(service, invoice_header, issuer, customer, invoice_lines)

    assert record.status == EmittedDocumentStatus.ACCEPTED
    assert record.authority_code == "0"
    assert record.authority_message == accepted_outcome.description
    assert record.raw_response == "<soap/>"
    assert record.response_archive_path is None
    assert EmittedDocument.objects.get(id=record.id).status == EmittedDocumentStatus.ACCEPTED


# =============================================================================
# FALHAS ANTES DO REGISTRO
# =============================================================================


@pytest.mark.django_db
def test_falha_estrutural_queima_o_numero(
    make_service, fake_sunat_cls, accepted_outcome, invoice_header, issuer, customer, invoice_lines
):
    sunat = fake_sunat_cls(outcome=accepted_outcome)
    service = make_service(sunat)

    with pytest.raises(DocumentBuildError) as exc_info:
        _emit(service, invoice_header, dataclasses.replace(issuer, address_type_code=""), customer, invoice_lines)

    assert exc_info.value.field == "issuer.address_type_code"
    assert EmittedDocument.objects.count() == 0
    assert DocumentSequence.objects.get(document_type="01", series="F001").last_number == 1
    assert sunat.calls == []

    # Número 1 nunca é reutilizado
    record = _emit(service, invoice_header, issuer, customer, invoice_lines)
    assert record.number == 2


@pytest.mark.django_db
def test_entrada_invalida_nao_consome_numero(make_service, fake_sunat_cls, invoice_header, issuer, customer):
    with pytest.raises(InvalidEmissionInput) as exc_info:
        _emit(make_service(fake_sunat_cls()), invoice_header, issuer, customer, [])

    assert exc_info.value.field == "lines"
    assert DocumentSequence.objects.count() == 0
    assert EmittedDocument.objects.count() == 0


@pytest.mark.django_db
def test_falha_de_alocacao_propaga_sem_registro(
    make_service, fake_sunat_cls, invoice_header, issuer, customer, invoice_lines
):
    class BrokenSequenceRepo:
        def next_number(self, document_type, series):
            raise AllocationError("lock timeout")

    with pytest.raises(AllocationError):
        _emit(
            make_service(fake_sunat_cls(), sequences=BrokenSequenceRepo()),
            invoice_header,
            issuer,
            customer,
            invoice_lines,
        )

    assert EmittedDocument.objects.count() == 0


# =============================================================================
# CONSULTA
# =============================================================================


@pytest.mark.django_db
def test_get_document(make_service, fake_sunat_cls, accepted_outcome, invoice_header, issuer, customer, invoice_lines):
    service = make_service(fake_sunat_cls(outcome=accepted_outcome))
    record = _emit(service, invoice_header, issuer, customer, invoice_lines)

    found = service.get_document(record.id)

    assert found.id == record.id
    assert found.status == EmittedDocumentStatus.ACCEPTED
    assert service.get_document(uuid.uuid4()) is None
