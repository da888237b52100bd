# cpe/services/emissao_service.py

from __future__ import annotations

import dataclasses
import io
import logging
import zipfile
from typing import Callable, Optional, Sequence
from uuid import UUID

from django.conf import settings

from cpe.builders import ubl_builder
from cpe.dto import (
    Customer,
    DocumentHeader,
    EmissionPayload,
    EmittedDocumentRecord,
    InvoiceLine,
    Issuer,
)
from cpe.exceptions import DocumentBuildError, InvalidEmissionInput
from cpe.models import EmittedDocumentStatus
from cpe.repositories import (
    DjangoDocumentSequenceRepo,
    DjangoEmittedDocumentRepo,
    DocumentSequenceRepo,
    EmittedDocumentRepo,
)
from cpe.services import numero_service
from cpe.services.impostos_service import compute_breakdown
from cpe.services.validacao_service import validate_emission_input
from cpe.storage import CpeStorage
from cpe.sunat_clients import (
    OUTCOME_ACCEPTED,
    OUTCOME_REJECTED,
    SubmissionOutcome,
    SunatClientProtocol,
    SunatSoapClient,
    SunatTechnicalError,
    SunatUnavailableError,
)
from cpe.sunat_factory import SunatTarget, get_sunat_target
from cpe.xades_signer import SigningResult, XadesSignerClient

logger = logging.getLogger("cpe.fiscal")

# Limite da mensagem de diagnóstico persistida em ERROR
MAX_DIAGNOSTIC_LENGTH = 500

OUTCOME_TO_STATUS = {
    OUTCOME_ACCEPTED: EmittedDocumentStatus.ACCEPTED,
    OUTCOME_REJECTED: EmittedDocumentStatus.REJECTED,
}


def issuer_from_settings() -> Issuer:
    """
    Emissor configurado (domicílio fiscal) a partir de CPE_ISSUER_*.
    """
    return Issuer(
        tax_id=settings.CPE_ISSUER_RUC,
        legal_name=settings.CPE_ISSUER_RAZAO_SOCIAL,
        trade_name=settings.CPE_ISSUER_NOME_COMERCIAL,
        ubigeo=settings.CPE_ISSUER_UBIGEO,
        address_line=settings.CPE_ISSUER_ENDERECO,
        district=settings.CPE_ISSUER_DISTRITO,
        province=settings.CPE_ISSUER_PROVINCIA,
        department=settings.CPE_ISSUER_DEPARTAMENTO,
    )


def _truncate(mensagem: str) -> str:
    return (mensagem or "")[:MAX_DIAGNOSTIC_LENGTH]


def _decode_raw(raw: Optional[bytes]) -> Optional[str]:
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace")


def build_package(filename: str, signed_xml: bytes, issue_date) -> bytes:
    """
    ZIP com uma única entrada {filename}.xml.
    A data da entrada é a data de emissão: o pacote não depende do relógio.
    """
    info = zipfile.ZipInfo(
        f"{filename}.xml",
        date_time=(issue_date.year, issue_date.month, issue_date.day, 0, 0, 0),
    )
    info.compress_type = zipfile.ZIP_DEFLATED

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(info, signed_xml)
    return buffer.getvalue()


class EmissaoService:
    """
    Orquestra a emissão: alocar -> calcular totais -> montar XML -> registrar
    PENDING -> assinar -> empacotar/armazenar -> transmitir -> estado final.

    Fronteiras de falha:
      - Entrada inválida: InvalidEmissionInput, antes de alocar número.
      - Falha de alocação: AllocationError, nenhum registro criado.
      - Falha estrutural do XML: DocumentBuildError; o número fica queimado.
      - Depois que o registro PENDING existe, nada escapa: qualquer falha vira
        ERROR com diagnóstico truncado, e o registro final é devolvido.
    """

    def __init__(
        self,
        *,
        signer: Optional[XadesSignerClient] = None,
        sunat_client: Optional[SunatClientProtocol] = None,
        storage: Optional[CpeStorage] = None,
        sequences: Optional[DocumentSequenceRepo] = None,
        documents: Optional[EmittedDocumentRepo] = None,
        target_resolver: Callable[[str], SunatTarget] = get_sunat_target,
        max_retries: Optional[int] = None,
    ):
        self.signer = signer or XadesSignerClient()
        self.sunat_client = sunat_client or SunatSoapClient()
        self.storage = storage or CpeStorage()
        self.sequences = sequences or DjangoDocumentSequenceRepo()
        self.documents = documents or DjangoEmittedDocumentRepo()
        self.target_resolver = target_resolver
        self.max_retries = settings.CPE_SUNAT_MAX_RETRIES if max_retries is None else max_retries

    # ------------------------------------------------------------------
    # Consulta
    # ------------------------------------------------------------------

    def get_document(self, document_id: UUID) -> Optional[EmittedDocumentRecord]:
        return self.documents.get(document_id)

    # ------------------------------------------------------------------
    # Emissão
    # ------------------------------------------------------------------

    def emit(
        self,
        document_type: str,
        header: DocumentHeader,
        issuer: Issuer,
        customer: Customer,
        lines: Sequence[InvoiceLine],
    ) -> EmittedDocumentRecord:
        lines = tuple(lines)

        # 0) Validação de entrada (nenhum número consumido)
        result = validate_emission_input(document_type, header, customer, lines)
        if not result.valid:
            logger.warning(
                "cpe_emitir_entrada_invalida",
                extra={"event": "cpe_emitir", "field": result.field, "reason": result.reason},
            )
            raise InvalidEmissionInput(result)

        # 1) Alocação (AllocationError propaga)
        number = numero_service.allocate(document_type, header.series, repo=self.sequences)
        header = dataclasses.replace(header, document_type=document_type, number=number)

        # 2) Totais
        payload = EmissionPayload(
            header=header,
            issuer=issuer,
            customer=customer,
            lines=lines,
            breakdown=compute_breakdown(lines),
        )
        filename = payload.filename

        logger.info(
            "cpe_emitir_iniciado",
            extra={
                "event": "cpe_emitir",
                "document_type": document_type,
                "series": header.series,
                "number": number,
                "cpe_filename": filename,
            },
        )

        # 3) XML (DocumentBuildError propaga; número queimado)
        try:
            xml = ubl_builder.build(
                payload.header,
                payload.issuer,
                payload.customer,
                payload.lines,
                payload.breakdown,
            )
        except DocumentBuildError as exc:
            logger.warning(
                "cpe_numero_queimado",
                extra={
                    "event": "cpe_emitir",
                    "cpe_filename": filename,
                    "field": exc.field,
                    "error": exc.mensagem,
                },
            )
            raise

        # 4) Registro PENDING
        record = self.documents.create_pending(
            document_type=document_type,
            series=header.series,
            number=number,
            issue_date=header.issue_date,
            filename=filename,
            related_sale_id=header.related_sale_id,
        )

        try:
            return self._sign_and_transmit(record, payload, xml)
        except Exception as exc:
            logger.exception(
                "cpe_emitir_erro_inesperado",
                extra={"event": "cpe_emitir", "document_id": str(record.id), "cpe_filename": filename},
            )
            return self._fail(record, code=None, mensagem=f"{type(exc).__name__}: {exc}")

    # ------------------------------------------------------------------
    # Passos internos
    # ------------------------------------------------------------------

    def _sign_and_transmit(
        self,
        record: EmittedDocumentRecord,
        payload: EmissionPayload,
        xml: bytes,
    ) -> EmittedDocumentRecord:
        # 5) Assinatura
        signing: SigningResult = self.signer.sign(xml)
        if not signing.ok:
            logger.warning(
                "cpe_assinatura_falhou",
                extra={
                    "event": "cpe_emitir",
                    "document_id": str(record.id),
                    "error_kind": signing.error_kind,
                },
            )
            return self._fail(
                record,
                code=f"SIGNER_{signing.error_kind}",
                mensagem=signing.message,
            )

        # 6) Pacote + armazenamento
        filename = record.filename
        folder = payload.header.issue_date.isoformat()
        package = build_package(filename, signing.signed_xml, payload.header.issue_date)

        xml_path = self.storage.save(f"{folder}/{filename}.xml", signing.signed_xml)
        package_path = self.storage.save(f"{folder}/{filename}.zip", package)

        # 7) Hash real + caminhos
        record = self.documents.update(
            record.id,
            content_hash=signing.digest,
            xml_storage_path=xml_path,
            package_storage_path=package_path,
        )

        # 8) Transmissão
        target = self.target_resolver(payload.issuer.tax_id)
        try:
            outcome, record = self._submit_with_retry(record, target, f"{filename}.zip", package)
        except SunatTechnicalError as exc:
            logger.error(
                "cpe_transmissao_falhou",
                extra={
                    "event": "cpe_emitir",
                    "document_id": str(record.id),
                    "codigo": exc.codigo,
                    "error": str(exc),
                },
            )
            return self._fail(
                record,
                code=exc.codigo,
                mensagem=str(exc),
                raw_response=_decode_raw(exc.raw_response),
            )

        return self._finish(record, outcome)

    def _submit_with_retry(
        self,
        record: EmittedDocumentRecord,
        target: SunatTarget,
        package_name: str,
        package: bytes,
    ) -> tuple[SubmissionOutcome, EmittedDocumentRecord]:
        """
        Só SunatUnavailableError (conexão nunca estabelecida) é repetido.
        Timeout de leitura não: a SUNAT pode ter recebido o pacote.
        """
        while True:
            try:
                outcome = self.sunat_client.submit(
                    target.endpoint,
                    target.credentials,
                    package_name,
                    package,
                )
                return outcome, record
            except SunatUnavailableError as exc:
                if record.retry_count >= self.max_retries:
                    raise
                record = self.documents.update(record.id, retry_count=record.retry_count + 1)
                logger.warning(
                    "cpe_transmissao_retry",
                    extra={
                        "event": "cpe_emitir",
                        "document_id": str(record.id),
                        "retry_count": record.retry_count,
                        "error": str(exc),
                    },
                )

    def _finish(self, record: EmittedDocumentRecord, outcome: SubmissionOutcome) -> EmittedDocumentRecord:
        # A decisão da SUNAT é gravada antes do CDR: falha de disco não vira ERROR.
        status = OUTCOME_TO_STATUS.get(outcome.status, EmittedDocumentStatus.ERROR)
        record = self.documents.transition(
            record.id,
            status,
            authority_code=outcome.code,
            authority_message=_truncate(outcome.description or ""),
            raw_response=_decode_raw(outcome.raw_response),
        )

        if outcome.response_archive:
            try:
                archive_path = self.storage.save_response_archive(record.filename, outcome.response_archive)
            except OSError as exc:
                logger.error(
                    "cpe_cdr_nao_gravado",
                    extra={
                        "event": "cpe_emitir",
                        "document_id": str(record.id),
                        "cpe_filename": record.filename,
                        "error": str(exc),
                    },
                )
            else:
                record = self.documents.update(record.id, response_archive_path=archive_path)

        logger.info(
            "cpe_emitir_finalizado",
            extra={
                "event": "cpe_emitir",
                "document_id": str(record.id),
                "cpe_filename": record.filename,
                "status": record.status,
                "codigo_retorno": outcome.code,
            },
        )
        return record

    def _fail(
        self,
        record: EmittedDocumentRecord,
        *,
        code: Optional[str],
        mensagem: Optional[str],
        raw_response: Optional[str] = None,
    ) -> EmittedDocumentRecord:
        fields = {
            "authority_code": code,
            "authority_message": _truncate(mensagem or ""),
        }
        if raw_response is not None:
            fields["raw_response"] = raw_response

        record = self.documents.transition(record.id, EmittedDocumentStatus.ERROR, **fields)

        logger.warning(
            "cpe_emitir_erro",
            extra={
                "event": "cpe_emitir",
                "document_id": str(record.id),
                "cpe_filename": record.filename,
                "status": record.status,
                "codigo": code,
            },
        )
        return record


def get_emissao_service() -> EmissaoService:
    """
    Instância com os clients reais (assinador, SUNAT) e repositórios Django.
    Ponto único usado pelas views.
    """
    return EmissaoService()
