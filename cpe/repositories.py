# cpe/repositories.py
"""
Acesso a dados da emissão de CPE.

As services dependem dos protocolos abaixo, não dos models, o que permite
injetar repositórios em memória nos testes. As implementações Django são as
usadas em produção.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Protocol
from uuid import UUID

from django.db import DatabaseError, IntegrityError, transaction

from cpe.dto import EmittedDocumentRecord
from cpe.exceptions import AllocationError
from cpe.models import DocumentSequence, EmittedDocument, EmittedDocumentStatus

logger = logging.getLogger("cpe.fiscal")


# ---------------------------------------------------------------------------
# Contratos
# ---------------------------------------------------------------------------


class DocumentSequenceRepo(Protocol):
    def next_number(self, document_type: str, series: str) -> int:
        """
        Incrementa e devolve o próximo correlativo de (tipo, série),
        criando a sequência em 0 no primeiro uso.
        Falhas levantam AllocationError.
        """
        ...


class EmittedDocumentRepo(Protocol):
    def create_pending(
        self,
        *,
        document_type: str,
        series: str,
        number: int,
        issue_date: date,
        filename: str,
        related_sale_id: Optional[UUID] = None,
    ) -> EmittedDocumentRecord:
        ...

    def update(self, document_id: UUID, **fields) -> EmittedDocumentRecord:
        """Atualiza campos não-status (hash, caminhos, retry_count...)."""
        ...

    def transition(self, document_id: UUID, new_status: str, **fields) -> EmittedDocumentRecord:
        """Troca o status (validado pela máquina de estados) e grava os campos."""
        ...

    def get(self, document_id: UUID) -> Optional[EmittedDocumentRecord]:
        ...


# ---------------------------------------------------------------------------
# Conversão model -> DTO
# ---------------------------------------------------------------------------


def to_record(doc: EmittedDocument) -> EmittedDocumentRecord:
    return EmittedDocumentRecord(
        id=doc.id,
        document_type=doc.document_type,
        series=doc.series,
        number=doc.number,
        issue_date=doc.issue_date,
        filename=doc.filename,
        status=doc.status,
        related_sale_id=doc.related_sale_id,
        content_hash=doc.content_hash,
        xml_storage_path=doc.xml_storage_path,
        package_storage_path=doc.package_storage_path,
        response_archive_path=doc.response_archive_path,
        authority_code=doc.authority_code,
        authority_message=doc.authority_message,
        raw_response=doc.raw_response,
        retry_count=doc.retry_count,
        created_at=doc.created_at,
    )


# ---------------------------------------------------------------------------
# Implementações Django
# ---------------------------------------------------------------------------


class DjangoDocumentSequenceRepo:
    """
    Correlativo por (tipo, série) com lock pessimista na linha da sequência.

    - select_for_update serializa alocações concorrentes da mesma série.
    - A primeira criação da linha é feita em savepoint: se outra transação
      criou primeiro, o IntegrityError é absorvido e a linha é relida sob lock.
    """

    def next_number(self, document_type: str, series: str) -> int:
        try:
            with transaction.atomic():
                seq = self._lock_or_create(document_type, series)
                proximo = seq.last_number + 1
                seq.last_number = proximo
                seq.save(update_fields=["last_number", "updated_at"])
                return proximo
        except DatabaseError as exc:
            logger.error(
                "cpe_alocacao_falhou",
                extra={
                    "event": "cpe_alocar_numero",
                    "document_type": document_type,
                    "series": series,
                    "error": str(exc),
                },
            )
            raise AllocationError(
                f"Falha ao alocar correlativo para {document_type}/{series}: {exc}"
            ) from exc

    def _lock_or_create(self, document_type: str, series: str) -> DocumentSequence:
        qs = DocumentSequence.objects.select_for_update().filter(
            document_type=document_type,
            series=series,
        )
        seq = qs.first()
        if seq is not None:
            return seq

        try:
            with transaction.atomic():
                return DocumentSequence.objects.create(
                    document_type=document_type,
                    series=series,
                    last_number=0,
                )
        except IntegrityError:
            # Outra transação criou a sequência primeiro
            return qs.get()


class DjangoEmittedDocumentRepo:
    """
    Persistência de EmittedDocument.

    Trocas de status passam sempre por DocumentoStateMachine, sob lock da linha.
    """

    def create_pending(
        self,
        *,
        document_type: str,
        series: str,
        number: int,
        issue_date: date,
        filename: str,
        related_sale_id: Optional[UUID] = None,
    ) -> EmittedDocumentRecord:
        doc = EmittedDocument.objects.create(
            document_type=document_type,
            series=series,
            number=number,
            issue_date=issue_date,
            filename=filename,
            related_sale_id=related_sale_id,
            status=EmittedDocumentStatus.PENDING,
        )
        return to_record(doc)

    @transaction.atomic
    def update(self, document_id: UUID, **fields) -> EmittedDocumentRecord:
        if "status" in fields:
            raise ValueError("Use transition() para alterar o status.")
        doc = EmittedDocument.objects.select_for_update().get(id=document_id)
        for name, value in fields.items():
            setattr(doc, name, value)
        doc.save(update_fields=[*fields.keys(), "updated_at"])
        return to_record(doc)

    @transaction.atomic
    def transition(self, document_id: UUID, new_status: str, **fields) -> EmittedDocumentRecord:
        from cpe.services.documento_state_machine import DocumentoStateMachine

        doc = EmittedDocument.objects.select_for_update().get(id=document_id)
        DocumentoStateMachine.mudar_status(doc, new_status, save=False)
        for name, value in fields.items():
            setattr(doc, name, value)
        doc.save(update_fields=["status", *fields.keys(), "updated_at"])
        return to_record(doc)

    def get(self, document_id: UUID) -> Optional[EmittedDocumentRecord]:
        doc = EmittedDocument.objects.filter(id=document_id).first()
        return to_record(doc) if doc is not None else None
