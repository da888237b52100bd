# cpe/services/documento_state_machine.py

from __future__ import annotations

import logging
from typing import Iterable

from cpe.exceptions import InvalidStatusTransition
from cpe.models import EmittedDocument, EmittedDocumentStatus

logger = logging.getLogger("cpe.fiscal")


# PENDING é o único estado não terminal. Um documento aceito, rejeitado ou
# com erro nunca volta nem muda de terminal; reenvio gera novo número.
TRANSICOES_VALIDAS: dict[str, set[str]] = {
    EmittedDocumentStatus.PENDING: {
        EmittedDocumentStatus.ACCEPTED,
        EmittedDocumentStatus.REJECTED,
        EmittedDocumentStatus.ERROR,
    },
    EmittedDocumentStatus.ACCEPTED: set(),
    EmittedDocumentStatus.REJECTED: set(),
    EmittedDocumentStatus.ERROR: set(),
}


def is_terminal(status: str) -> bool:
    return not TRANSICOES_VALIDAS.get(status)


class DocumentoStateMachine:
    """
    ÚNICO ponto autorizado a trocar o status de EmittedDocument.
    O chamador deve manter a linha travada (select_for_update) durante a troca.
    """

    @classmethod
    def mudar_status(
        cls,
        documento: EmittedDocument,
        novo_status: str,
        *,
        save: bool = True,
    ) -> None:
        status_atual = documento.status

        permitidos: Iterable[str] = TRANSICOES_VALIDAS.get(status_atual, set())
        if novo_status not in permitidos:
            logger.error(
                "cpe_transicao_invalida",
                extra={
                    "event": "cpe_status",
                    "document_id": str(documento.id),
                    "status_atual": status_atual,
                    "status_novo": novo_status,
                },
            )
            raise InvalidStatusTransition(
                f"Transição de {status_atual} para {novo_status} não é permitida "
                f"para o documento {documento.id}."
            )

        documento.status = novo_status
        if save:
            documento.save(update_fields=["status", "updated_at"])

        logger.info(
            "cpe_status_alterado",
            extra={
                "event": "cpe_status",
                "document_id": str(documento.id),
                "status_anterior": status_atual,
                "status_novo": novo_status,
            },
        )
