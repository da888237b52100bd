# cpe/services/numero_service.py
from __future__ import annotations

import logging
from typing import Optional

from cpe.repositories import DjangoDocumentSequenceRepo, DocumentSequenceRepo

logger = logging.getLogger("cpe.fiscal")


def allocate(
    document_type: str,
    series: str,
    *,
    repo: Optional[DocumentSequenceRepo] = None,
) -> int:
    """
    Reserva o próximo correlativo de (tipo, série).

    Regras:
      - A primeira alocação de uma série nova devolve 1.
      - Sem buracos e sem duplicidade, inclusive sob concorrência
        (lock pessimista na linha da sequência).
      - Um número devolvido está consumido, mesmo que a emissão falhe depois.
      - Falha da transação -> AllocationError, nada consumido.
    """
    repo = repo or DjangoDocumentSequenceRepo()
    numero = repo.next_number(document_type, series)

    logger.info(
        "cpe_numero_alocado",
        extra={
            "event": "cpe_alocar_numero",
            "document_type": document_type,
            "series": series,
            "number": numero,
        },
    )
    return numero
