# cpe/storage.py
"""
Armazenamento dos artefatos do CPE em disco (XML assinado, ZIP e CDR).

Sem regra de negócio: só durabilidade e caminhos determinísticos.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from django.conf import settings

logger = logging.getLogger("cpe.fiscal")

CDR_DIR = "cdr"


class CpeStorage:
    def __init__(self, base_path: Optional[Union[str, Path]] = None):
        self.base_path = Path(base_path or settings.CPE_STORAGE_PATH).resolve()

    def _resolve(self, relative_path: str) -> Path:
        full = (self.base_path / relative_path).resolve()
        if full != self.base_path and self.base_path not in full.parents:
            raise ValueError(f"Caminho fora do diretório de armazenamento: {relative_path!r}")
        return full

    def save(self, relative_path: str, content: Union[bytes, str]) -> str:
        """
        Grava (sobrescrevendo) e devolve o caminho absoluto.
        Diretórios intermediários são criados.
        """
        full = self._resolve(relative_path)
        full.parent.mkdir(parents=True, exist_ok=True)

        data = content.encode("utf-8") if isinstance(content, str) else content
        full.write_bytes(data)

        logger.debug(
            "cpe_arquivo_gravado",
            extra={"event": "cpe_storage", "path": str(full), "size": len(data)},
        )
        return str(full)

    def save_response_archive(self, filename: str, content: bytes) -> str:
        """CDR da SUNAT em cdr/R-{filename}.zip."""
        return self.save(f"{CDR_DIR}/R-{filename}.zip", content)
