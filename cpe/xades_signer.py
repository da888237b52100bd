# cpe/xades_signer.py
"""
Client do assinador XAdES externo.

A criptografia fica no serviço externo; aqui só:
  - POST {base}/sign-xades com {xml, keyAlias};
  - cálculo LOCAL do digest (SHA-256, base64) sobre os bytes assinados
    devolvidos, que são exatamente os bytes transmitidos;
  - classificação das falhas em SigningResult (nunca levanta exceção).
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings
from requests.exceptions import ConnectionError, RequestException, Timeout

logger = logging.getLogger("cpe.fiscal")

SIGN_PATH = "/sign-xades"
HEALTH_PATH = "/health"

# Tipos de falha de assinatura
SIGNER_DISABLED = "DISABLED"
SIGNER_UNAVAILABLE = "UNAVAILABLE"
SIGNER_FAILED = "FAILED"


@dataclass(frozen=True)
class SigningResult:
    ok: bool
    signed_xml: Optional[bytes] = None
    digest: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, signed_xml: bytes) -> "SigningResult":
        return cls(ok=True, signed_xml=signed_xml, digest=compute_digest(signed_xml))

    @classmethod
    def failure(cls, error_kind: str, message: str) -> "SigningResult":
        return cls(ok=False, error_kind=error_kind, message=message)


def compute_digest(content: bytes) -> str:
    return base64.b64encode(hashlib.sha256(content).digest()).decode("ascii")


class XadesSignerClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        key_alias: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.CPE_XADES_URL or "").rstrip("/")
        self.key_alias = key_alias or settings.CPE_XADES_KEY_ALIAS
        self.timeout = timeout or settings.CPE_XADES_TIMEOUT
        self.session = session or requests.Session()

        if not self.base_url:
            logger.warning(
                "xades_assinador_desabilitado",
                extra={"event": "cpe_assinar", "motivo": "CPE_XADES_URL vazio"},
            )

    def is_enabled(self) -> bool:
        return bool(self.base_url)

    def health(self) -> bool:
        if not self.is_enabled():
            return False
        try:
            resp = self.session.get(f"{self.base_url}{HEALTH_PATH}", timeout=self.timeout)
        except RequestException as exc:
            logger.warning(
                "xades_health_falhou",
                extra={"event": "cpe_assinar", "error": str(exc)},
            )
            return False
        return resp.status_code == 200

    def sign(self, xml: bytes) -> SigningResult:
        if not self.is_enabled():
            return SigningResult.failure(
                SIGNER_DISABLED,
                "Assinatura XAdES desabilitada: configure CPE_XADES_URL.",
            )

        body = {
            "xml": xml.decode("utf-8") if isinstance(xml, bytes) else xml,
            "keyAlias": self.key_alias,
        }

        try:
            resp = self.session.post(
                f"{self.base_url}{SIGN_PATH}",
                json=body,
                timeout=self.timeout,
            )
        except ConnectionError as exc:
            # Inclui ConnectTimeout: o assinador não foi alcançado
            logger.error("xades_indisponivel", extra={"event": "cpe_assinar", "error": str(exc)})
            return SigningResult.failure(
                SIGNER_UNAVAILABLE,
                "Assinador XAdES indisponível: serviço fora do ar ou inacessível.",
            )
        except Timeout as exc:
            logger.error("xades_timeout", extra={"event": "cpe_assinar", "error": str(exc)})
            return SigningResult.failure(
                SIGNER_FAILED,
                f"Timeout no assinador XAdES após {self.timeout}s.",
            )
        except RequestException as exc:
            logger.error("xades_erro_requisicao", extra={"event": "cpe_assinar", "error": str(exc)})
            return SigningResult.failure(SIGNER_FAILED, f"Falha na assinatura XAdES: {exc}")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if resp.status_code >= 400 or data.get("error"):
            detalhe = data.get("error") or f"HTTP {resp.status_code}"
            logger.error(
                "xades_rejeitou",
                extra={"event": "cpe_assinar", "status_code": resp.status_code, "error": detalhe},
            )
            return SigningResult.failure(SIGNER_FAILED, f"Erro do assinador XAdES: {detalhe}")

        signed = data.get("signedXml")
        if not signed:
            logger.error("xades_sem_xml_assinado", extra={"event": "cpe_assinar"})
            return SigningResult.failure(SIGNER_FAILED, "Assinador XAdES não devolveu signedXml.")

        result = SigningResult.success(signed.encode("utf-8"))
        logger.info("xades_assinado", extra={"event": "cpe_assinar", "digest": result.digest})
        return result
