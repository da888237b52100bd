"""
Camada de client SUNAT (billService, operação sendBill).

Este módulo define:

- Exceções técnicas de transporte (SunatTechnicalError / SunatUnavailableError).
- DTOs de entrada/saída (SunatCredentials, SubmissionOutcome).
- Montagem do envelope SOAP com WS-Security UsernameToken.
- Parser da resposta: fault SOAP, applicationResponse em base64, ZIP do CDR
  e o ResponseCode/Description do XML do CDR.

Decisões da SUNAT (aceito/rejeitado) e respostas malformadas são VALORES
(SubmissionOutcome). Só falhas de transporte levantam exceção.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests
from django.conf import settings
from lxml import etree
from requests.exceptions import ConnectionError, RequestException, Timeout

logger = logging.getLogger("cpe.fiscal")

SOAPENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SER_NS = "http://service.sunat.gob.pe"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"

OUTCOME_ACCEPTED = "ACCEPTED"
OUTCOME_REJECTED = "REJECTED"
OUTCOME_ERROR = "ERROR"

# Códigos locais para respostas que não trazem decisão da SUNAT
CODE_SOAP_FAULT = "SOAP_FAULT"
CODE_NO_RESPONSE = "NO_RESPONSE"
CODE_NO_CDR_XML = "NO_CDR_XML"
CODE_NO_RESPONSE_CODE = "NO_RESPONSE_CODE"
CODE_PARSE_ERROR = "PARSE_ERROR"

# ResponseCode de aceite no CDR
ACCEPTED_RESPONSE_CODE = "0"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=False)


# ---------------------------------------------------------------------------
# Exceções específicas
# ---------------------------------------------------------------------------


class SunatTechnicalError(Exception):
    """
    Erros técnicos na comunicação com a SUNAT (timeout, conexão, HTTP 5xx
    sem envelope válido).

    Distingue problema de infraestrutura de rejeição fiscal, que chega como
    SubmissionOutcome REJECTED.
    """

    def __init__(
        self,
        message: str,
        *,
        codigo: str | None = None,
        raw_response: bytes | None = None,
    ):
        super().__init__(message)
        self.codigo = codigo
        self.raw_response = raw_response


class SunatUnavailableError(SunatTechnicalError):
    """
    A conexão nem chegou a ser estabelecida: é seguro tentar de novo.
    """


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SunatCredentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class SubmissionOutcome:
    """
    Resultado de um sendBill.

    raw_response guarda SEMPRE os bytes brutos recebidos, inclusive quando o
    parse falha, para auditoria.
    """

    status: str
    code: Optional[str]
    description: Optional[str]
    raw_response: bytes = field(default=b"", repr=False)
    response_archive: Optional[bytes] = field(default=None, repr=False)

    @property
    def accepted(self) -> bool:
        return self.status == OUTCOME_ACCEPTED


class SunatClientProtocol(Protocol):
    def submit(
        self,
        endpoint: str,
        credentials: SunatCredentials,
        package_name: str,
        package_bytes: bytes,
    ) -> SubmissionOutcome:
        ...


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def build_send_bill_envelope(
    credentials: SunatCredentials,
    package_name: str,
    package_bytes: bytes,
) -> bytes:
    envelope = etree.Element(
        f"{{{SOAPENV_NS}}}Envelope",
        nsmap={"soapenv": SOAPENV_NS, "ser": SER_NS, "wsse": WSSE_NS},
    )

    header = etree.SubElement(envelope, f"{{{SOAPENV_NS}}}Header")
    security = etree.SubElement(header, f"{{{WSSE_NS}}}Security")
    token = etree.SubElement(security, f"{{{WSSE_NS}}}UsernameToken")
    etree.SubElement(token, f"{{{WSSE_NS}}}Username").text = credentials.username
    etree.SubElement(token, f"{{{WSSE_NS}}}Password").text = credentials.password

    body = etree.SubElement(envelope, f"{{{SOAPENV_NS}}}Body")
    send_bill = etree.SubElement(body, f"{{{SER_NS}}}sendBill")
    etree.SubElement(send_bill, "fileName").text = package_name
    etree.SubElement(send_bill, "contentFile").text = base64.b64encode(package_bytes).decode("ascii")

    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


# ---------------------------------------------------------------------------
# Parser da resposta
# ---------------------------------------------------------------------------


def _first(node, local_name: str):
    found = node.xpath(f"//*[local-name()='{local_name}']")
    return found[0] if found else None


def _child_text(node, local_name: str) -> Optional[str]:
    found = node.xpath(f"./*[local-name()='{local_name}']")
    if not found or found[0].text is None:
        return None
    return found[0].text.strip() or None


def _error(code: str, description: str, raw: bytes, archive: Optional[bytes] = None) -> SubmissionOutcome:
    return SubmissionOutcome(
        status=OUTCOME_ERROR,
        code=code,
        description=description,
        raw_response=raw,
        response_archive=archive,
    )


def _find_cdr_xml(archive: bytes) -> Optional[bytes]:
    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        for name in zf.namelist():
            if name.lower().endswith(".xml"):
                return zf.read(name)
    return None


def parse_cdr(cdr_xml: bytes) -> tuple[Optional[str], Optional[str]]:
    """
    Extrai (ResponseCode, Description) do ApplicationResponse do CDR.
    """
    root = etree.fromstring(cdr_xml, parser=_PARSER)
    code_node = _first(root, "ResponseCode")
    if code_node is None:
        return None, None
    code = (code_node.text or "").strip() or None
    description = _child_text(code_node.getparent(), "Description")
    return code, description


def parse_send_bill_response(raw: bytes) -> SubmissionOutcome:
    """
    Ordem:
      1. Fault SOAP -> ERROR com faultcode/faultstring literais.
      2. Sem applicationResponse -> ERROR NO_RESPONSE.
      3. ZIP sem entrada .xml -> ERROR NO_CDR_XML (o ZIP é mantido).
      4. ResponseCode "0" -> ACCEPTED; outro -> REJECTED;
         ausente -> ERROR NO_RESPONSE_CODE.
    XML/base64/ZIP malformado em qualquer ponto -> ERROR PARSE_ERROR.
    """
    raw = raw or b""

    try:
        root = etree.fromstring(raw, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        return _error(CODE_PARSE_ERROR, f"Resposta SOAP inválida: {exc}", raw)

    fault = _first(root, "Fault")
    if fault is not None:
        return _error(
            _child_text(fault, "faultcode") or CODE_SOAP_FAULT,
            _child_text(fault, "faultstring") or "Fault SOAP sem descrição",
            raw,
        )

    app_node = _first(root, "applicationResponse")
    app_text = "".join((app_node.text or "").split()) if app_node is not None else ""
    if not app_text:
        return _error(CODE_NO_RESPONSE, "Resposta sem applicationResponse", raw)

    try:
        archive = base64.b64decode(app_text, validate=True)
    except (binascii.Error, ValueError) as exc:
        return _error(CODE_PARSE_ERROR, f"applicationResponse não é base64 válido: {exc}", raw)

    try:
        cdr_xml = _find_cdr_xml(archive)
    except zipfile.BadZipFile as exc:
        return _error(CODE_PARSE_ERROR, f"CDR não é um ZIP válido: {exc}", raw)

    if cdr_xml is None:
        return _error(CODE_NO_CDR_XML, "XML do CDR não encontrado na resposta", raw, archive)

    try:
        code, description = parse_cdr(cdr_xml)
    except etree.XMLSyntaxError as exc:
        return _error(CODE_PARSE_ERROR, f"XML do CDR inválido: {exc}", raw, archive)

    if code is None:
        return _error(CODE_NO_RESPONSE_CODE, "CDR sem ResponseCode", raw, archive)

    return SubmissionOutcome(
        status=OUTCOME_ACCEPTED if code == ACCEPTED_RESPONSE_CODE else OUTCOME_REJECTED,
        code=code,
        description=description,
        raw_response=raw,
        response_archive=archive,
    )


# ---------------------------------------------------------------------------
# Client HTTP
# ---------------------------------------------------------------------------


class SunatSoapClient:
    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout or settings.CPE_SUNAT_TIMEOUT
        self.session = session or requests.Session()

    def submit(
        self,
        endpoint: str,
        credentials: SunatCredentials,
        package_name: str,
        package_bytes: bytes,
    ) -> SubmissionOutcome:
        envelope = build_send_bill_envelope(credentials, package_name, package_bytes)

        logger.info(
            "sunat_send_bill_iniciado",
            extra={"event": "cpe_transmitir", "endpoint": endpoint, "package": package_name},
        )

        try:
            resp = self.session.post(
                endpoint,
                data=envelope,
                headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": ""},
                timeout=self.timeout,
            )
        except ConnectionError as exc:
            # Inclui ConnectTimeout: a requisição não chegou à SUNAT
            raise SunatUnavailableError(
                f"SUNAT indisponível: {exc}", codigo="UNAVAILABLE"
            ) from exc
        except Timeout as exc:
            raise SunatTechnicalError(
                f"Timeout aguardando resposta da SUNAT após {self.timeout}s", codigo="TIMEOUT"
            ) from exc
        except RequestException as exc:
            raise SunatTechnicalError(f"Falha HTTP com a SUNAT: {exc}", codigo="HTTP_ERROR") from exc

        outcome = parse_send_bill_response(resp.content)

        # 5xx sem envelope interpretável (gateway, HTML...) é falha de transporte
        if resp.status_code >= 500 and outcome.code in (CODE_PARSE_ERROR, CODE_NO_RESPONSE):
            raise SunatTechnicalError(
                f"SUNAT respondeu HTTP {resp.status_code} sem envelope SOAP válido",
                codigo=f"HTTP_{resp.status_code}",
                raw_response=resp.content,
            )

        logger.info(
            "sunat_send_bill_finalizado",
            extra={
                "event": "cpe_transmitir",
                "package": package_name,
                "http_status": resp.status_code,
                "outcome": outcome.status,
                "codigo_retorno": outcome.code,
            },
        )
        return outcome
