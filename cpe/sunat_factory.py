# cpe/sunat_factory.py
"""
Factory do destino SUNAT (endpoint + credenciais SOL) por ambiente.

Ponto único onde o ambiente (beta / prod) é resolvido, sem espalhar
leitura de settings por services e views.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings

from cpe.sunat_clients import SunatCredentials

AMBIENTE_BETA = "beta"
AMBIENTE_PROD = "prod"


@dataclass(frozen=True)
class SunatTarget:
    ambiente: str
    endpoint: str
    credentials: SunatCredentials


def _normalize_ambiente(ambiente: str | None) -> str:
    """
    Aceita variações comuns e converte para "beta" ou "prod".
    """
    if not ambiente:
        return AMBIENTE_BETA

    amb = ambiente.strip().lower()
    if amb in {"prod", "producao", "produção", "produccion", "producción"}:
        return AMBIENTE_PROD
    # fallback conservador: nunca envia para produção por engano
    return AMBIENTE_BETA


def get_sunat_target(issuer_tax_id: str) -> SunatTarget:
    """
    Regras de usuário SOL:
      - beta: usuário = RUC; senha de testes.
      - prod: usuário = RUC + usuário SOL; senha SOL.
    """
    ambiente = _normalize_ambiente(getattr(settings, "CPE_SUNAT_ENV", None))

    if ambiente == AMBIENTE_PROD:
        endpoint = settings.CPE_SUNAT_PROD_ENDPOINT
        username = f"{issuer_tax_id}{settings.CPE_SUNAT_SOL_USER}"
    else:
        endpoint = settings.CPE_SUNAT_BETA_ENDPOINT
        username = issuer_tax_id

    return SunatTarget(
        ambiente=ambiente,
        endpoint=endpoint,
        credentials=SunatCredentials(username=username, password=settings.CPE_SUNAT_SOL_PASSWORD),
    )
