# commons/views/commons_views.py
import os
from datetime import datetime
from zoneinfo import ZoneInfo

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse


def liveness(request):
    return JsonResponse({"ok": True})


def readiness(request):
    """
    Pronto para emitir: banco respondendo e diretório de CPE gravável.
    O assinador é só informado (assinatura desabilitada não derruba a API).
    """
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
    except DatabaseError as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=503)

    storage_path = settings.CPE_STORAGE_PATH
    try:
        os.makedirs(storage_path, exist_ok=True)
    except OSError as e:
        return JsonResponse({"ok": False, "error": f"storage: {e}"}, status=503)
    if not os.access(storage_path, os.W_OK):
        return JsonResponse({"ok": False, "error": "storage: sem permissão de escrita"}, status=503)

    return JsonResponse(
        {
            "ok": True,
            "sunat_env": settings.CPE_SUNAT_ENV,
            "signer_enabled": bool(settings.CPE_XADES_URL),
        }
    )


def time_now(request):
    # Data de emissão dos CPE segue o fuso do emissor (TIME_ZONE)
    now = datetime.now(ZoneInfo(settings.TIME_ZONE))
    return JsonResponse({"now": now.isoformat(), "today": now.date().isoformat(), "tz": settings.TIME_ZONE})
