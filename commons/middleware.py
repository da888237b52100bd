# commons/middleware.py
import logging
import time
import uuid

from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger("django.request")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLogMiddleware(MiddlewareMixin):
    """
    Uma linha de log (JSON, via LOGGING) por requisição, com request_id.

    O request_id vem do header X-Request-ID ou é gerado, e é devolvido no
    mesmo header para correlacionar com os logs de emissão.
    """

    def process_request(self, request):
        request.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request._start_time = time.monotonic()

    def process_response(self, request, response):
        request_id = getattr(request, "request_id", None)
        if request_id:
            response[REQUEST_ID_HEADER] = request_id

        try:
            latency = int((time.monotonic() - getattr(request, "_start_time", time.monotonic())) * 1000)
            logger.info(
                "http_request",
                extra={
                    "event": "http_request",
                    "request_id": request_id or "-",
                    "path": request.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "latency_ms": latency,
                },
            )
        except (AttributeError, TypeError, ValueError) as exc:
            # log de acesso nunca derruba a resposta
            logger.warning("http_request_log_falhou", extra={"error": str(exc)})
        return response
