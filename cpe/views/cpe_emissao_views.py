# cpe/views/cpe_emissao_views.py

import logging
from dataclasses import asdict

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from cpe.exceptions import AllocationError, DocumentBuildError, InvalidEmissionInput
from cpe.serializers import EmitirCpeInputSerializer, EmittedDocumentOutputSerializer
from cpe.services import emissao_service

logger = logging.getLogger("cpe.fiscal")


def _error(code: str, message: str, http_status: int, **extra) -> Response:
    return Response({"code": code, "message": message, **extra}, status=http_status)


@extend_schema(request=EmitirCpeInputSerializer, responses={201: EmittedDocumentOutputSerializer})
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def emitir_cpe_view(request):
    """
    POST /api/v1/cpe/emitir/

    Fluxo:
      1. Valida o payload (forma) com EmitirCpeInputSerializer.
      2. Chama EmissaoService.emit com o emissor configurado.
      3. Devolve 201 com o registro, qualquer que seja o status final
         (ACCEPTED / REJECTED / ERROR): o registro existe e o número foi usado.

    Erros antes do registro existir:
      - 400 CPE_1001: entrada inválida (nenhum número consumido)
      - 422 CPE_2001: falha estrutural do XML (número queimado)
      - 503 CPE_3001: falha na alocação do correlativo
    """
    user = request.user

    ser_in = EmitirCpeInputSerializer(data=request.data)
    try:
        ser_in.is_valid(raise_exception=True)
    except DRFValidationError as exc:
        logger.warning(
            "cpe_emitir_validacao",
            extra={
                "event": "cpe_emitir",
                "user_id": getattr(user, "id", None),
                "errors": exc.detail,
                "outcome": "validation_error",
            },
        )
        return _error(InvalidEmissionInput.code, "Payload inválido.", status.HTTP_400_BAD_REQUEST, errors=exc.detail)

    document_type, header, customer, lines = ser_in.to_emission_args()
    service = emissao_service.get_emissao_service()

    try:
        record = service.emit(
            document_type,
            header,
            emissao_service.issuer_from_settings(),
            customer,
            lines,
        )
    except InvalidEmissionInput as exc:
        return _error(exc.code, exc.mensagem, status.HTTP_400_BAD_REQUEST, field=exc.field)
    except DocumentBuildError as exc:
        return _error(exc.code, exc.mensagem, status.HTTP_422_UNPROCESSABLE_ENTITY, field=exc.field)
    except AllocationError as exc:
        logger.error(
            "cpe_emitir_alocacao_falhou",
            extra={"event": "cpe_emitir", "user_id": getattr(user, "id", None), "error": exc.mensagem},
        )
        return _error(exc.code, "Não foi possível alocar o correlativo. Tente novamente.", status.HTTP_503_SERVICE_UNAVAILABLE)

    logger.info(
        "cpe_emitir",
        extra={
            "event": "cpe_emitir",
            "user_id": getattr(user, "id", None),
            "document_id": str(record.id),
            "status": record.status,
            "outcome": "success" if record.status == "ACCEPTED" else "failure",
        },
    )

    ser_out = EmittedDocumentOutputSerializer(asdict(record))
    return Response(ser_out.data, status=status.HTTP_201_CREATED)
