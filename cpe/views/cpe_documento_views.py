# cpe/views/cpe_documento_views.py

from dataclasses import asdict

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from cpe.exceptions import ERR_DOCUMENT_NOT_FOUND
from cpe.serializers import EmittedDocumentOutputSerializer, SignerHealthSerializer
from cpe.services import emissao_service
from cpe.xades_signer import XadesSignerClient


@extend_schema(responses={200: EmittedDocumentOutputSerializer})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def documento_detalhe_view(request, document_id):
    record = emissao_service.get_emissao_service().get_document(document_id)
    if record is None:
        return Response(
            {"code": ERR_DOCUMENT_NOT_FOUND, "message": "Documento não encontrado."},
            status=status.HTTP_404_NOT_FOUND,
        )
    return Response(EmittedDocumentOutputSerializer(asdict(record)).data)


@extend_schema(responses={200: SignerHealthSerializer})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def assinador_health_view(request):
    """
    Estado do assinador XAdES: configurado (enabled) e respondendo (healthy).
    """
    signer = XadesSignerClient()
    payload = {"enabled": signer.is_enabled(), "healthy": signer.health()}
    return Response(SignerHealthSerializer(payload).data)
