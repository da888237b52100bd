# cpe/urls.py

from django.urls import path

from cpe.views.cpe_documento_views import assinador_health_view, documento_detalhe_view
from cpe.views.cpe_emissao_views import emitir_cpe_view

app_name = "cpe"

urlpatterns = [
    # emissão
    path("emitir/", emitir_cpe_view, name="cpe_emitir"),
    path("emitir", emitir_cpe_view),

    # consulta
    path("documentos/<uuid:document_id>/", documento_detalhe_view, name="cpe_documento"),

    # assinador
    path("assinador/health/", assinador_health_view, name="cpe_assinador_health"),
]
