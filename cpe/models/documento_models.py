# cpe/models/documento_models.py
import uuid
from django.db import models
from django.utils import timezone

from .sequencia_models import DocumentType


class EmittedDocumentStatus(models.TextChoices):
    PENDING = "PENDING", "Pendente"
    ACCEPTED = "ACCEPTED", "Aceito"
    REJECTED = "REJECTED", "Rejeitado"
    ERROR = "ERROR", "Erro"


class EmittedDocument(models.Model):
    """
    Registro de uma tentativa de emissão de CPE e do seu resultado.

    - Um registro por (tipo, série, número): um número nunca é reaproveitado.
    - Nasce em PENDING e termina em exatamente um estado terminal
      (ACCEPTED / REJECTED / ERROR). Ver cpe.services.documento_state_machine.
    - Nunca é apagado.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    document_type = models.CharField(max_length=2, choices=DocumentType.choices)
    series = models.CharField(max_length=8)
    number = models.PositiveIntegerField()

    # Referência fraca à venda de origem (sem FK: não é relação de posse)
    related_sale_id = models.UUIDField(blank=True, null=True)

    issue_date = models.DateField()

    # RUC-TIPO-SERIE-NUMERO
    filename = models.CharField(max_length=64)

    # SHA256 (base64) do XML assinado; vazio até a assinatura
    content_hash = models.CharField(max_length=128, blank=True, default="")

    xml_storage_path = models.TextField(blank=True, default="")
    package_storage_path = models.TextField(blank=True, default="")
    response_archive_path = models.TextField(blank=True, null=True)

    status = models.CharField(
        max_length=16,
        choices=EmittedDocumentStatus.choices,
        default=EmittedDocumentStatus.PENDING,
    )

    # Código/descrição do CDR (ou do fault SOAP)
    authority_code = models.CharField(max_length=50, blank=True, null=True)
    authority_message = models.TextField(blank=True, null=True)

    # Resposta bruta da SUNAT, para auditoria
    raw_response = models.TextField(blank=True, null=True)

    retry_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "cpe_emitted_document"
        constraints = [
            models.UniqueConstraint(
                fields=["document_type", "series", "number"],
                name="uniq_cpe_document_type_series_number",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="idx_cpe_document_status"),
            models.Index(fields=["related_sale_id"], name="idx_cpe_document_sale"),
        ]

    def __str__(self):
        return f"CPE {self.filename} ({self.status})"
