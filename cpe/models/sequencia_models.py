# cpe/models/sequencia_models.py
import uuid
from django.db import models


class DocumentType(models.TextChoices):
    """
    Tipos de comprovante (catálogo 01 da SUNAT).
    """

    INVOICE = "01", "Factura"
    RECEIPT = "03", "Boleta de venta"
    CREDIT_NOTE = "07", "Nota de crédito"
    DEBIT_NOTE = "08", "Nota de débito"


class DocumentSequence(models.Model):
    """
    Controla a numeração (correlativo) por tipo de documento e série.

    Exemplo:
      - 01 / F001 -> facturas
      - 03 / B001 -> boletas
      - 07 / F001 -> notas de crédito de facturas

    A linha é criada sob demanda no primeiro uso da série e só é alterada
    pelo alocador de números (cpe.services.numero_service), sempre dentro
    de transaction.atomic() com select_for_update(). Nunca é apagada.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    document_type = models.CharField(
        max_length=2,
        choices=DocumentType.choices,
        help_text="Tipo de documento (01=factura, 03=boleta, 07=NC, 08=ND).",
    )

    series = models.CharField(
        max_length=8,
        help_text="Série do documento (ex: F001, B001).",
    )

    last_number = models.PositiveIntegerField(
        default=0,
        help_text="Último número emitido. Próximo será last_number + 1.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "cpe_document_sequence"
        verbose_name = "Sequência de CPE"
        verbose_name_plural = "Sequências de CPE"
        constraints = [
            models.UniqueConstraint(
                fields=["document_type", "series"],
                name="uniq_cpe_sequence_type_series",
            ),
        ]

    def __str__(self):
        return f"{self.document_type}-{self.series} (último={self.last_number})"
