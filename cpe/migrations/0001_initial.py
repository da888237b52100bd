import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="DocumentSequence",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "document_type",
                    models.CharField(
                        choices=[
                            ("01", "Factura"),
                            ("03", "Boleta de venta"),
                            ("07", "Nota de crédito"),
                            ("08", "Nota de débito"),
                        ],
                        help_text="Tipo de documento (01=factura, 03=boleta, 07=NC, 08=ND).",
                        max_length=2,
                    ),
                ),
                ("series", models.CharField(help_text="Série do documento (ex: F001, B001).", max_length=8)),
                (
                    "last_number",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Último número emitido. Próximo será last_number + 1.",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Sequência de CPE",
                "verbose_name_plural": "Sequências de CPE",
                "db_table": "cpe_document_sequence",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("document_type", "series"),
                        name="uniq_cpe_sequence_type_series",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="EmittedDocument",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "document_type",
                    models.CharField(
                        choices=[
                            ("01", "Factura"),
                            ("03", "Boleta de venta"),
                            ("07", "Nota de crédito"),
                            ("08", "Nota de débito"),
                        ],
                        max_length=2,
                    ),
                ),
                ("series", models.CharField(max_length=8)),
                ("number", models.PositiveIntegerField()),
                ("related_sale_id", models.UUIDField(blank=True, null=True)),
                ("issue_date", models.DateField()),
                ("filename", models.CharField(max_length=64)),
                ("content_hash", models.CharField(blank=True, default="", max_length=128)),
                ("xml_storage_path", models.TextField(blank=True, default="")),
                ("package_storage_path", models.TextField(blank=True, default="")),
                ("response_archive_path", models.TextField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pendente"),
                            ("ACCEPTED", "Aceito"),
                            ("REJECTED", "Rejeitado"),
                            ("ERROR", "Erro"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("authority_code", models.CharField(blank=True, max_length=50, null=True)),
                ("authority_message", models.TextField(blank=True, null=True)),
                ("raw_response", models.TextField(blank=True, null=True)),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "cpe_emitted_document",
                "indexes": [
                    models.Index(fields=["status"], name="idx_cpe_document_status"),
                    models.Index(fields=["related_sale_id"], name="idx_cpe_document_sale"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("document_type", "series", "number"),
                        name="uniq_cpe_document_type_series_number",
                    )
                ],
            },
        ),
    ]
