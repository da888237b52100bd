# cpe/serializers.py
from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from cpe.dto import Customer, DocumentHeader, InvoiceLine, NoteReference
from cpe.models import DocumentType, EmittedDocumentStatus


class CustomerInputSerializer(serializers.Serializer):
    doc_type = serializers.CharField(max_length=2)
    doc_number = serializers.CharField(max_length=15)
    name = serializers.CharField(max_length=255)
    address = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class ItemInputSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=500)
    quantity = serializers.DecimalField(max_digits=14, decimal_places=4, min_value=Decimal("0"))
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=5, min_value=Decimal("0"))
    unit_code = serializers.CharField(max_length=3, default="NIU")
    tax_affectation = serializers.CharField(max_length=2, default="10")
    # Sobrescreve amounts_include_tax do documento, se informado
    includes_tax = serializers.BooleanField(allow_null=True, default=None)
    product_code = serializers.CharField(max_length=30, required=False, allow_blank=True, allow_null=True)


class NoteReferenceInputSerializer(serializers.Serializer):
    document_type = serializers.ChoiceField(choices=[DocumentType.INVOICE.value, DocumentType.RECEIPT.value])
    document_id = serializers.CharField(max_length=13)
    reason_code = serializers.CharField(max_length=2)
    description = serializers.CharField(max_length=250)


class EmitirCpeInputSerializer(serializers.Serializer):
    """
    Dados de entrada para emissão de CPE via API.

    Apenas forma/tipos. Regras de negócio (série x tipo, RUC do cliente,
    afetação do IGV...) ficam em cpe.services.validacao_service.
    """

    document_type = serializers.ChoiceField(choices=DocumentType.choices)
    series = serializers.CharField(max_length=8)
    currency = serializers.CharField(max_length=3, default="PEN")
    amounts_include_tax = serializers.BooleanField(default=True)
    related_sale_id = serializers.UUIDField(required=False, allow_null=True)
    issue_date = serializers.DateField(required=False, allow_null=True)
    customer = CustomerInputSerializer()
    items = ItemInputSerializer(many=True)
    reference = NoteReferenceInputSerializer(required=False, allow_null=True)

    def to_emission_args(self):
        """
        Converte validated_data em (document_type, header, customer, lines).
        """
        data = self.validated_data

        ref = data.get("reference")
        header = DocumentHeader(
            series=data["series"].upper(),
            issue_date=data.get("issue_date") or timezone.localdate(),
            currency=data["currency"].upper(),
            related_sale_id=data.get("related_sale_id"),
            reference=NoteReference(**ref) if ref else None,
        )

        customer = Customer(**data["customer"])

        default_includes = data["amounts_include_tax"]
        lines = [
            InvoiceLine(
                description=item["description"],
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                unit_code=item["unit_code"],
                tax_affectation=item["tax_affectation"],
                price_includes_tax=(
                    default_includes if item.get("includes_tax") is None else item["includes_tax"]
                ),
                product_code=item.get("product_code") or None,
            )
            for item in data["items"]
        ]

        return data["document_type"], header, customer, lines


class EmittedDocumentOutputSerializer(serializers.Serializer):
    """
    Espelha o EmittedDocumentRecord devolvido pelo EmissaoService.
    """

    id = serializers.UUIDField()
    document_type = serializers.CharField()
    series = serializers.CharField()
    number = serializers.IntegerField()
    issue_date = serializers.DateField()
    filename = serializers.CharField()
    status = serializers.ChoiceField(choices=EmittedDocumentStatus.choices)
    related_sale_id = serializers.UUIDField(allow_null=True)
    content_hash = serializers.CharField(allow_blank=True)
    xml_storage_path = serializers.CharField(allow_blank=True)
    package_storage_path = serializers.CharField(allow_blank=True)
    response_archive_path = serializers.CharField(allow_null=True)
    authority_code = serializers.CharField(allow_null=True)
    authority_message = serializers.CharField(allow_null=True, allow_blank=True)
    retry_count = serializers.IntegerField()
    created_at = serializers.DateTimeField(allow_null=True)


class SignerHealthSerializer(serializers.Serializer):
    enabled = serializers.BooleanField()
    healthy = serializers.BooleanField()
