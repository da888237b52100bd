from .sequencia_models import DocumentType, DocumentSequence
from .documento_models import EmittedDocument, EmittedDocumentStatus


__all__ = [
    "DocumentType",
    "DocumentSequence",
    "EmittedDocument",
    "EmittedDocumentStatus",
]
