from donchat.models.document import Document

__all__ = [
    "Document",
]
