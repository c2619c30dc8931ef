from sqlalchemy import Column, DateTime, Index, JSON, String

from donchat.db.session import Base


class Document(Base):
    """One document of a named collection. The payload lives in ``data``."""

    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_documents_collection_created_at", "collection", "created_at"),
    )

    def __repr__(self):
        return f"<Document {self.collection}/{self.id}>"
