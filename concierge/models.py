"""Database ORM models.

Defines the read-only (at query time) portfolio schema used by the retrieval pipeline:
- Document: a case study or article with taxonomy links and media references.
- ContentChunk: an embedded fragment of a document's text, ordered by chunk_index.
- VisualAsset: a stored image/diagram with a description embedding.
- DocumentMetric: a labeled statistic attached to a document.
- Capability / Industry / Topic: flat controlled vocabularies used as filters and facets.

Rows are created by the (out-of-scope) ingestion tooling.
"""
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from concierge.config import settings
from concierge.db import Base

DOCUMENT_TYPES = ("case_study", "article")
CHUNK_TYPES = ("text", "metric", "quote", "strategy")


document_capabilities = Table(
    "document_capabilities",
    Base.metadata,
    Column("document_id", UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    Column("capability_id", UUID(as_uuid=True), ForeignKey("capabilities.id", ondelete="CASCADE"), primary_key=True),
    Index("idx_doc_capabilities_capability", "capability_id"),
)

document_industries = Table(
    "document_industries",
    Base.metadata,
    Column("document_id", UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    Column("industry_id", UUID(as_uuid=True), ForeignKey("industries.id", ondelete="CASCADE"), primary_key=True),
    Index("idx_doc_industries_industry", "industry_id"),
)

document_topics = Table(
    "document_topics",
    Base.metadata,
    Column("document_id", UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    Column("topic_id", UUID(as_uuid=True), ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True),
    Index("idx_doc_topics_topic", "topic_id"),
)


class Capability(Base):
    """Capability taxonomy term, e.g. "Brand Strategy" (brand-strategy)."""
    __tablename__ = "capabilities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    slug = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    parent_id = Column(UUID(as_uuid=True), ForeignKey("capabilities.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Industry(Base):
    """Industry taxonomy term, e.g. "Finance" (finance)."""
    __tablename__ = "industries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    slug = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Topic(Base):
    """Topic taxonomy term, used primarily for articles."""
    __tablename__ = "topics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    slug = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Document(Base):
    """A portfolio item: a case study or an article.

    Case studies carry client_name and optional vimeo/thumbnail/hero media; articles
    carry author, published_date and external_url. The slug is unique and URL-safe.
    """
    __tablename__ = "documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)
    doc_type = Column(String(32), nullable=False, default="case_study")
    summary = Column(Text, nullable=True)
    source_file_path = Column(Text, nullable=True)

    # Case study specific
    client_name = Column(Text, nullable=True)
    vimeo_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    hero_image_url = Column(Text, nullable=True)

    # Article specific
    author = Column(Text, nullable=True)
    published_date = Column(Date, nullable=True)
    external_url = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    capabilities = relationship("Capability", secondary=document_capabilities, lazy="selectin")
    industries = relationship("Industry", secondary=document_industries, lazy="selectin")
    topics = relationship("Topic", secondary=document_topics, lazy="selectin")
    chunks = relationship("ContentChunk", back_populates="document", order_by="ContentChunk.chunk_index")
    metrics = relationship("DocumentMetric", order_by="DocumentMetric.display_order")

    __table_args__ = (
        CheckConstraint("doc_type IN ('case_study', 'article')", name="ck_documents_doc_type"),
        Index("idx_documents_type", "doc_type"),
    )


class ContentChunk(Base):
    """Vector-embedded fragment of a document used for hybrid retrieval.

    Notes:
        chunk_index is unique and ordered within a document. The embedding dimension
        is derived from settings.EMBEDDING_DIM and must match the embedding model.
    """
    __tablename__ = "content_chunks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_type = Column(String(32), nullable=False, default="text")
    embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=True)
    metadata_ = Column("metadata", JSONB, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    document = relationship("Document", back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),
        CheckConstraint("chunk_type IN ('text', 'metric', 'quote', 'strategy')", name="ck_chunks_type"),
        Index("idx_chunks_document", "document_id"),
    )


class VisualAsset(Base):
    """Stored image/diagram tied to a document, searchable by its description."""
    __tablename__ = "visual_assets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    chunk_id = Column(UUID(as_uuid=True), ForeignKey("content_chunks.id", ondelete="SET NULL"), nullable=True)

    storage_path = Column(Text, nullable=False)
    bucket_name = Column(Text, nullable=False, default="document-assets")

    asset_type = Column(String(32), nullable=False)  # chart, diagram, photo, logo, infographic
    alt_text = Column(Text, nullable=True)
    caption = Column(Text, nullable=True)
    original_filename = Column(Text, nullable=True)
    mime_type = Column(Text, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    description = Column(Text, nullable=True)
    description_embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("idx_assets_document", "document_id"),)


class DocumentMetric(Base):
    """A labeled statistic (e.g. "Brand Awareness" / "+340%") shown in MetricGrid."""
    __tablename__ = "document_metrics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    label = Column(Text, nullable=False)
    value = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("idx_metrics_document", "document_id"),)
