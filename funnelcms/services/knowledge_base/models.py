"""
Knowledge Base Models

Pydantic models for knowledge bases, documents and retrieved chunks.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime

from ...core.models import DocumentStatus


class KnowledgeBase(BaseModel):
    """A named collection of documents."""

    id: str
    name: str
    description: Optional[str] = None
    document_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Document(BaseModel):
    """A knowledge document and its ingestion state."""

    id: str
    knowledge_base_id: Optional[str] = None
    run_id: Optional[str] = None
    title: str
    source_type: Optional[str] = None
    content: Optional[str] = None
    content_type: Optional[str] = None
    content_hash: Optional[str] = None
    storage_path: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_count: int = 0
    embedding_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChunkResult(BaseModel):
    """A retrieved chunk with its similarity to the query."""

    id: str
    document_id: str
    content: str
    similarity_score: float = 0.0
    document_title: Optional[str] = None


class DocumentDownload(BaseModel):
    """File contents of a document, ready to send as an attachment."""

    filename: str
    content_type: str
    content: bytes
