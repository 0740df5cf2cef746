"""
Knowledge Base Service

Knowledge bases, document ingestion and vector search over their chunks.
Uses Supabase pgvector for storage and OpenAI for embeddings.
"""

from .models import KnowledgeBase, Document, DocumentDownload, ChunkResult
from .service import KnowledgeBaseService, chunk_text, download_filename, sanitize_filename

__all__ = [
    "KnowledgeBaseService",
    "KnowledgeBase",
    "Document",
    "DocumentDownload",
    "ChunkResult",
    "chunk_text",
    "download_filename",
    "sanitize_filename",
]
