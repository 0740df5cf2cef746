"""
Knowledge Base Service

Provides knowledge base management, document ingestion, embedding, and
semantic search. Uses Supabase pgvector for storage and OpenAI for
embeddings.

Text documents are chunked and embedded here. Uploaded files are only
registered (status "processing"); an external ingester chunks them and
reports back through update_document_status().
"""

import hashlib
import re
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import logfire
from openai import OpenAI
from supabase import Client as SupabaseClient

from ...core.config import Config
from ...core.database import get_supabase_client, first_row
from ...core.exceptions import NotFoundError, StorageError
from ...core.models import ChatContext, ContextType, DocumentStatus
from .models import ChunkResult, Document, DocumentDownload, KnowledgeBase

logger = logging.getLogger(__name__)

# Score given to chunks returned without a similarity search
FALLBACK_SIMILARITY = 0.8

MIN_CHUNKS_PER_CONTEXT = 5


def chunk_text(
    text: str,
    chunk_size: int = Config.CHUNK_SIZE,
    chunk_overlap: int = Config.CHUNK_OVERLAP
) -> List[str]:
    """
    Split text into overlapping chunks by word count.

    Args:
        text: Text to chunk
        chunk_size: Target words per chunk
        chunk_overlap: Words to overlap between chunks

    Returns:
        List of text chunks (empty for blank text)
    """
    words = text.split()
    if not words:
        return []

    if len(words) <= chunk_size:
        return [" ".join(words)]

    step = max(chunk_size - chunk_overlap, 1)
    chunks = []
    start = 0
    while start < len(words):
        chunks.append(" ".join(words[start:start + chunk_size]))
        if start + chunk_size >= len(words):
            break
        start += step

    return chunks


def sanitize_filename(filename: str) -> str:
    """Replace path separators and shell-unsafe characters, collapse whitespace."""
    cleaned = re.sub(r'[/\\?%*:|"<>]', "_", filename)
    cleaned = re.sub(r"\s+", "_", cleaned)
    return cleaned.strip(".")


def download_filename(title: Optional[str], storage_path: Optional[str] = None) -> str:
    """
    ASCII attachment name for a document.

    Pasted text downloads as "<title>.md". Stored files keep their title and
    borrow the storage path extension (up to 5 characters) when the title
    has none.
    """
    storage_path = (storage_path or "").strip()
    basename = storage_path.rsplit("/", 1)[-1]
    extension = None
    if "." in basename:
        candidate = basename.rsplit(".", 1)[-1]
        if len(candidate) <= 5:
            extension = candidate

    def clean(name: str) -> str:
        name = name.encode("ascii", "ignore").decode("ascii")
        return re.sub(r'[<>:"/\\|?*]', "_", name).strip()

    if not storage_path:
        filename = clean(f"{title or 'document'}.md")
        return filename if filename and filename != ".md" else "document.md"

    filename = title or "document"
    if "." not in filename and extension:
        filename = f"{filename}.{extension}"
    filename = clean(filename)
    if not filename or filename == ".":
        filename = f"document.{extension}" if extension else "document"
    return filename


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KnowledgeBaseService:
    """
    Knowledge base service for document storage and semantic search.

    Uses OpenAI embeddings (text-embedding-3-small by default) and the
    match_chunks* Postgres functions for similarity search.
    """

    def __init__(
        self,
        supabase: Optional[SupabaseClient] = None,
        openai_api_key: Optional[str] = None,
        openai_client: Optional[OpenAI] = None,
        http_client: Optional[httpx.Client] = None
    ):
        """
        Initialize the KnowledgeBaseService.

        Args:
            supabase: Supabase client instance (defaults to the shared client)
            openai_api_key: OpenAI API key (defaults to Config.OPENAI_API_KEY)
            openai_client: Preconfigured OpenAI client, mainly for tests
            http_client: Client for file storage downloads (one is created per
                download when omitted)
        """
        self.supabase = supabase or get_supabase_client()
        self.http_client = http_client
        api_key = openai_api_key or Config.OPENAI_API_KEY

        if openai_client is not None:
            self.openai = openai_client
        elif not api_key:
            logger.warning("OPENAI_API_KEY not set - embedding functions will fail")
            self.openai = None
        else:
            self.openai = OpenAI(api_key=api_key)

    def _ensure_openai(self):
        """Raise error if OpenAI client not configured."""
        if not self.openai:
            raise ValueError(
                "OpenAI client not configured. Set OPENAI_API_KEY environment variable."
            )

    # =========================================================================
    # Embedding
    # =========================================================================

    def embed(self, text: str) -> List[float]:
        """Generate an embedding for a single text."""
        self._ensure_openai()

        response = self.openai.embeddings.create(
            input=text,
            model=Config.EMBEDDING_MODEL
        )
        return response.data[0].embedding

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts in a single API call."""
        self._ensure_openai()

        response = self.openai.embeddings.create(
            input=texts,
            model=Config.EMBEDDING_MODEL
        )
        return [item.embedding for item in response.data]

    # =========================================================================
    # Knowledge Bases
    # =========================================================================

    def list_knowledge_bases(self) -> List[KnowledgeBase]:
        """All knowledge bases, newest first, with live document counts."""
        kbs = self.supabase.table("rag_knowledge_bases").select("*").order(
            "created_at", desc=True
        ).execute().data or []
        if not kbs:
            return []

        docs = self.supabase.table("rag_documents").select("knowledge_base_id").in_(
            "knowledge_base_id", [kb["id"] for kb in kbs]
        ).is_("deleted_at", "null").execute().data or []

        counts: Dict[str, int] = {}
        for doc in docs:
            counts[doc["knowledge_base_id"]] = counts.get(doc["knowledge_base_id"], 0) + 1

        return [KnowledgeBase(**{**kb, "document_count": counts.get(kb["id"], 0)}) for kb in kbs]

    def get_knowledge_base(self, kb_id: str) -> Optional[KnowledgeBase]:
        row = first_row(
            self.supabase.table("rag_knowledge_bases").select("*").eq("id", kb_id).limit(1).execute()
        )
        return KnowledgeBase(**row) if row else None

    def create_knowledge_base(self, name: str, description: Optional[str] = None) -> KnowledgeBase:
        if not name or not name.strip():
            raise ValueError("Knowledge base name is required")

        row = first_row(
            self.supabase.table("rag_knowledge_bases").insert({
                "name": name.strip(),
                "description": description,
            }).execute()
        )
        if not row:
            raise ValueError("Failed to create knowledge base record")

        logger.info(f"Created knowledge base {row['id']} ({name})")
        return KnowledgeBase(**row)

    def update_knowledge_base(self, kb_id: str, **fields: Any) -> Optional[KnowledgeBase]:
        update_data = {k: v for k, v in fields.items() if k in ("name", "description") and v is not None}
        if not update_data:
            return self.get_knowledge_base(kb_id)

        row = first_row(
            self.supabase.table("rag_knowledge_bases").update(update_data).eq("id", kb_id).execute()
        )
        return KnowledgeBase(**row) if row else None

    def delete_knowledge_base(self, kb_id: str) -> bool:
        """Delete a knowledge base. Documents and chunks go via CASCADE."""
        result = self.supabase.table("rag_knowledge_bases").delete().eq("id", kb_id).execute()
        return bool(result.data)

    # =========================================================================
    # Document Operations
    # =========================================================================

    def add_text_document(
        self,
        kb_id: str,
        title: str,
        content: str,
        source_type: str = "text",
        content_type: str = "text/markdown",
        chunk_size: int = Config.CHUNK_SIZE,
        chunk_overlap: int = Config.CHUNK_OVERLAP
    ) -> Document:
        """
        Ingest a text document: create record, chunk, embed, store.

        The record is created with status "processing". It moves to
        "ready" once every chunk is stored, or to "failed" (with the error
        in metadata) if chunking or embedding fails. The error is re-raised.

        Args:
            kb_id: Knowledge base to add the document to
            title: Document title (first line of content when empty)
            content: Full document text
            source_type: Origin of the text ("text", "paste", ...)
            content_type: MIME type of the content
            chunk_size: Words per chunk
            chunk_overlap: Words to overlap between chunks

        Returns:
            The stored Document
        """
        if not kb_id:
            raise ValueError("knowledge_base_id is required")
        if not content or not content.strip():
            raise ValueError("content is required")
        self._ensure_openai()

        title = (title or "").strip() or content.strip().split("\n")[0][:100]

        logger.info(f"Ingesting document: {title}")

        doc_row = first_row(
            self.supabase.table("rag_documents").insert({
                "knowledge_base_id": kb_id,
                "title": title,
                "source_type": source_type,
                "content": content,
                "content_type": content_type,
                "status": DocumentStatus.PROCESSING.value,
                "chunk_count": 0,
                "metadata": {},
            }).execute()
        )
        if not doc_row:
            raise ValueError("Failed to create document record")

        doc_id = doc_row["id"]

        try:
            with logfire.span("ingest_document", document_id=doc_id):
                chunks = chunk_text(content, chunk_size, chunk_overlap)
                logger.info(f"Created {len(chunks)} chunks")

                embeddings = self.embed_batch(chunks)
                logger.info(f"Generated {len(embeddings)} embeddings")

                chunk_records = [
                    {
                        "document_id": doc_id,
                        "content": text,
                        "chunk_index": i,
                        "embedding": embedding
                    }
                    for i, (text, embedding) in enumerate(zip(chunks, embeddings))
                ]
                self.supabase.table("rag_chunks").insert(chunk_records).execute()
                logger.info(f"Stored {len(chunk_records)} chunks")
        except Exception as e:
            logger.error(f"Failed to ingest document {doc_id}: {e}")
            self.supabase.table("rag_documents").update({
                "status": DocumentStatus.FAILED.value,
                "metadata": {**(doc_row.get("metadata") or {}), "error": str(e)},
            }).eq("id", doc_id).execute()
            raise

        ready = first_row(
            self.supabase.table("rag_documents").update({
                "status": DocumentStatus.READY.value,
                "chunk_count": len(chunk_records),
                "embedding_count": len(embeddings),
                "content_hash": hashlib.sha256(content.encode("utf-8")).hexdigest(),
            }).eq("id", doc_id).execute()
        )
        return Document(**(ready or {
            **doc_row,
            "status": DocumentStatus.READY.value,
            "chunk_count": len(chunk_records),
            "embedding_count": len(embeddings),
        }))

    def register_upload(
        self,
        kb_id: str,
        filename: str,
        content_type: Optional[str] = None,
        size: Optional[int] = None,
        source_type: str = "upload"
    ) -> Document:
        """
        Record an uploaded file for the external ingester.

        The storage path is knowledge-bases/<kb_id>/<timestamp>-<sanitised name>.
        The document starts in "processing".
        """
        if not kb_id:
            raise ValueError("knowledge_base_id is required")
        if not filename:
            raise ValueError("filename is required")

        safe_name = sanitize_filename(filename)
        if not safe_name:
            raise ValueError(f"Invalid filename: {filename!r}")

        timestamp = int(time.time() * 1000)
        storage_path = re.sub(r"/+", "/", f"knowledge-bases/{kb_id}/{timestamp}-{safe_name}")
        mime_type = content_type or "application/octet-stream"
        extension = safe_name.rsplit(".", 1)[-1].lower() if "." in safe_name else "unknown"

        row = first_row(
            self.supabase.table("rag_documents").insert({
                "knowledge_base_id": kb_id,
                "title": safe_name,
                "storage_path": storage_path,
                "source_type": source_type,
                "status": DocumentStatus.PROCESSING.value,
                "content_type": mime_type,
                "chunk_count": 0,
                "metadata": {
                    "original_filename": filename,
                    "file_type": mime_type,
                    "extension": extension,
                    "size": size,
                },
            }).execute()
        )
        if not row:
            raise ValueError("Failed to create document record")

        logger.info(f"Registered upload {row['id']} at {storage_path}")
        return Document(**row)

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        chunk_count: Optional[int] = None,
        embedding_count: Optional[int] = None,
        error: Optional[str] = None
    ) -> Document:
        """
        Record ingestion progress reported by the external ingester.

        Raises:
            NotFoundError: If the document does not exist
        """
        status = DocumentStatus(status)
        existing = self.get_document(document_id)
        if existing is None:
            raise NotFoundError(f"Document {document_id} not found")

        update_data: Dict[str, Any] = {"status": status.value}
        if chunk_count is not None:
            update_data["chunk_count"] = chunk_count
        if embedding_count is not None:
            update_data["embedding_count"] = embedding_count
        if error:
            update_data["metadata"] = {**existing.metadata, "error": error}

        row = first_row(
            self.supabase.table("rag_documents").update(update_data).eq("id", document_id).execute()
        )
        return Document(**(row or {**existing.model_dump(), **update_data}))

    def get_document(self, document_id: str) -> Optional[Document]:
        """Get a document by ID, or None if missing or deleted."""
        row = first_row(
            self.supabase.table("rag_documents").select("*").eq(
                "id", document_id
            ).is_("deleted_at", "null").limit(1).execute()
        )
        return Document(**row) if row else None

    def list_documents(
        self,
        kb_id: Optional[str] = None,
        status: Optional[DocumentStatus] = None
    ) -> List[Document]:
        """Documents that are not deleted, newest first."""
        query = self.supabase.table("rag_documents").select("*").is_("deleted_at", "null")
        if kb_id:
            query = query.eq("knowledge_base_id", kb_id)
        if status:
            query = query.eq("status", DocumentStatus(status).value)

        result = query.order("created_at", desc=True).execute()
        return [Document(**row) for row in (result.data or [])]

    def delete_document(self, document_id: str) -> bool:
        """
        Soft-delete a document and drop its chunks.

        Returns:
            True if deleted, False if not found
        """
        if self.get_document(document_id) is None:
            return False

        self.supabase.table("rag_chunks").delete().eq("document_id", document_id).execute()
        self.supabase.table("rag_documents").update(
            {"deleted_at": _now_iso()}
        ).eq("id", document_id).execute()

        logger.info(f"Deleted document {document_id}")
        return True

    def download_document(self, document_id: str) -> DocumentDownload:
        """
        Fetch a document's file for download.

        Pasted text is returned as markdown. Uploaded files are pulled from
        the storage CDN at Config.STORAGE_PULL_ZONE_URL.

        Raises:
            NotFoundError: If the document does not exist or was deleted
            ValueError: If the file is stored but no pull zone is configured
            StorageError: If the CDN answers with an error status
        """
        document = self.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")

        filename = download_filename(document.title, document.storage_path)

        if not (document.storage_path or "").strip():
            return DocumentDownload(
                filename=filename,
                content_type="text/markdown; charset=utf-8",
                content=(document.content or "").encode("utf-8"),
            )

        pull_zone = Config.STORAGE_PULL_ZONE_URL.strip().rstrip("/")
        if not pull_zone:
            raise ValueError("Storage pull zone is not configured (BUNNY_PULL_ZONE_URL)")
        if not pull_zone.startswith(("http://", "https://")):
            pull_zone = f"https://{pull_zone}"
        url = f"{pull_zone}/{document.storage_path.strip().lstrip('/')}"

        client = self.http_client or httpx.Client(timeout=Config.DOWNLOAD_TIMEOUT_SECONDS)
        try:
            response = client.get(url)
        finally:
            if self.http_client is None:
                client.close()

        if response.is_error:
            logger.error(f"Storage download failed for {document_id}: {response.status_code}")
            raise StorageError(
                f"Failed to fetch file from storage ({response.status_code})",
                status_code=response.status_code,
            )

        content_type = (
            document.content_type
            or response.headers.get("content-type")
            or "application/octet-stream"
        )
        return DocumentDownload(filename=filename, content_type=content_type, content=response.content)

    def get_stats(self, kb_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Knowledge base statistics.

        Returns:
            Dict with document_count, chunk_count and documents per status
        """
        docs = self.list_documents(kb_id=kb_id)

        by_status: Dict[str, int] = {}
        for doc in docs:
            by_status[doc.status.value] = by_status.get(doc.status.value, 0) + 1

        return {
            "document_count": len(docs),
            "chunk_count": sum(doc.chunk_count for doc in docs),
            "by_status": by_status,
        }

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        query: str,
        kb_id: Optional[str] = None,
        document_id: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: int = 10
    ) -> List[ChunkResult]:
        """
        Semantic search scoped to one document, knowledge base or project.

        Exactly one scope must be given.

        Args:
            query: Natural language search query
            kb_id: Search every document of a knowledge base
            document_id: Search one document
            project_id: Search the project's knowledge base and linked documents
            limit: Maximum results to return

        Returns:
            ChunkResult list ordered by similarity
        """
        scopes = [s for s in (kb_id, document_id, project_id) if s]
        if len(scopes) != 1:
            raise ValueError("Provide exactly one of kb_id, document_id or project_id")
        if not query or not query.strip():
            raise ValueError("query is required")

        embedding = self.embed(query)
        if document_id:
            return self._match(ContextType.DOCUMENT, document_id, embedding, limit)
        if kb_id:
            return self._match(ContextType.KNOWLEDGE_BASE, kb_id, embedding, limit)
        return self._match(ContextType.PROJECT, project_id, embedding, limit)

    def search_contexts(
        self,
        query: str,
        contexts: List[ChatContext],
        limit: int = 20
    ) -> List[ChunkResult]:
        """
        Search several contexts at once, dedupe by chunk, keep the best.

        Each context gets max(5, ceil(limit / len(contexts))) results. A
        context that fails is logged and skipped.
        """
        if not contexts:
            return []

        embedding = self.embed(query)
        per_context = max(MIN_CHUNKS_PER_CONTEXT, -(-limit // len(contexts)))

        seen = set()
        merged: List[ChunkResult] = []
        for context in contexts:
            try:
                results = self._match(context.type, context.id, embedding, per_context)
            except Exception as e:
                logger.error(f"Retrieval failed for {context.type.value} {context.id}: {e}")
                continue
            for chunk in results:
                if chunk.id not in seen:
                    seen.add(chunk.id)
                    merged.append(chunk)

        merged.sort(key=lambda c: c.similarity_score, reverse=True)
        return merged[:limit]

    def _match(
        self,
        context_type: ContextType,
        context_id: str,
        embedding: List[float],
        limit: int
    ) -> List[ChunkResult]:
        """Run the match_chunks* RPC for a context; fall back to plain chunks."""
        function, id_param = {
            ContextType.DOCUMENT: ("match_chunks", "p_document_id"),
            ContextType.KNOWLEDGE_BASE: ("match_chunks_for_knowledge_base", "p_kb_id"),
            ContextType.PROJECT: ("match_chunks_for_project", "p_project_id"),
        }[ContextType(context_type)]

        try:
            with logfire.span("match_chunks", function=function, context_id=context_id):
                result = self.supabase.rpc(function, {
                    id_param: context_id,
                    "p_query_embedding": embedding,
                    "p_match_threshold": Config.MATCH_THRESHOLD,
                    "p_match_count": limit,
                }).execute()
        except Exception as e:
            logger.warning(f"{function} failed for {context_id}, using basic retrieval: {e}")
            return self._fallback_chunks(self._document_ids(context_type, context_id), limit)

        return [
            ChunkResult(
                id=row["id"],
                document_id=row["document_id"],
                content=row["content"],
                similarity_score=row.get("similarity_score") or 0,
                document_title=row.get("document_title"),
            )
            for row in (result.data or [])
        ]

    def _document_ids(self, context_type: ContextType, context_id: str) -> List[str]:
        if context_type == ContextType.DOCUMENT:
            return [context_id]

        if context_type == ContextType.KNOWLEDGE_BASE:
            kb_id = context_id
            linked = []
        else:
            project = first_row(
                self.supabase.table("projects").select("kb_id").eq("id", context_id).limit(1).execute()
            )
            if project is None:
                raise NotFoundError(f"Project {context_id} not found")
            kb_id = project.get("kb_id")
            linked = [
                r["document_id"] for r in self.supabase.table("project_documents").select(
                    "document_id"
                ).eq("project_id", context_id).execute().data or []
            ]

        workspace = []
        if kb_id:
            workspace = [
                d["id"] for d in self.supabase.table("rag_documents").select("id").eq(
                    "knowledge_base_id", kb_id
                ).is_("deleted_at", "null").execute().data or []
            ]
        return list(dict.fromkeys(workspace + linked))

    def _fallback_chunks(self, document_ids: List[str], limit: int) -> List[ChunkResult]:
        if not document_ids:
            return []

        chunks = self.supabase.table("rag_chunks").select(
            "id, content, document_id"
        ).in_("document_id", document_ids).order("chunk_index").limit(limit).execute().data or []
        if not chunks:
            return []

        docs = self.supabase.table("rag_documents").select("id, title").in_(
            "id", list({c["document_id"] for c in chunks})
        ).execute().data or []
        titles = {d["id"]: d.get("title") for d in docs}

        return [
            ChunkResult(
                id=c["id"],
                document_id=c["document_id"],
                content=c["content"],
                similarity_score=FALLBACK_SIMILARITY,
                document_title=titles.get(c["document_id"]),
            )
            for c in chunks
        ]
