"""
Tests for KnowledgeBaseService - chunking, ingestion, soft delete and
scoped vector search with its fallback, and file downloads.
"""

from unittest.mock import MagicMock

import httpx
import pytest

from funnelcms.core.config import Config
from funnelcms.core.exceptions import NotFoundError, StorageError
from funnelcms.core.models import ChatContext, ContextType
from funnelcms.services.knowledge_base import (
    KnowledgeBaseService,
    chunk_text,
    download_filename,
    sanitize_filename,
)


@pytest.fixture
def service(db, openai_client):
    return KnowledgeBaseService(db, openai_client=openai_client)


def _match_row(chunk_id, score, document_id="d1", title="Doc"):
    return {
        "id": chunk_id,
        "document_id": document_id,
        "content": f"content of {chunk_id}",
        "similarity_score": score,
        "document_title": title,
    }


# ============================================================================
# Helpers
# ============================================================================

class TestChunkText:
    def test_short_text_single_chunk(self):
        assert chunk_text("one two three", chunk_size=10, chunk_overlap=2) == ["one two three"]

    def test_overlapping_chunks(self):
        words = " ".join(str(i) for i in range(10))
        chunks = chunk_text(words, chunk_size=4, chunk_overlap=1)
        assert chunks == ["0 1 2 3", "3 4 5 6", "6 7 8 9"]

    def test_blank(self):
        assert chunk_text("   ") == []


def test_sanitize_filename():
    assert sanitize_filename("Q3 report: final?.pdf") == "Q3_report__final_.pdf"


# ============================================================================
# Knowledge bases and documents
# ============================================================================

class TestKnowledgeBases:
    def test_create_requires_name(self, service):
        with pytest.raises(ValueError):
            service.create_knowledge_base("  ")

    def test_list_counts_live_documents(self, service, db):
        kb = service.create_knowledge_base("Research")
        db.seed(
            "rag_documents",
            {"knowledge_base_id": kb.id, "title": "A"},
            {"knowledge_base_id": kb.id, "title": "B"},
            {"knowledge_base_id": kb.id, "title": "C", "deleted_at": "2026-01-01T00:00:00+00:00"},
        )
        assert service.list_knowledge_bases()[0].document_count == 2


class TestAddTextDocument:
    def test_ingests_chunks(self, service, db, openai_client):
        doc = service.add_text_document("kb1", "Notes", "alpha beta gamma delta", chunk_size=2, chunk_overlap=0)

        assert doc.status.value == "ready"
        assert doc.chunk_count == 2
        assert doc.content_hash
        chunks = db.rows("rag_chunks")
        assert [c["chunk_index"] for c in chunks] == [0, 1]
        assert chunks[0]["embedding"] == [0.1, 0.2, 0.3]
        openai_client.embeddings.create.assert_called_once()

    def test_title_defaults_to_first_line(self, service):
        doc = service.add_text_document("kb1", "", "Market Overview\nbody text")
        assert doc.title == "Market Overview"

    def test_embedding_failure_marks_failed(self, service, db, openai_client):
        openai_client.embeddings.create.side_effect = RuntimeError("rate limited")

        with pytest.raises(RuntimeError):
            service.add_text_document("kb1", "Notes", "some text")

        row = db.rows("rag_documents")[0]
        assert row["status"] == "failed"
        assert row["metadata"]["error"] == "rate limited"

    def test_requires_content(self, service):
        with pytest.raises(ValueError):
            service.add_text_document("kb1", "Notes", "   ")

    def test_requires_openai(self, db):
        service = KnowledgeBaseService(db)
        with pytest.raises(ValueError, match="OpenAI client not configured"):
            service.add_text_document("kb1", "Notes", "text")


class TestRegisterUpload:
    def test_storage_path_and_metadata(self, service):
        doc = service.register_upload("kb1", "Market Report.pdf", "application/pdf", size=2048)

        assert doc.status.value == "processing"
        assert doc.storage_path.startswith("knowledge-bases/kb1/")
        assert doc.storage_path.endswith("-Market_Report.pdf")
        assert doc.metadata["extension"] == "pdf"
        assert doc.metadata["original_filename"] == "Market Report.pdf"

    def test_default_mime_type(self, service):
        doc = service.register_upload("kb1", "notes")
        assert doc.content_type == "application/octet-stream"
        assert doc.metadata["extension"] == "unknown"


class TestDocumentLifecycle:
    def test_update_status_records_error(self, service, db):
        doc = db.seed("rag_documents", {"title": "A", "status": "processing", "metadata": {"size": 1}})[0]

        updated = service.update_document_status(doc["id"], "failed", error="bad pdf")

        assert updated.status.value == "failed"
        assert updated.metadata == {"size": 1, "error": "bad pdf"}

    def test_soft_delete_hides_document(self, service, db):
        doc = db.seed("rag_documents", {"knowledge_base_id": "kb1", "title": "A"})[0]
        db.seed("rag_chunks", {"document_id": doc["id"], "content": "x", "chunk_index": 0})

        assert service.delete_document(doc["id"]) is True

        assert db.rows("rag_documents")[0]["deleted_at"] is not None
        assert db.rows("rag_chunks") == []
        assert service.get_document(doc["id"]) is None
        assert service.list_documents(kb_id="kb1") == []
        assert service.delete_document(doc["id"]) is False

    def test_stats(self, service, db):
        db.seed(
            "rag_documents",
            {"knowledge_base_id": "kb1", "title": "A", "status": "ready", "chunk_count": 3},
            {"knowledge_base_id": "kb1", "title": "B", "status": "processing", "chunk_count": 0},
        )
        stats = service.get_stats("kb1")
        assert stats == {"document_count": 2, "chunk_count": 3, "by_status": {"ready": 1, "processing": 1}}


# ============================================================================
# Search
# ============================================================================

class TestSearch:
    def test_requires_exactly_one_scope(self, service):
        with pytest.raises(ValueError):
            service.search("pricing", kb_id="kb1", project_id="p1")
        with pytest.raises(ValueError):
            service.search("pricing")

    def test_knowledge_base_scope_uses_kb_function(self, service, db):
        db.rpc_handlers["match_chunks_for_knowledge_base"] = lambda params: [_match_row("c1", 0.91)]

        results = service.search("pricing", kb_id="kb1", limit=5)

        name, params = db.rpc_calls[0]
        assert name == "match_chunks_for_knowledge_base"
        assert params["p_kb_id"] == "kb1"
        assert params["p_match_count"] == 5
        assert params["p_query_embedding"] == [0.1, 0.2, 0.3]
        assert results[0].similarity_score == 0.91

    def test_document_scope(self, service, db):
        db.rpc_handlers["match_chunks"] = lambda params: [_match_row("c1", 0.7)]
        service.search("pricing", document_id="d1")
        assert db.rpc_calls[0][1]["p_document_id"] == "d1"

    def test_project_fallback_covers_workspace_and_linked_docs(self, service, db):
        db.seed("projects", {"id": "p1", "name": "Dental", "kb_id": "kb1"})
        workspace = db.seed("rag_documents", {"knowledge_base_id": "kb1", "title": "Workspace Doc"})[0]
        linked = db.seed("rag_documents", {"knowledge_base_id": "kb2", "title": "Linked Doc"})[0]
        db.seed("rag_documents", {"knowledge_base_id": "kb2", "title": "Unrelated"})
        db.seed("project_documents", {"project_id": "p1", "document_id": linked["id"]})
        db.seed(
            "rag_chunks",
            {"document_id": workspace["id"], "content": "w", "chunk_index": 0},
            {"document_id": linked["id"], "content": "l", "chunk_index": 0},
        )

        results = service.search("pricing", project_id="p1")

        assert {r.document_title for r in results} == {"Workspace Doc", "Linked Doc"}
        assert all(r.similarity_score == 0.8 for r in results)


class TestSearchContexts:
    def test_dedupes_and_sorts(self, service, db):
        db.rpc_handlers["match_chunks_for_knowledge_base"] = lambda p: [_match_row("c1", 0.6), _match_row("c2", 0.9)]
        db.rpc_handlers["match_chunks"] = lambda p: [_match_row("c2", 0.9), _match_row("c3", 0.75)]
        contexts = [
            ChatContext(type=ContextType.KNOWLEDGE_BASE, id="kb1"),
            ChatContext(type=ContextType.DOCUMENT, id="d1"),
        ]

        results = service.search_contexts("pricing", contexts, limit=20)

        assert [r.id for r in results] == ["c2", "c3", "c1"]
        assert db.rpc_calls[0][1]["p_match_count"] == 10

    def test_per_context_minimum(self, service, db):
        db.rpc_handlers["match_chunks"] = lambda p: []
        contexts = [ChatContext(type=ContextType.DOCUMENT, id=f"d{i}") for i in range(4)]

        service.search_contexts("pricing", contexts, limit=8)

        assert all(params["p_match_count"] == 5 for _, params in db.rpc_calls)

    def test_failed_context_is_skipped(self, service, db):
        db.rpc_handlers["match_chunks"] = lambda p: [_match_row("c1", 0.9)]
        contexts = [
            ChatContext(type=ContextType.PROJECT, id="missing-project"),
            ChatContext(type=ContextType.DOCUMENT, id="d1"),
        ]

        results = service.search_contexts("pricing", contexts)

        assert [r.id for r in results] == ["c1"]

    def test_no_contexts(self, service):
        assert service.search_contexts("pricing", []) == []

    def test_limit_applies_after_merge(self, service, db):
        db.rpc_handlers["match_chunks"] = lambda p: [
            _match_row(f"{p['p_document_id']}-{i}", 0.5 + i / 100) for i in range(5)
        ]
        contexts = [ChatContext(type=ContextType.DOCUMENT, id=f"d{i}") for i in range(3)]

        assert len(service.search_contexts("pricing", contexts, limit=4)) == 4


def test_embed_batch_uses_configured_model(db):
    client = MagicMock()
    client.embeddings.create.return_value = MagicMock(data=[MagicMock(embedding=[1.0]), MagicMock(embedding=[2.0])])
    service = KnowledgeBaseService(db, openai_client=client)

    assert service.embed_batch(["a", "b"]) == [[1.0], [2.0]]
    assert client.embeddings.create.call_args.kwargs["model"] == Config.EMBEDDING_MODEL


# ============================================================================
# Downloads
# ============================================================================

class TestDownloadFilename:
    def test_pasted_text_is_markdown(self):
        assert download_filename("Market Notes") == "Market Notes.md"
        assert download_filename(None) == "document.md"

    def test_borrows_storage_extension(self):
        assert download_filename("Report", "knowledge-bases/kb1/123-Report.pdf") == "Report.pdf"
        assert download_filename("Report.docx", "kb/123-report.pdf") == "Report.docx"

    def test_long_extension_ignored(self):
        assert download_filename("Archive", "kb/archive.backup") == "Archive"

    def test_unsafe_characters(self):
        assert download_filename('Q3: "Café" plan?', "kb/plan.pdf") == "Q3_ _Caf_ plan_.pdf"


def _storage(status_code=200, content=b"%PDF-1.7", headers=None, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(str(request.url))
        return httpx.Response(status_code, content=content, headers=headers or {})
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestDownloadDocument:
    @pytest.fixture(autouse=True)
    def pull_zone(self, monkeypatch):
        monkeypatch.setattr(Config, "STORAGE_PULL_ZONE_URL", "cdn.example.com/")

    def test_pasted_text(self, db):
        doc = db.seed("rag_documents", {"title": "Notes", "content": "# Findings"})[0]

        download = KnowledgeBaseService(db, http_client=_storage(500)).download_document(doc["id"])

        assert download.filename == "Notes.md"
        assert download.content_type == "text/markdown; charset=utf-8"
        assert download.content == b"# Findings"

    def test_fetches_from_pull_zone(self, db):
        doc = db.seed("rag_documents", {
            "title": "Report", "storage_path": "/knowledge-bases/kb1/1-Report.pdf",
            "content_type": "application/pdf",
        })[0]
        seen = []

        download = KnowledgeBaseService(db, http_client=_storage(seen=seen)).download_document(doc["id"])

        assert seen == ["https://cdn.example.com/knowledge-bases/kb1/1-Report.pdf"]
        assert download.filename == "Report.pdf"
        assert download.content_type == "application/pdf"
        assert download.content == b"%PDF-1.7"

    def test_content_type_from_response(self, db):
        doc = db.seed("rag_documents", {"title": "Sheet", "storage_path": "kb/1-sheet.csv"})[0]
        client = _storage(content=b"a,b", headers={"content-type": "text/csv"})

        download = KnowledgeBaseService(db, http_client=client).download_document(doc["id"])

        assert download.content_type == "text/csv"

    def test_storage_error_keeps_status(self, db):
        doc = db.seed("rag_documents", {"title": "Report", "storage_path": "kb/1-report.pdf"})[0]

        with pytest.raises(StorageError) as exc_info:
            KnowledgeBaseService(db, http_client=_storage(404)).download_document(doc["id"])

        assert exc_info.value.status_code == 404

    def test_requires_pull_zone(self, db, monkeypatch):
        monkeypatch.setattr(Config, "STORAGE_PULL_ZONE_URL", "")
        doc = db.seed("rag_documents", {"title": "Report", "storage_path": "kb/1-report.pdf"})[0]

        with pytest.raises(ValueError, match="pull zone"):
            KnowledgeBaseService(db, http_client=_storage()).download_document(doc["id"])

    def test_deleted_document(self, db):
        doc = db.seed("rag_documents", {"title": "Gone", "deleted_at": "2026-01-01T00:00:00+00:00"})[0]

        with pytest.raises(NotFoundError):
            KnowledgeBaseService(db, http_client=_storage()).download_document(doc["id"])


def test_update_status_of_missing_document(service):
    with pytest.raises(NotFoundError):
        service.update_document_status("nope", "ready", chunk_count=3)
