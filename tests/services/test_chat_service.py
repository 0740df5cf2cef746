"""
Tests for ChatService - conversations, contexts, RAG prompting and
citation extraction.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from funnelcms.core.exceptions import NotFoundError
from funnelcms.core.models import ChatContext, ContextType
from funnelcms.services.chat_service import ChatService, build_rag_prompt, extract_citations
from funnelcms.services.knowledge_base import ChunkResult


def _chunk(chunk_id, document_id, content, title):
    return ChunkResult(id=chunk_id, document_id=document_id, content=content,
                       similarity_score=0.9, document_title=title)


CHUNKS = [
    _chunk("c1", "d1", "Dental clinics spend heavily on patient acquisition.", "Market Report"),
    _chunk("c2", "d2", "Most owners hire agencies after two failed campaigns.", "Interview Notes"),
    _chunk("c3", "d1", "Average contract value is twelve thousand dollars.", "Market Report"),
]


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


@pytest.fixture
def chat_client():
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("Clinics spend heavily, per Chunk 1.")
    return client


@pytest.fixture
def knowledge_base():
    kb = MagicMock()
    kb.search_contexts.return_value = CHUNKS
    return kb


@pytest.fixture
def service(db, chat_client, knowledge_base):
    return ChatService(db, openai_client=chat_client, knowledge_base=knowledge_base)


# ============================================================================
# Prompt and citations
# ============================================================================

class TestBuildRagPrompt:
    def test_groups_chunks_by_document(self):
        prompt = build_rag_prompt(CHUNKS, [ChatContext(type=ContextType.KNOWLEDGE_BASE, id="kb1")])

        assert "[Document: Market Report - Chunk 1]" in prompt
        assert "[Document: Market Report - Chunk 3]" in prompt
        assert "[Document: Interview Notes - Chunk 2]" in prompt
        assert prompt.index("Chunk 3]") < prompt.index("Chunk 2]")
        assert "questions about knowledge base." in prompt

    def test_mixed_contexts(self):
        contexts = [
            ChatContext(type=ContextType.PROJECT, id="p1"),
            ChatContext(type=ContextType.DOCUMENT, id="d1"),
        ]
        prompt = build_rag_prompt(CHUNKS, contexts)
        assert "questions about multiple contexts" in prompt
        assert "from 2 context(s)" in prompt

    def test_plural_single_type(self):
        contexts = [ChatContext(type=ContextType.DOCUMENT, id="d1"), ChatContext(type=ContextType.DOCUMENT, id="d2")]
        assert "questions about documents." in build_rag_prompt(CHUNKS, contexts)


class TestExtractCitations:
    def test_chunk_number(self):
        citations = extract_citations("As chunk 2 says, agencies come later.", CHUNKS)
        assert [c["chunk_id"] for c in citations] == ["c2"]
        assert citations[0]["section"] == "Interview Notes"

    def test_chunk_number_is_matched_whole(self):
        chunks = [
            _chunk(f"c{n}", f"d{n}", f"Finding number {n} about clinics.", None)
            for n in range(1, 13)
        ]
        citations = extract_citations("According to the report (Chunk 12), margins are thin.", chunks)
        assert [c["chunk_id"] for c in citations] == ["c12"]
        assert citations[0]["section"] == "Chunk 12"

    def test_document_title_cites_all_its_chunks(self):
        citations = extract_citations("According to the Market Report, budgets are large.", CHUNKS)
        assert [c["chunk_id"] for c in citations] == ["c1", "c3"]

    def test_quoted_prefix(self):
        answer = "They note: dental clinics spend heavily on patient acquisition."
        assert [c["chunk_id"] for c in extract_citations(answer, CHUNKS)] == ["c1"]

    def test_no_reference(self):
        assert extract_citations("I don't have that information.", CHUNKS) == []


# ============================================================================
# Conversations
# ============================================================================

class TestConversations:
    def test_create_with_contexts(self, service, db):
        conversation = service.create_conversation(
            "u1", contexts=[ChatContext(type=ContextType.PROJECT, id="p1")]
        )

        assert conversation.user_id == "u1"
        assert [c.id for c in service.get_contexts(conversation.id)] == ["p1"]

    def test_set_contexts_replaces(self, service, db):
        conversation = service.create_conversation("u1", contexts=[ChatContext(type=ContextType.PROJECT, id="p1")])
        service.set_contexts(conversation.id, [ChatContext(type=ContextType.DOCUMENT, id="d1")])

        contexts = service.get_contexts(conversation.id)
        assert [(c.type, c.id) for c in contexts] == [(ContextType.DOCUMENT, "d1")]

    def test_unknown_context_type_skipped(self, service, db):
        db.seed(
            "chat_conversation_contexts",
            {"conversation_id": "c1", "context_type": "folder", "context_id": "f1"},
            {"conversation_id": "c1", "context_type": "knowledgeBase", "context_id": "kb1"},
        )
        contexts = service.get_contexts("c1")
        assert [(c.type, c.id) for c in contexts] == [(ContextType.KNOWLEDGE_BASE, "kb1")]

    def test_other_users_conversation_hidden(self, service):
        conversation = service.create_conversation("u1")
        assert service.get_conversation(conversation.id, "u2") is None
        assert service.delete_conversation(conversation.id, "u2") is False
        assert service.delete_conversation(conversation.id, "u1") is True

    def test_list_counts_messages(self, service, db):
        conversation = service.create_conversation("u1", title="Pricing")
        db.seed(
            "chat_messages",
            {"conversation_id": conversation.id, "role": "user", "content": "hi"},
            {"conversation_id": conversation.id, "role": "assistant", "content": "hello"},
        )
        listed = service.list_conversations("u1")
        assert listed[0]["message_count"] == 2

    def test_requires_user(self, service):
        with pytest.raises(ValueError):
            service.create_conversation("")


# ============================================================================
# Messaging
# ============================================================================

class TestSendMessage:
    def test_answers_with_context(self, service, db, chat_client, knowledge_base):
        conversation = service.create_conversation(
            "u1", contexts=[ChatContext(type=ContextType.KNOWLEDGE_BASE, id="kb1")]
        )

        reply = service.send_message(conversation.id, "u1", "  How much do clinics spend?  ")

        messages = chat_client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert "[Document: Market Report - Chunk 1]" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "How much do clinics spend?"}
        assert knowledge_base.search_contexts.call_args.kwargs["limit"] == 20

        assert reply.role.value == "assistant"
        assert [c["chunk_id"] for c in reply.citations] == ["c1"]
        assert reply.metadata["rag_used"] is True
        assert reply.metadata["chunks_retrieved"] == 3
        assert [m["role"] for m in db.rows("chat_messages")] == ["user", "assistant"]

    def test_first_message_becomes_title(self, service, db):
        conversation = service.create_conversation("u1")
        service.send_message(conversation.id, "u1", "x" * 150)
        assert db.rows("chat_conversations")[0]["title"] == "x" * 100

    def test_existing_title_kept(self, service, db):
        conversation = service.create_conversation("u1", title="Pricing")
        service.send_message(conversation.id, "u1", "What about churn?")
        assert db.rows("chat_conversations")[0]["title"] == "Pricing"

    def test_without_contexts_no_system_prompt(self, service, chat_client, knowledge_base):
        conversation = service.create_conversation("u1")

        reply = service.send_message(conversation.id, "u1", "Hello")

        messages = chat_client.chat.completions.create.call_args.kwargs["messages"]
        assert all(m["role"] != "system" for m in messages)
        knowledge_base.search_contexts.assert_not_called()
        assert reply.citations is None
        assert reply.metadata["rag_used"] is False

    def test_retrieval_failure_still_answers(self, service, chat_client, knowledge_base):
        knowledge_base.search_contexts.side_effect = RuntimeError("embedding outage")
        conversation = service.create_conversation(
            "u1", contexts=[ChatContext(type=ContextType.PROJECT, id="p1")]
        )

        reply = service.send_message(conversation.id, "u1", "Hello")

        assert reply.content == "Clinics spend heavily, per Chunk 1."
        assert reply.metadata["rag_used"] is False

    def test_history_is_sent(self, service, db, chat_client):
        conversation = service.create_conversation("u1", title="T")
        service.send_message(conversation.id, "u1", "First")
        service.send_message(conversation.id, "u1", "Second")

        messages = chat_client.chat.completions.create.call_args.kwargs["messages"]
        assert [m["content"] for m in messages] == [
            "First", "Clinics spend heavily, per Chunk 1.", "Second",
        ]

    def test_wrong_user(self, service):
        conversation = service.create_conversation("u1")
        with pytest.raises(NotFoundError):
            service.send_message(conversation.id, "u2", "Hello")

    def test_empty_content(self, service):
        with pytest.raises(ValueError):
            service.send_message("c1", "u1", "   ")

    def test_requires_openai(self, db, knowledge_base):
        service = ChatService(db, knowledge_base=knowledge_base)
        with pytest.raises(ValueError, match="OpenAI"):
            service.send_message("c1", "u1", "Hello")
