"""
ChatService - Conversations grounded in knowledge base content.

A conversation has any number of contexts (documents, projects, knowledge
bases). Each user message retrieves the most relevant chunks across all
contexts, passes them to the chat model as a system prompt, and stores
the answer with the chunks it cited.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import logfire
from openai import OpenAI
from supabase import Client

from ..core.config import Config
from ..core.database import get_supabase_client, first_row
from ..core.exceptions import NotFoundError
from ..core.models import ChatContext, ChatMessage, ChatRole, ContextType, Conversation
from .knowledge_base import ChunkResult, KnowledgeBaseService

logger = logging.getLogger(__name__)

TITLE_LENGTH = 100
RETRIEVAL_LIMIT = 20
CITATION_PREFIX_LENGTH = 50
CITATION_TEXT_LENGTH = 200


def build_rag_prompt(chunks: List[ChunkResult], contexts: List[ChatContext]) -> str:
    """
    System prompt listing retrieved chunks grouped by document.

    Chunks are labelled "[Document: <title> - Chunk <n>]" where n is the
    chunk's position in the retrieval order, so the model's references can
    be matched back by extract_citations().
    """
    grouped: Dict[str, List[tuple]] = {}
    for number, chunk in enumerate(chunks, start=1):
        grouped.setdefault(chunk.document_id, []).append((number, chunk))

    blocks = []
    for doc_chunks in grouped.values():
        title = doc_chunks[0][1].document_title or "Untitled Document"
        blocks.append("\n\n".join(
            f"[Document: {title} - Chunk {number}]\n{chunk.content}"
            for number, chunk in doc_chunks
        ))
    chunks_text = "\n\n---\n\n".join(blocks)

    types = {c.type for c in contexts}
    if len(types) == 1:
        description = next(iter(types)).value.replace("_", " ") + ("s" if len(contexts) > 1 else "")
    else:
        description = "multiple contexts"

    return f"""You are a helpful AI assistant answering questions about {description}.

Context Information:
{chunks_text}

Instructions:
- Synthesize information across all provided documents from {len(contexts)} context(s)
- When referencing information, specify which document it came from (e.g., "According to [Document: Niche Intelligence Report - Chunk 1]...")
- Enable cross-document and cross-context comparison and analysis
- If information conflicts between documents or contexts, note the discrepancy
- Be specific and accurate in your responses
- If the question cannot be answered with the provided context, politely explain that you don't have that information in the available contexts"""


def extract_citations(response: str, chunks: List[ChunkResult]) -> List[Dict[str, Any]]:
    """
    Chunks the answer refers to.

    A chunk counts as cited when the answer quotes its first 50 characters,
    mentions "Chunk <n>", or names its document title.
    """
    lowered = response.lower()
    citations = []
    for number, chunk in enumerate(chunks, start=1):
        quoted = chunk.content[:CITATION_PREFIX_LENGTH].lower() in lowered
        numbered = re.search(rf"\bchunk {number}\b", lowered) is not None
        titled = bool(chunk.document_title) and chunk.document_title in response
        if quoted or numbered or titled:
            citations.append({
                "chunk_id": chunk.id,
                "document_id": chunk.document_id,
                "text": chunk.content[:CITATION_TEXT_LENGTH],
                "section": chunk.document_title or f"Chunk {number}",
            })
    return citations


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatService:
    """Service for chat conversations and messages."""

    def __init__(
        self,
        supabase: Optional[Client] = None,
        openai_client: Optional[OpenAI] = None,
        knowledge_base: Optional[KnowledgeBaseService] = None
    ):
        self.supabase = supabase or get_supabase_client()
        if openai_client is None and Config.OPENAI_API_KEY:
            openai_client = OpenAI(api_key=Config.OPENAI_API_KEY)
        self.openai = openai_client
        self.knowledge_base = knowledge_base or KnowledgeBaseService(self.supabase, openai_client=openai_client)

    # =========================================================================
    # Conversations
    # =========================================================================

    def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        contexts: Optional[List[ChatContext]] = None
    ) -> Conversation:
        if not user_id:
            raise ValueError("user_id is required")

        row = first_row(
            self.supabase.table("chat_conversations").insert({
                "user_id": user_id,
                "title": title or None,
            }).execute()
        )
        if not row:
            raise ValueError("Failed to create conversation")

        if contexts:
            self.set_contexts(row["id"], contexts)
        return Conversation(**row)

    def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """User's conversations, most recently active first, with message counts."""
        conversations = self.supabase.table("chat_conversations").select("*").eq(
            "user_id", user_id
        ).order("updated_at", desc=True).execute().data or []

        listed = []
        for conversation in conversations:
            count = self.supabase.table("chat_messages").select("id", count="exact").eq(
                "conversation_id", conversation["id"]
            ).execute().count
            listed.append({**conversation, "message_count": count or 0})
        return listed

    def get_conversation(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        """The conversation, or None if missing or owned by another user."""
        row = first_row(
            self.supabase.table("chat_conversations").select("*").eq(
                "id", conversation_id
            ).eq("user_id", user_id).limit(1).execute()
        )
        return Conversation(**row) if row else None

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        result = self.supabase.table("chat_conversations").delete().eq(
            "id", conversation_id
        ).eq("user_id", user_id).execute()
        return bool(result.data)

    def get_contexts(self, conversation_id: str) -> List[ChatContext]:
        rows = self.supabase.table("chat_conversation_contexts").select(
            "context_type, context_id"
        ).eq("conversation_id", conversation_id).execute().data or []

        contexts = []
        for row in rows:
            try:
                contexts.append(ChatContext(type=ContextType(row["context_type"]), id=row["context_id"]))
            except ValueError:
                logger.warning(f"Skipping unknown context type {row['context_type']!r} on {conversation_id}")
        return contexts

    def set_contexts(self, conversation_id: str, contexts: List[ChatContext]) -> List[ChatContext]:
        """Replace the conversation's contexts."""
        self.supabase.table("chat_conversation_contexts").delete().eq(
            "conversation_id", conversation_id
        ).execute()
        if contexts:
            self.supabase.table("chat_conversation_contexts").insert([
                {
                    "conversation_id": conversation_id,
                    "context_type": ContextType(c.type).value,
                    "context_id": c.id,
                }
                for c in contexts
            ]).execute()
        return contexts

    def list_messages(self, conversation_id: str) -> List[ChatMessage]:
        result = self.supabase.table("chat_messages").select("*").eq(
            "conversation_id", conversation_id
        ).order("created_at").execute()
        return [ChatMessage(**row) for row in (result.data or [])]

    # =========================================================================
    # Messaging
    # =========================================================================

    def send_message(self, conversation_id: str, user_id: str, content: str) -> ChatMessage:
        """
        Store a user message, answer it, and store the answer.

        Retrieval failures are logged and the model answers without
        document context.

        Raises:
            ValueError: If content is empty or OpenAI is not configured
            NotFoundError: If the conversation does not belong to the user
        """
        if not content or not content.strip():
            raise ValueError("Message content is required")
        if self.openai is None:
            raise ValueError("OpenAI client not configured. Set OPENAI_API_KEY environment variable.")
        content = content.strip()

        conversation = self.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")

        if not conversation.title:
            self.supabase.table("chat_conversations").update(
                {"title": content[:TITLE_LENGTH].strip()}
            ).eq("id", conversation_id).execute()

        self._save_message(conversation_id, ChatRole.USER, content)

        history = self.supabase.table("chat_messages").select("role, content").eq(
            "conversation_id", conversation_id
        ).order("created_at").execute().data or []

        contexts = self.get_contexts(conversation_id)
        chunks: List[ChunkResult] = []
        if contexts:
            try:
                chunks = self.knowledge_base.search_contexts(content, contexts, limit=RETRIEVAL_LIMIT)
            except Exception as e:
                logger.warning(f"Retrieval failed for conversation {conversation_id}, answering without context: {e}")

        messages = [{"role": m["role"], "content": m["content"]} for m in history]
        if chunks:
            messages.insert(0, {"role": ChatRole.SYSTEM.value, "content": build_rag_prompt(chunks, contexts)})

        with logfire.span("chat_completion", conversation_id=conversation_id, chunks=len(chunks)):
            response = self.openai.chat.completions.create(
                model=Config.CHAT_MODEL,
                messages=messages,
                temperature=Config.CHAT_TEMPERATURE,
                max_tokens=Config.CHAT_MAX_TOKENS,
            )
        answer = response.choices[0].message.content or ""

        citations = extract_citations(answer, chunks) if chunks else []
        assistant = self._save_message(
            conversation_id,
            ChatRole.ASSISTANT,
            answer,
            citations=citations or None,
            metadata={
                "model": Config.CHAT_MODEL,
                "rag_used": bool(chunks),
                "chunks_retrieved": len(chunks),
            },
        )

        self.supabase.table("chat_conversations").update(
            {"updated_at": _now_iso()}
        ).eq("id", conversation_id).execute()

        logger.info(f"Answered message in {conversation_id} ({len(chunks)} chunks, {len(citations)} citations)")
        return assistant

    def _save_message(
        self,
        conversation_id: str,
        role: ChatRole,
        content: str,
        citations: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChatMessage:
        record: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "role": role.value,
            "content": content,
        }
        if citations is not None:
            record["citations"] = citations
        if metadata is not None:
            record["metadata"] = metadata

        row = first_row(self.supabase.table("chat_messages").insert(record).execute())
        if not row:
            raise ValueError("Failed to save message")
        return ChatMessage(**row)
