"""
Pydantic models for database tables
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from enum import Enum


# ============================================================================
# Enums
# ============================================================================

class PublishStatus(str, Enum):
    """Visibility of a junction row (page section, section item)"""
    PUBLISHED = "published"
    DRAFT = "draft"
    DEACTIVATED = "deactivated"


class PageType(str, Enum):
    """Page role on the site"""
    HOME = "home"
    LANDING = "landing"
    FUNNEL = "funnel"
    STANDARD = "standard"


class RunStatus(str, Enum):
    """Lifecycle of a report generation run"""
    QUEUED = "queued"
    COLLECTING = "collecting"
    INGESTING = "ingesting"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


# Status names written by older versions of the external workflow service
LEGACY_RUN_STATUSES = {
    "processing": RunStatus.QUEUED.value,
    "completed": RunStatus.COMPLETE.value,
    "error": RunStatus.FAILED.value,
}


class DocumentStatus(str, Enum):
    """Chunking/embedding state of a RAG document"""
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class EventType(str, Enum):
    """Analytics event types"""
    PAGE_VIEW = "page_view"
    LINK_CLICK = "link_click"
    SESSION_START = "session_start"


class EntityType(str, Enum):
    """What an analytics event refers to"""
    PAGE = "page"
    SECTION = "section"
    CTA_BUTTON = "cta_button"
    FAQ_ITEM = "faq_item"
    MEDIA = "media"


class KnowledgeBaseTarget(str, Enum):
    """Where a workflow reads its retrieval context from"""
    KNOWLEDGEBASE = "knowledgebase"
    PROJECT = "project"
    CLIENT = "client"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContextType(str, Enum):
    """Scope of retrieval attached to a chat conversation"""
    DOCUMENT = "document"
    PROJECT = "project"
    KNOWLEDGE_BASE = "knowledge_base"

    @classmethod
    def _missing_(cls, value):
        # Older conversations stored the camelCase name
        if value == "knowledgeBase":
            return cls.KNOWLEDGE_BASE
        return None


def should_include_by_status(status: Optional[str], is_development: bool) -> bool:
    """
    Decide whether a junction row is visible on the public site.

    Published rows are always visible, drafts only in development and
    deactivated rows never. A missing status counts as draft.
    """
    effective = status or PublishStatus.DRAFT.value
    if effective == PublishStatus.PUBLISHED.value:
        return True
    if effective == PublishStatus.DRAFT.value:
        return is_development
    return False


# ============================================================================
# Page Builder Models
# ============================================================================

class Page(BaseModel):
    """Routable page composed of ordered sections"""
    id: str
    slug: str
    title: str
    description: Optional[str] = None
    type: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Section(BaseModel):
    """Reusable content block attachable to many pages"""
    id: str
    type: str
    title: Optional[str] = None
    admin_title: Optional[str] = None
    header_title: Optional[str] = None
    subtitle: Optional[str] = None
    eyebrow: Optional[str] = None
    content: Optional[Any] = None
    media_url: Optional[str] = None
    icon: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def sort_label(self) -> str:
        """Label used to order sections in admin listings."""
        return (self.admin_title or self.title or self.type or "").lower()


class PageSection(BaseModel):
    """Junction row linking a section to a page"""
    id: str
    page_id: str
    section_id: str
    position: int = 0
    status: PublishStatus = PublishStatus.DRAFT


class PageRef(BaseModel):
    """A page a section appears on, with the link metadata"""
    id: str
    title: str
    page_section_id: str
    position: int
    status: PublishStatus


class SectionWithPages(Section):
    """Section plus every page it is attached to"""
    pages: List[PageRef] = Field(default_factory=list)


class PlacedSection(Section):
    """Section as placed on a specific page"""
    page_section_id: str
    position: int
    status: PublishStatus
    media: List[Dict[str, Any]] = Field(default_factory=list)
    cta_buttons: List[Dict[str, Any]] = Field(default_factory=list)


class PageComposition(BaseModel):
    """Everything needed to display a public page"""
    page: Page
    sections: List[PlacedSection] = Field(default_factory=list)


class SiteStructureEntry(BaseModel):
    """Mapping of a page type (home, pricing, ...) to concrete pages"""
    page_type: str
    slug: str
    production_page_id: Optional[str] = None
    development_page_id: Optional[str] = None


# ============================================================================
# Analytics Models
# ============================================================================

class AnalyticsEvent(BaseModel):
    """Tracked visitor interaction"""
    id: Optional[str] = None
    event_type: str
    entity_type: str
    entity_id: str
    session_id: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class DailyPoint(BaseModel):
    date: str
    count: int


class AnalyticsStats(BaseModel):
    """Aggregated analytics over a lookback window"""
    total_page_views: int = 0
    total_cta_clicks: int = 0
    total_video_clicks: int = 0
    total_session_starts: int = 0
    unique_sessions: int = 0
    page_views_series: List[DailyPoint] = Field(default_factory=list)
    cta_clicks_series: List[DailyPoint] = Field(default_factory=list)
    session_starts_series: List[DailyPoint] = Field(default_factory=list)
    video_clicks_series: List[DailyPoint] = Field(default_factory=list)
    top_ctas: List[Dict[str, Any]] = Field(default_factory=list)
    top_locations: List[Dict[str, Any]] = Field(default_factory=list)
    top_countries: List[Dict[str, Any]] = Field(default_factory=list)
    top_countries_by_session_start: List[Dict[str, Any]] = Field(default_factory=list)
    top_countries_by_page_view: List[Dict[str, Any]] = Field(default_factory=list)
    top_countries_by_cta_click: List[Dict[str, Any]] = Field(default_factory=list)
    top_countries_by_video_click: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Intelligence (RAG) Models
# ============================================================================

class Workflow(BaseModel):
    """External report-generation workflow"""
    id: str
    name: str
    label: Optional[str] = None
    slug: Optional[str] = None
    knowledge_base_target: KnowledgeBaseTarget = KnowledgeBaseTarget.PROJECT
    target_knowledge_base_id: Optional[str] = None


class Project(BaseModel):
    """Research subject (a niche, a client, ...)"""
    id: str
    name: str
    slug: Optional[str] = None
    status: Optional[str] = None
    geography: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    kb_id: Optional[str] = None


class SubjectType(BaseModel):
    """Kind of project subject offered when creating a project"""
    id: str
    name: str
    label: str
    description: Optional[str] = None
    icon: Optional[str] = None
    enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Run(BaseModel):
    """One execution of a workflow for a project"""
    id: str
    workflow_id: Optional[str] = None
    project_id: Optional[str] = None
    knowledge_base_id: Optional[str] = None
    status: RunStatus = RunStatus.QUEUED
    current_step: Optional[str] = None
    error: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    fit_score: Optional[float] = None
    verdict: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _legacy_status(cls, value):
        return LEGACY_RUN_STATUSES.get(value, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETE, RunStatus.FAILED)


class ProgressStep(BaseModel):
    """A step on a run's progress timeline"""
    id: str
    title: str
    status: str  # completed | active | waiting | failed
    completed_at: Optional[str] = None


class RunProgress(BaseModel):
    run_id: str
    status: RunStatus
    percent_complete: int
    current_step: Optional[str] = None
    steps: List[ProgressStep]
    error: Optional[str] = None


class RunOutput(BaseModel):
    """Final JSON payload produced by a run"""
    id: str
    run_id: str
    automation_name: Optional[str] = None
    output_json: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


# ============================================================================
# Chat Models
# ============================================================================

class ChatContext(BaseModel):
    type: ContextType
    id: str


class ChatMessage(BaseModel):
    id: Optional[str] = None
    conversation_id: str
    role: ChatRole
    content: str
    citations: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class Conversation(BaseModel):
    id: str
    user_id: str
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
