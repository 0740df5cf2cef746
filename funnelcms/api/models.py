"""
API Request and Response Models.

Pydantic models for FastAPI request/response validation and
automatic OpenAPI documentation generation.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime

from ..core.models import DocumentStatus, EntityType, EventType


# ============================================================================
# Analytics
# ============================================================================

class TrackEventRequest(BaseModel):
    """
    Visitor event posted by the public site.

    Country, city, user agent and referrer are filled from request headers
    when absent.
    """
    event_type: EventType = Field(..., description="page_view, link_click or session_start")
    entity_type: EntityType = Field(..., description="What the event refers to")
    entity_id: str = Field(..., min_length=1, description="Id of the page, section, CTA, ...")
    session_id: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "event_type": "link_click",
                "entity_type": "cta_button",
                "entity_id": "426f5869-48b5-4e36-bad3-203ea5425f9d",
                "session_id": "s-123",
                "metadata": {"location": "header"}
            }
        }


# ============================================================================
# Intelligence
# ============================================================================

class ExecuteWorkflowRequest(BaseModel):
    """Request to run a workflow for a project."""
    project_id: str = Field(..., min_length=1)
    user_id: Optional[str] = Field(None, description="Forwarded to the workflow as UserId")
    input: Optional[Dict[str, Any]] = Field(None, description="Extra workflow input")


class ExecuteWorkflowResponse(BaseModel):
    success: bool = True
    run_id: str
    data: Optional[Any] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class RunStatusUpdate(BaseModel):
    """
    Status callback from the external workflow service.

    When output_json is present the output is stored and the run is
    marked complete.
    """
    status: Optional[str] = Field(None, description="Run status (legacy names accepted)")
    step: Optional[str] = None
    error: Optional[str] = None
    fit_score: Optional[float] = None
    verdict: Optional[str] = None
    output_json: Optional[Dict[str, Any]] = None
    automation_name: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "generating",
                "step": "generating"
            }
        }


class RunStatusResponse(BaseModel):
    success: bool = True
    run_id: str
    status: str
    output_id: Optional[str] = None


class DocumentStatusUpdate(BaseModel):
    """Ingestion progress reported by the external document ingester."""
    status: DocumentStatus
    chunk_count: Optional[int] = Field(None, ge=0)
    embedding_count: Optional[int] = Field(None, ge=0)
    error: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "ready",
                "chunk_count": 42,
                "embedding_count": 42
            }
        }


class SearchRequest(BaseModel):
    """Semantic search over one knowledge base, document or project."""
    query: str = Field(..., min_length=1)
    kb_id: Optional[str] = None
    document_id: Optional[str] = None
    project_id: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=50)


class SearchResponse(BaseModel):
    results: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0


# ============================================================================
# Chat
# ============================================================================

class ChatMessageRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    content: str = Field(..., description="Message text")


# ============================================================================
# System
# ============================================================================

class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=datetime.now)
    services: Dict[str, str] = Field(
        default_factory=dict,
        description="Status of dependent services (database, OpenAI, ...)"
    )


class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    timestamp: datetime = Field(default_factory=datetime.now)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Invalid API key",
                "detail": "The provided API key is invalid or expired",
                "timestamp": "2025-01-18T12:00:00Z"
            }
        }
