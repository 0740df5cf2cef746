"""
FunnelCMS FastAPI Application.

Non-CRUD HTTP surface: public page composition and analytics tracking
for the marketing site, plus workflow execution, run and document status
callbacks, reports, document downloads, knowledge base search and
chat for the intelligence workspace.

Features:
- API key authentication
- Rate limiting
- Health check endpoint
- Automatic OpenAPI documentation
"""

# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import logging
from typing import Optional
from datetime import datetime
from urllib.parse import unquote

from fastapi import FastAPI, HTTPException, Depends, Header, Request, status
from fastapi.security import APIKeyHeader
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .models import (
    ChatMessageRequest,
    DocumentStatusUpdate,
    ErrorResponse,
    ExecuteWorkflowRequest,
    ExecuteWorkflowResponse,
    HealthResponse,
    RunStatusResponse,
    RunStatusUpdate,
    SearchRequest,
    SearchResponse,
    TrackEventRequest,
)
from ..core.config import Config
from ..core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    WebhookError,
)
from ..core.models import AnalyticsEvent, ChatMessage, PageComposition, RunProgress
from ..core.observability import setup_logfire
from ..services.analytics_service import AnalyticsService
from ..services.chat_service import ChatService
from ..services.knowledge_base import KnowledgeBaseService
from ..services.page_service import PageService
from ..services.project_service import ProjectService
from ..services.report_service import ReportService
from ..services.run_service import RunService

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# ============================================================================
# FastAPI Application Setup
# ============================================================================

app = FastAPI(
    title="FunnelCMS API",
    description="Page composition, analytics and research intelligence API",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

setup_logfire(app=app)

# ============================================================================
# CORS Configuration
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# Rate Limiting
# ============================================================================

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ============================================================================
# API Key Authentication
# ============================================================================

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def _check_api_key(api_key: Optional[str]) -> bool:
    expected_key = Config.FUNNELCMS_API_KEY

    # Development mode - no API key required
    if not expected_key:
        logger.warning("FUNNELCMS_API_KEY not set - running in development mode (no auth)")
        return True

    if not api_key:
        logger.warning("API key missing from request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Provide via X-API-Key header."
        )

    if api_key != expected_key:
        logger.warning(f"Invalid API key attempt: {api_key[:10]}...")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )

    return True


async def verify_api_key(api_key: Optional[str] = Depends(API_KEY_HEADER)):
    """
    Verify API key from request header.

    Checks against FUNNELCMS_API_KEY. If not set, allows all requests
    (development mode).

    Raises:
        HTTPException: If API key is invalid or missing
    """
    return _check_api_key(api_key)


async def verify_run_callback(
    run_secret: Optional[str] = Header(None, alias="X-Run-Secret"),
    api_key: Optional[str] = Depends(API_KEY_HEADER)
):
    """Accept the workflow service's X-Run-Secret, otherwise require the API key."""
    if Config.RUN_CALLBACK_SECRET and run_secret == Config.RUN_CALLBACK_SECRET:
        return True
    return _check_api_key(api_key)


# ============================================================================
# Service Dependencies
# ============================================================================

def get_page_service() -> PageService:
    return PageService()


def get_analytics_service() -> AnalyticsService:
    return AnalyticsService()


def get_run_service() -> RunService:
    return RunService()


def get_report_service() -> ReportService:
    return ReportService()


def get_project_service() -> ProjectService:
    return ProjectService()


def get_knowledge_base_service() -> KnowledgeBaseService:
    return KnowledgeBaseService()


def get_chat_service() -> ChatService:
    return ChatService()


# ============================================================================
# Health Check Endpoint
# ============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint"
)
async def health_check():
    """
    Check API health and configuration of dependent services.
    """
    services = {}

    try:
        Config.validate()
        services["database"] = "configured"
    except ValueError as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = "error"

    services["openai"] = "configured" if Config.OPENAI_API_KEY else "not_configured"

    overall_status = "healthy" if all(
        s != "error" for s in services.values()
    ) else "degraded"

    return HealthResponse(
        status=overall_status,
        version=API_VERSION,
        timestamp=datetime.now(),
        services=services
    )


# ============================================================================
# Public Site Endpoints
# ============================================================================

@app.post(
    "/api/analytics/events",
    response_model=AnalyticsEvent,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Missing required fields"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    tags=["Analytics"],
    summary="Track a visitor event"
)
@limiter.limit("120/minute")
def track_event(
    request: Request,
    event: TrackEventRequest,
    service: AnalyticsService = Depends(get_analytics_service)
):
    """
    Record a page view, link click or session start.

    Country and city come from the hosting platform's geolocation
    headers. User agent and referrer fall back to the request headers.
    """
    headers = request.headers
    city = headers.get("x-vercel-ip-city")

    return service.track_event(
        event_type=event.event_type.value,
        entity_type=event.entity_type.value,
        entity_id=event.entity_id,
        session_id=event.session_id,
        country=headers.get("x-vercel-ip-country") or event.country,
        city=unquote(city) if city else event.city,
        user_agent=event.user_agent or headers.get("user-agent"),
        referrer=event.referrer or headers.get("referer"),
        metadata=event.metadata,
    )


@app.get(
    "/api/pages/{slug}/composition",
    response_model=PageComposition,
    responses={404: {"model": ErrorResponse, "description": "Page not found"}},
    tags=["Pages"],
    summary="Page with its visible sections"
)
def page_composition(slug: str, service: PageService = Depends(get_page_service)):
    """Composition data for a public page; draft sections only appear in development."""
    composition = service.get_page_composition(slug)
    if composition is None:
        raise HTTPException(status_code=404, detail=f"Page '{slug}' not found")
    return composition


# ============================================================================
# Intelligence Endpoints
# ============================================================================

@app.post(
    "/api/intel/workflows/{workflow_id}/execute",
    response_model=ExecuteWorkflowResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized - Invalid API key"},
        404: {"model": ErrorResponse, "description": "Workflow, webhook or project not found"},
        502: {"model": ErrorResponse, "description": "Workflow service error"},
    },
    tags=["Intelligence"],
    summary="Start a workflow run"
)
@limiter.limit("10/minute")
async def execute_workflow(
    request: Request,
    workflow_id: str,
    body: ExecuteWorkflowRequest,
    authenticated: bool = Depends(verify_api_key),
    service: RunService = Depends(get_run_service)
):
    """
    Create a run for the project and send it to the workflow's webhook.

    The external service reports progress through the run status callback.
    """
    logger.info(f"Executing workflow {workflow_id} for project {body.project_id}")
    result = await service.execute_workflow(
        workflow_id,
        body.project_id,
        user_id=body.user_id,
        input=body.input,
    )
    return ExecuteWorkflowResponse(run_id=result["run_id"], data=result["data"])


@app.post(
    "/api/intel/runs/{run_id}/status",
    response_model=RunStatusResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Run not found"},
        409: {"model": ErrorResponse, "description": "Transition not allowed"},
    },
    tags=["Intelligence"],
    summary="Run status callback"
)
def update_run_status(
    run_id: str,
    update: RunStatusUpdate,
    authenticated: bool = Depends(verify_run_callback),
    service: RunService = Depends(get_run_service)
):
    """
    Status callback from the external workflow service.

    A body with output_json stores the report and completes the run.
    """
    if update.output_json is not None:
        output = service.record_output(run_id, update.output_json, update.automation_name)
        run = service.get_run(run_id)
        return RunStatusResponse(
            run_id=run_id,
            status=run.status.value if run else "complete",
            output_id=output.id,
        )

    if not update.status:
        raise ValueError("status or output_json is required")

    run = service.update_status(
        run_id,
        update.status,
        step=update.step,
        error=update.error,
        fit_score=update.fit_score,
        verdict=update.verdict,
    )
    return RunStatusResponse(run_id=run_id, status=run.status.value)


@app.get(
    "/api/intel/runs/{run_id}/progress",
    response_model=RunProgress,
    responses={404: {"model": ErrorResponse, "description": "Run not found"}},
    tags=["Intelligence"],
    summary="Run progress timeline"
)
def run_progress(
    run_id: str,
    authenticated: bool = Depends(verify_api_key),
    service: RunService = Depends(get_run_service)
):
    progress = service.get_progress(run_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return progress


@app.get(
    "/api/intel/reports/{output_id}",
    responses={404: {"model": ErrorResponse, "description": "Report not found"}},
    tags=["Intelligence"],
    summary="Report by output or run id"
)
def get_report(
    output_id: str,
    authenticated: bool = Depends(verify_api_key),
    service: ReportService = Depends(get_report_service)
):
    report = service.get_report(output_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


@app.post(
    "/api/intel/search",
    response_model=SearchResponse,
    tags=["Intelligence"],
    summary="Semantic knowledge base search"
)
@limiter.limit("30/minute")
def search(
    request: Request,
    body: SearchRequest,
    authenticated: bool = Depends(verify_api_key),
    service: KnowledgeBaseService = Depends(get_knowledge_base_service)
):
    results = service.search(
        body.query,
        kb_id=body.kb_id,
        document_id=body.document_id,
        project_id=body.project_id,
        limit=body.limit,
    )
    return SearchResponse(results=[r.model_dump() for r in results], count=len(results))


@app.get(
    "/api/intel/projects/{project_id}/documents-by-workflow",
    responses={
        400: {"model": ErrorResponse, "description": "workflow_type missing"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
    tags=["Intelligence"],
    summary="Documents a project's runs of one workflow produced"
)
def documents_by_workflow(
    project_id: str,
    workflow_type: Optional[str] = None,
    authenticated: bool = Depends(verify_api_key),
    service: ProjectService = Depends(get_project_service)
):
    return service.documents_by_workflow(project_id, workflow_type or "")


@app.get(
    "/api/intel/documents/{document_id}/download",
    responses={
        404: {"model": ErrorResponse, "description": "Document not found"},
        502: {"model": ErrorResponse, "description": "Storage error"},
    },
    tags=["Intelligence"],
    summary="Download a document's file"
)
def download_document(
    document_id: str,
    authenticated: bool = Depends(verify_api_key),
    service: KnowledgeBaseService = Depends(get_knowledge_base_service)
):
    download = service.download_document(document_id)
    return Response(
        content=download.content,
        media_type=download.content_type,
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )


@app.post(
    "/api/intel/documents/{document_id}/status",
    responses={404: {"model": ErrorResponse, "description": "Document not found"}},
    tags=["Intelligence"],
    summary="Document ingestion callback"
)
def update_document_status(
    document_id: str,
    update: DocumentStatusUpdate,
    authenticated: bool = Depends(verify_run_callback),
    service: KnowledgeBaseService = Depends(get_knowledge_base_service)
):
    """Progress report from the external ingester for an uploaded file."""
    document = service.update_document_status(
        document_id,
        update.status,
        chunk_count=update.chunk_count,
        embedding_count=update.embedding_count,
        error=update.error,
    )
    return document.model_dump(mode="json")


# ============================================================================
# Chat Endpoints
# ============================================================================

@app.post(
    "/api/chat/conversations/{conversation_id}/messages",
    response_model=ChatMessage,
    responses={404: {"model": ErrorResponse, "description": "Conversation not found"}},
    tags=["Chat"],
    summary="Send a chat message"
)
@limiter.limit("20/minute")
def send_chat_message(
    request: Request,
    conversation_id: str,
    body: ChatMessageRequest,
    authenticated: bool = Depends(verify_api_key),
    service: ChatService = Depends(get_chat_service)
):
    """Answer a message using the conversation's documents, projects and knowledge bases."""
    return service.send_message(conversation_id, body.user_id, body.content)


# ============================================================================
# Error Handlers
# ============================================================================

def _error(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            timestamp=datetime.now()
        ).model_dump(mode="json")
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return _error(exc.status_code, str(exc.detail), str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error(status.HTTP_409_CONFLICT, str(exc))


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(status.HTTP_409_CONFLICT, str(exc), f"{exc.current} -> {exc.requested}")


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(WebhookError)
async def webhook_error_handler(request: Request, exc: WebhookError):
    logger.error(f"Workflow webhook failed: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, str(exc), exc.details)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
    return _error(status_code, str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error(500, "Internal server error", str(exc))


# ============================================================================
# Startup/Shutdown Events
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    logger.info("="*60)
    logger.info("FunnelCMS API Starting...")
    logger.info(f"API Version: {API_VERSION}")
    logger.info(f"Environment: {Config.APP_ENV}")
    logger.info(f"Auth mode: {'Production (API key required)' if Config.FUNNELCMS_API_KEY else 'Development (no auth)'}")
    logger.info("="*60)


@app.on_event("shutdown")
async def shutdown_event():
    """Log shutdown information."""
    logger.info("FunnelCMS API Shutting down...")


# ============================================================================
# Root Endpoint
# ============================================================================

@app.get("/", tags=["System"])
async def root():
    """
    API root endpoint with basic information.
    """
    return {
        "name": "FunnelCMS API",
        "version": API_VERSION,
        "description": "Page composition, analytics and research intelligence API",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "analytics": "/api/analytics/events",
            "page_composition": "/api/pages/{slug}/composition",
            "execute_workflow": "/api/intel/workflows/{id}/execute",
            "run_status": "/api/intel/runs/{id}/status",
            "run_progress": "/api/intel/runs/{id}/progress",
            "report": "/api/intel/reports/{id}",
            "search": "/api/intel/search",
            "documents_by_workflow": "/api/intel/projects/{id}/documents-by-workflow",
            "document_download": "/api/intel/documents/{id}/download",
            "document_status": "/api/intel/documents/{id}/status",
            "chat": "/api/chat/conversations/{id}/messages",
        }
    }
