"""
Logfire observability configuration for FunnelCMS.

Provides tracing for service operations (page composition, run status
changes, retrieval) and for the FastAPI app.

Usage:
    # At app startup
    from funnelcms.core.observability import setup_logfire
    setup_logfire()

    # In services
    import logfire

    with logfire.span("duplicate_section", section_id=section_id):
        ...

Environment Variables:
    LOGFIRE_TOKEN: Your Logfire write token (data is only sent when set)
    LOGFIRE_PROJECT_NAME: Project name in Logfire dashboard
    LOGFIRE_ENVIRONMENT: Environment name (development, staging, production)
"""

import os
import logging
from typing import Optional

import logfire

logger = logging.getLogger(__name__)

_logfire_configured = False


def setup_logfire(
    project_name: Optional[str] = None,
    environment: Optional[str] = None,
    service_name: str = "funnelcms",
    app=None
) -> bool:
    """
    Configure Logfire for observability.

    Spans are always safe to open; they are only exported when
    LOGFIRE_TOKEN is present.

    Args:
        project_name: Logfire project name (or LOGFIRE_PROJECT_NAME env var)
        environment: Environment name (or LOGFIRE_ENVIRONMENT env var)
        service_name: Service name for tracing
        app: Optional FastAPI app to instrument

    Returns:
        True if data will be sent to Logfire, False if running local-only
    """
    global _logfire_configured

    if _logfire_configured:
        logger.debug("Logfire already configured")
        return bool(os.environ.get("LOGFIRE_TOKEN"))

    token = os.environ.get("LOGFIRE_TOKEN")
    project = project_name or os.environ.get("LOGFIRE_PROJECT_NAME", "funnelcms")
    env = environment or os.environ.get("LOGFIRE_ENVIRONMENT", "development")

    logfire.configure(
        token=token,
        service_name=service_name,
        environment=env,
        send_to_logfire="if-token-present",
    )
    logfire.instrument_pydantic()

    if app is not None:
        logfire.instrument_fastapi(app)

    _logfire_configured = True

    if token:
        logger.info(f"Logfire configured: project={project}, environment={env}")
    else:
        logger.info("LOGFIRE_TOKEN not set, spans stay local")
    return bool(token)
