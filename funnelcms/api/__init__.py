"""
FunnelCMS API - FastAPI application for the public site and workflow callbacks.

Serves page compositions and analytics tracking to the marketing site,
and run execution, status callbacks, reports, search and chat to the
intelligence workspace.
"""

__version__ = "1.0.0"
