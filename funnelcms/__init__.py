"""
FunnelCMS - Marketing site content management with a RAG intelligence workspace

Composes marketing pages from reusable sections, tracks visitor analytics,
and records the lifecycle of AI research report runs executed by an
external workflow service.
"""

__version__ = "1.0.0"
__author__ = "FunnelCMS Team"
