"""
Services layer for FunnelCMS.

Page composition (pages, sections, content items, site structure),
analytics, and the intelligence workspace (knowledge bases, projects,
runs, reports, chat). Every service takes an optional Supabase client and
falls back to the shared singleton.
"""

from .page_service import PageService
from .section_service import SectionService
from .content_item_service import ContentItemService, CONTENT_KINDS
from .site_structure_service import SiteStructureService
from .analytics_service import AnalyticsService
from .knowledge_base import KnowledgeBaseService
from .project_service import ProjectService
from .run_service import RunService
from .report_service import ReportService
from .chat_service import ChatService
from .funnel_service import FunnelService

__all__ = [
    'PageService',
    'SectionService',
    'ContentItemService',
    'CONTENT_KINDS',
    'SiteStructureService',
    'AnalyticsService',
    'KnowledgeBaseService',
    'ProjectService',
    'RunService',
    'ReportService',
    'ChatService',
    'FunnelService',
]
