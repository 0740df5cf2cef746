"""
SiteStructureService - Maps page types (home, pricing, ...) to pages.

Each page type has a production page and, optionally, a development page
that replaces it while APP_ENV=development.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from supabase import Client

from ..core.cache import cache, revalidate_tag
from ..core.config import Config
from ..core.database import get_supabase_client, first_row
from ..core.models import SiteStructureEntry

logger = logging.getLogger(__name__)


class SiteStructureService:
    """Service for the site_structure table."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    def list_entries(self) -> List[SiteStructureEntry]:
        result = self.supabase.table("site_structure").select("*").order("page_type").execute()
        return [SiteStructureEntry(**row) for row in (result.data or [])]

    def get_entry(self, page_type: str) -> Optional[SiteStructureEntry]:
        row = first_row(
            self.supabase.table("site_structure").select("*").eq(
                "page_type", page_type
            ).limit(1).execute()
        )
        return SiteStructureEntry(**row) if row else None

    def get_page_roles(self, page_id: str) -> List[Dict[str, str]]:
        """
        Page types a page is assigned to.

        Returns:
            List of {"page_type", "environment"} where environment is
            "production", "development" or "both"
        """
        columns = "page_type, production_page_id, development_page_id"
        production = self.supabase.table("site_structure").select(columns).eq(
            "production_page_id", page_id
        ).execute().data or []
        development = self.supabase.table("site_structure").select(columns).eq(
            "development_page_id", page_id
        ).execute().data or []

        entries: Dict[str, Dict] = {}
        for entry in production + development:
            entries.setdefault(entry["page_type"], entry)

        roles = []
        for page_type, entry in entries.items():
            is_production = entry.get("production_page_id") == page_id
            is_development = entry.get("development_page_id") == page_id
            if is_production and is_development:
                environment = "both"
            elif is_production:
                environment = "production"
            else:
                environment = "development"
            roles.append({"page_type": page_type, "environment": environment})
        return roles

    def assign(
        self,
        page_type: str,
        slug: str,
        production_page_id: Optional[str] = None,
        development_page_id: Optional[str] = None,
    ) -> SiteStructureEntry:
        """
        Create or update the entry for page_type.

        Raises:
            ValueError: If page_type or slug is empty
        """
        if not page_type or not slug:
            raise ValueError("page_type and slug are required")

        record = {
            "slug": slug,
            "production_page_id": production_page_id or None,
            "development_page_id": development_page_id or None,
        }

        if self.get_entry(page_type):
            record["updated_at"] = datetime.now(timezone.utc).isoformat()
            result = self.supabase.table("site_structure").update(record).eq(
                "page_type", page_type
            ).execute()
        else:
            result = self.supabase.table("site_structure").insert(
                {"page_type": page_type, **record}
            ).execute()

        row = first_row(result) or {"page_type": page_type, **record}

        revalidate_tag("site-structure")
        revalidate_tag(f"page-slug-{slug}")
        logger.info(f"Assigned site structure {page_type} -> {slug}")
        return SiteStructureEntry(**row)

    def resolve_page_id(self, page_type: str) -> Optional[str]:
        """
        Page that currently serves page_type.

        In development the development page wins when one is set.
        """
        entry = cache.get_or_set(
            f"site-structure:{page_type}",
            lambda: self.get_entry(page_type),
            tags=["site-structure"],
        )
        if entry is None:
            return None
        if Config.is_development() and entry.development_page_id:
            return entry.development_page_id
        return entry.production_page_id
