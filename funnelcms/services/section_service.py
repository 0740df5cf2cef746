"""
SectionService - Reusable sections and their duplication.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import logfire
from supabase import Client

from ..core.cache import revalidate_tag
from ..core.database import get_supabase_client, first_row
from ..core.exceptions import NotFoundError
from ..core.models import PageRef, PublishStatus, Section, SectionWithPages
from .content_item_service import CONTENT_KINDS, next_version_label
from .page_service import page_sections_tag

logger = logging.getLogger(__name__)

SECTION_FIELDS = (
    "type", "title", "admin_title", "header_title", "subtitle",
    "eyebrow", "content", "media_url", "icon",
)

# Copy order when duplicating; media first, matching how sections render
DUPLICATE_JUNCTION_ORDER = (
    "media", "cta_buttons", "features", "timeline", "testimonials",
    "faq_items", "social_platforms", "softwares", "results",
)


class SectionService:
    """Service for sections."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    def get_section(self, section_id: str) -> Optional[Section]:
        row = first_row(
            self.supabase.table("sections").select("*").eq("id", section_id).limit(1).execute()
        )
        return Section(**row) if row else None

    def list_sections(self) -> List[SectionWithPages]:
        """
        All sections with the pages they appear on.

        Sections on the home page come first in home-page order; the rest
        follow sorted by admin title, title, then type (case-insensitive).
        """
        sections = self.supabase.table("sections").select("*").execute().data or []
        links = self.supabase.table("page_sections").select("*").execute().data or []
        pages = self.supabase.table("pages").select("id, title, type").execute().data or []
        pages_by_id = {p["id"]: p for p in pages}

        refs: Dict[str, List[PageRef]] = {}
        home_positions: Dict[str, int] = {}
        for link in links:
            page = pages_by_id.get(link["page_id"])
            if page is None:
                continue
            refs.setdefault(link["section_id"], []).append(PageRef(
                id=page["id"],
                title=page["title"],
                page_section_id=link["id"],
                position=link.get("position") or 0,
                status=link.get("status") or PublishStatus.DRAFT.value,
            ))
            if page.get("type") == "home":
                position = link.get("position") or 0
                current = home_positions.get(link["section_id"])
                if current is None or position < current:
                    home_positions[link["section_id"]] = position

        with_pages = [
            SectionWithPages(**row, pages=refs.get(row["id"], []))
            for row in sections
        ]

        home = sorted(
            (s for s in with_pages if s.id in home_positions),
            key=lambda s: home_positions[s.id]
        )
        rest = sorted(
            (s for s in with_pages if s.id not in home_positions),
            key=lambda s: s.sort_label
        )
        return home + rest

    def create_section(self, section_type: str, **fields: Any) -> Section:
        """
        Create a section.

        Raises:
            ValueError: If section_type is empty
        """
        if not section_type:
            raise ValueError("Section type is required")

        record = {k: v for k, v in fields.items() if k in SECTION_FIELDS and v is not None}
        record["type"] = section_type

        row = first_row(self.supabase.table("sections").insert(record).execute())
        if not row:
            raise ValueError("Failed to create section record")

        revalidate_tag("sections")
        logger.info(f"Created section {row['id']} ({section_type})")
        return Section(**row)

    def _page_ids_for_section(self, section_id: str) -> List[str]:
        rows = self.supabase.table("page_sections").select("page_id").eq(
            "section_id", section_id
        ).execute().data or []
        return sorted({r["page_id"] for r in rows})

    def _invalidate(self, page_ids: List[str]):
        revalidate_tag("sections")
        for page_id in page_ids:
            revalidate_tag(page_sections_tag(page_id))

    def update_section(self, section_id: str, **fields: Any) -> Optional[Section]:
        """Update provided fields; returns None if the section does not exist."""
        update_data = {k: v for k, v in fields.items() if k in SECTION_FIELDS}
        if not update_data:
            return self.get_section(section_id)

        row = first_row(
            self.supabase.table("sections").update(update_data).eq("id", section_id).execute()
        )
        if not row:
            return None

        self._invalidate(self._page_ids_for_section(section_id))
        return Section(**row)

    def delete_section(self, section_id: str) -> bool:
        # Read page ids first; the junction rows cascade with the section
        page_ids = self._page_ids_for_section(section_id)

        result = self.supabase.table("sections").delete().eq("id", section_id).execute()
        if not result.data:
            return False

        self._invalidate(page_ids)
        logger.info(f"Deleted section {section_id} (was on {len(page_ids)} pages)")
        return True

    def get_first_page_id(self, section_id: str) -> Optional[str]:
        """Id of the first page the section is attached to, if any."""
        row = first_row(
            self.supabase.table("page_sections").select("page_id").eq(
                "section_id", section_id
            ).limit(1).execute()
        )
        return row["page_id"] if row else None

    def _admin_title_taken(self, admin_title: str) -> bool:
        return first_row(
            self.supabase.table("sections").select("id").eq(
                "admin_title", admin_title
            ).limit(1).execute()
        ) is not None

    def duplicate_section(self, section_id: str) -> Tuple[Section, List[str]]:
        """
        Copy a section and all of its content links.

        The website-facing title is kept; a non-empty admin_title gets the
        next free " V<n>" suffix. Links point at the same content items and
        keep their order and status.

        Returns:
            Tuple of (new section, warnings). Each warning names a junction
            that could not be copied.

        Raises:
            NotFoundError: If the section does not exist
        """
        original = self.get_section(section_id)
        if original is None:
            raise NotFoundError(f"Section {section_id} not found")

        with logfire.span("duplicate_section", section_id=section_id):
            admin_title = None
            if original.admin_title:
                admin_title = next_version_label(original.admin_title, self._admin_title_taken)

            record = original.model_dump(
                include=set(SECTION_FIELDS) - {"admin_title"}, exclude_none=True
            )
            record["admin_title"] = admin_title

            row = first_row(self.supabase.table("sections").insert(record).execute())
            if not row:
                raise ValueError("Failed to create duplicate section")
            duplicate = Section(**row)

            warnings = []
            for kind_name in DUPLICATE_JUNCTION_ORDER:
                kind = CONTENT_KINDS[kind_name]
                try:
                    copied = self._copy_links(kind, section_id, duplicate.id)
                    logger.debug(f"Copied {copied} {kind.junction} links to {duplicate.id}")
                except Exception as e:
                    logger.error(f"Failed to copy {kind.junction} for section {section_id}: {e}")
                    warnings.append(f"{kind.name}: {e}")

        revalidate_tag("sections")
        logger.info(
            f"Duplicated section {section_id} -> {duplicate.id}"
            + (f" with {len(warnings)} warnings" if warnings else "")
        )
        return duplicate, warnings

    def _copy_links(self, kind, source_id: str, target_id: str) -> int:
        links = self.supabase.table(kind.junction).select("*").eq(
            "section_id", source_id
        ).order(kind.order_column).execute().data or []
        if not links:
            return 0

        inserts = []
        for link in links:
            record = {
                "section_id": target_id,
                kind.foreign_key: link[kind.foreign_key],
                kind.order_column: link.get(kind.order_column),
                "status": link.get("status") or PublishStatus.DRAFT.value,
            }
            for name in kind.link_fields:
                record[name] = link.get(name)
            inserts.append(record)

        self.supabase.table(kind.junction).insert(inserts).execute()
        return len(inserts)
