"""
PageService - Pages and their ordered section placements.

A page is composed of sections through the page_sections junction table.
Each junction row carries a position and a publish status; the public
composition only shows rows whose status is visible in the current
environment.
"""

import logging
from typing import Any, Dict, List, Optional

import logfire
from supabase import Client

from ..core.cache import cache, revalidate_tag
from ..core.config import Config
from ..core.database import get_supabase_client, first_row
from ..core.exceptions import ConflictError, NotFoundError
from ..core.models import (
    Page,
    PageComposition,
    PageSection,
    PageType,
    PlacedSection,
    PublishStatus,
    should_include_by_status,
)

logger = logging.getLogger(__name__)

PAGE_FIELDS = ("slug", "title", "description", "type")


def page_tag(slug: str) -> str:
    return f"page-{slug}"


def page_sections_tag(page_id: str) -> str:
    return f"page-sections-{page_id}"


class PageService:
    """Service for pages and page/section placement."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    # ─── Pages ───────────────────────────────────────────────────────

    def list_pages(self) -> List[Page]:
        result = self.supabase.table("pages").select("*").order("title").execute()
        return [Page(**row) for row in (result.data or [])]

    def get_page(self, page_id: str) -> Optional[Page]:
        row = first_row(
            self.supabase.table("pages").select("*").eq("id", page_id).limit(1).execute()
        )
        return Page(**row) if row else None

    def get_page_by_slug(self, slug: str) -> Optional[Page]:
        row = first_row(
            self.supabase.table("pages").select("*").eq("slug", slug).limit(1).execute()
        )
        return Page(**row) if row else None

    def get_home_page(self) -> Optional[Page]:
        """Return the page of type 'home', if one exists."""
        row = first_row(
            self.supabase.table("pages").select("*").eq(
                "type", PageType.HOME.value
            ).limit(1).execute()
        )
        return Page(**row) if row else None

    def create_page(
        self,
        slug: str,
        title: str,
        description: Optional[str] = None,
        page_type: str = PageType.STANDARD.value,
    ) -> Page:
        """
        Create a page.

        Raises:
            ValueError: If slug or title is empty
            ConflictError: If the slug is already taken
        """
        if not slug or not title:
            raise ValueError("slug and title are required")

        if self.get_page_by_slug(slug):
            raise ConflictError(f"A page with slug '{slug}' already exists")

        result = self.supabase.table("pages").insert({
            "slug": slug,
            "title": title,
            "description": description,
            "type": page_type,
        }).execute()

        row = first_row(result)
        if not row:
            raise ValueError("Failed to create page record")

        revalidate_tag("pages")
        revalidate_tag(page_tag(slug))
        logger.info(f"Created page {row['id']} ({slug})")
        return Page(**row)

    def update_page(self, page_id: str, **fields: Any) -> Optional[Page]:
        """
        Update the provided page fields only.

        Invalidates the page list, the new slug and, when the slug changed,
        the old slug.

        Returns:
            Updated Page or None if not found
        """
        update_data = {k: v for k, v in fields.items() if k in PAGE_FIELDS and v is not None}

        existing = self.get_page(page_id)
        if existing is None:
            return None
        if not update_data:
            return existing

        new_slug = update_data.get("slug")
        if new_slug and new_slug != existing.slug:
            clash = self.get_page_by_slug(new_slug)
            if clash and clash.id != page_id:
                raise ConflictError(f"A page with slug '{new_slug}' already exists")

        row = first_row(
            self.supabase.table("pages").update(update_data).eq("id", page_id).execute()
        )
        if not row:
            return None

        updated = Page(**row)
        revalidate_tag("pages")
        revalidate_tag(page_tag(updated.slug))
        if existing.slug != updated.slug:
            revalidate_tag(page_tag(existing.slug))

        return updated

    def delete_page(self, page_id: str) -> bool:
        """Delete a page. Junction rows go with it (ON DELETE CASCADE)."""
        existing = self.get_page(page_id)
        if existing is None:
            return False

        self.supabase.table("pages").delete().eq("id", page_id).execute()

        revalidate_tag("pages")
        revalidate_tag(page_tag(existing.slug))
        revalidate_tag(page_sections_tag(page_id))
        logger.info(f"Deleted page {page_id} ({existing.slug})")
        return True

    # ─── Page ↔ section placement ────────────────────────────────────

    def _page_section_rows(self, page_id: str) -> List[Dict[str, Any]]:
        result = self.supabase.table("page_sections").select("*").eq(
            "page_id", page_id
        ).order("position").execute()
        return result.data or []

    def _get_page_section(self, page_section_id: str) -> Optional[Dict[str, Any]]:
        return first_row(
            self.supabase.table("page_sections").select("*").eq(
                "id", page_section_id
            ).limit(1).execute()
        )

    def _invalidate_placement(self, page_id: str):
        revalidate_tag("sections")
        revalidate_tag(page_sections_tag(page_id))

    def attach_section(
        self,
        page_id: str,
        section_id: str,
        position: Optional[int] = None,
        status: PublishStatus = PublishStatus.DRAFT,
    ) -> PageSection:
        """
        Place a section on a page.

        Args:
            page_id: Target page
            section_id: Section to place
            position: Explicit position; defaults to after the last section
            status: Initial publish status (draft unless given)

        Raises:
            ConflictError: If the section is already on the page
        """
        rows = self._page_section_rows(page_id)
        if any(r["section_id"] == section_id for r in rows):
            raise ConflictError("Section is already attached to this page")

        if position is None:
            position = max((r.get("position") or 0 for r in rows), default=-1) + 1

        row = first_row(
            self.supabase.table("page_sections").insert({
                "page_id": page_id,
                "section_id": section_id,
                "position": position,
                "status": PublishStatus(status).value,
            }).execute()
        )
        if not row:
            raise ValueError("Failed to attach section")

        self._invalidate_placement(page_id)
        return PageSection(**row)

    def detach_section(self, page_section_id: str) -> bool:
        row = self._get_page_section(page_section_id)
        if row is None:
            return False

        self.supabase.table("page_sections").delete().eq("id", page_section_id).execute()
        self._invalidate_placement(row["page_id"])
        return True

    def set_section_status(self, page_section_id: str, status: PublishStatus) -> PageSection:
        """Change the publish status of one placement."""
        status = PublishStatus(status)
        existing = self._get_page_section(page_section_id)
        if existing is None:
            raise NotFoundError(f"Page section {page_section_id} not found")

        row = first_row(
            self.supabase.table("page_sections").update(
                {"status": status.value}
            ).eq("id", page_section_id).execute()
        )
        self._invalidate_placement(existing["page_id"])
        return PageSection(**(row or {**existing, "status": status.value}))

    def reorder_sections(self, page_id: str, ordered_ids: List[str]) -> List[PageSection]:
        """
        Rewrite positions 0..n-1 in the given order.

        Args:
            page_id: Page whose sections are reordered
            ordered_ids: Every page_section id of the page, in the new order

        Raises:
            ValueError: If the ids do not match the page's placements
        """
        rows = {r["id"]: r for r in self._page_section_rows(page_id)}
        if len(set(ordered_ids)) != len(ordered_ids) or set(ordered_ids) != set(rows):
            raise ValueError("ordered_ids must list every section placement of the page exactly once")

        reordered = []
        for position, page_section_id in enumerate(ordered_ids):
            if rows[page_section_id].get("position") != position:
                self.supabase.table("page_sections").update(
                    {"position": position}
                ).eq("id", page_section_id).execute()
            reordered.append(PageSection(**{**rows[page_section_id], "position": position}))

        self._invalidate_placement(page_id)
        return reordered

    # ─── Composition ─────────────────────────────────────────────────

    def get_sections_for_page(self, page_id: str) -> List[PlacedSection]:
        """All sections on a page regardless of status, ordered by position."""
        rows = self._page_section_rows(page_id)
        sections = self._sections_by_id([r["section_id"] for r in rows])

        placed = []
        for r in rows:
            section = sections.get(r["section_id"])
            if section is None:
                continue
            placed.append(PlacedSection(
                **section,
                page_section_id=r["id"],
                position=r.get("position") or 0,
                status=r.get("status") or PublishStatus.DRAFT.value,
            ))
        return placed

    def get_visible_sections(self, page_id: str) -> List[PlacedSection]:
        """
        Sections visible on the public page, with their media and CTAs.

        Cached under page-sections-<page_id>.
        """
        is_development = Config.is_development()
        return cache.get_or_set(
            f"visible-sections:{page_id}:{int(is_development)}",
            lambda: self._load_visible_sections(page_id, is_development),
            tags=[page_sections_tag(page_id), "sections"],
        )

    def _load_visible_sections(self, page_id: str, is_development: bool) -> List[PlacedSection]:
        with logfire.span("load_visible_sections", page_id=page_id):
            placed = [
                s for s in self.get_sections_for_page(page_id)
                if should_include_by_status(s.status.value, is_development)
            ]
            if not placed:
                return []

            section_ids = [s.id for s in placed]
            media = self._visible_media(section_ids, is_development)
            ctas = self._visible_cta_buttons(section_ids, is_development)

            for section in placed:
                section.media = media.get(section.id, [])
                section.cta_buttons = ctas.get(section.id, [])

            logger.debug(f"Loaded {len(placed)} visible sections for page {page_id}")
            return placed

    def _sections_by_id(self, section_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not section_ids:
            return {}
        result = self.supabase.table("sections").select("*").in_("id", section_ids).execute()
        return {row["id"]: row for row in (result.data or [])}

    def _visible_media(self, section_ids: List[str], is_development: bool) -> Dict[str, List[Dict[str, Any]]]:
        links = self.supabase.table("section_media").select("*").in_(
            "section_id", section_ids
        ).order("sort_order").execute().data or []
        links = [l for l in links if should_include_by_status(l.get("status"), is_development)]
        if not links:
            return {}

        media_rows = self.supabase.table("media").select("*").in_(
            "id", list({l["media_id"] for l in links})
        ).execute().data or []
        media_by_id = {m["id"]: m for m in media_rows}

        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for link in links:
            item = media_by_id.get(link["media_id"])
            if item is None:
                continue
            grouped.setdefault(link["section_id"], []).append({
                **item,
                "section_media": {
                    "id": link["id"],
                    "role": link.get("role"),
                    "sort_order": link.get("sort_order"),
                    "status": link.get("status") or PublishStatus.DRAFT.value,
                },
            })
        return grouped

    def _visible_cta_buttons(self, section_ids: List[str], is_development: bool) -> Dict[str, List[Dict[str, Any]]]:
        # CTA visibility comes from the button row itself, not the junction
        links = self.supabase.table("section_cta_buttons").select("*").in_(
            "section_id", section_ids
        ).order("position").execute().data or []
        if not links:
            return {}

        buttons = self.supabase.table("cta_buttons").select("*").in_(
            "id", list({l["cta_button_id"] for l in links})
        ).execute().data or []
        buttons_by_id = {
            b["id"]: b for b in buttons
            if should_include_by_status(b.get("status"), is_development)
        }

        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for link in links:
            button = buttons_by_id.get(link["cta_button_id"])
            if button is None:
                continue
            grouped.setdefault(link["section_id"], []).append({
                **button,
                "section_cta_button": {"id": link["id"], "position": link.get("position")},
            })
        return grouped

    def get_page_composition(self, slug: str) -> Optional[PageComposition]:
        """Page plus its visible sections, or None if the slug is unknown."""
        page = cache.get_or_set(
            f"page:{slug}",
            lambda: self.get_page_by_slug(slug),
            tags=["pages", page_tag(slug)],
        )
        if page is None:
            return None
        return PageComposition(page=page, sections=self.get_visible_sections(page.id))
