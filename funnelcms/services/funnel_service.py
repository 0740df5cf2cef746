"""
FunnelService - YAML funnel templates installed as pages.

A template names a funnel (slug, display name, route) and the ordered
sections that make up its page. Installing a template creates a page of
type "funnel" and attaches fresh sections to it as drafts.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import logfire
import yaml
from supabase import Client

from ..core.config import Config
from ..core.database import get_supabase_client
from ..core.exceptions import NotFoundError
from ..core.models import Page, PageType, PublishStatus
from .page_service import PageService
from .section_service import SectionService

logger = logging.getLogger(__name__)

TEMPLATE_SLUG_PATTERN = re.compile(r"[a-z0-9][a-z0-9_-]*")


@dataclass
class TemplateSection:
    type: str
    title: Optional[str] = None
    admin_title: Optional[str] = None
    content: Optional[Any] = None


@dataclass
class FunnelTemplate:
    slug: str
    display_name: str
    route: str
    sections: List[TemplateSection] = field(default_factory=list)


def parse_template(raw: Any, source: str = "template") -> FunnelTemplate:
    """
    Build a FunnelTemplate from parsed YAML.

    Raises:
        ValueError: If required keys are missing or malformed
    """
    if not isinstance(raw, dict):
        raise ValueError(f"{source}: expected a mapping at the top level")

    missing = [k for k in ("slug", "display_name") if not raw.get(k)]
    if missing:
        raise ValueError(f"{source}: missing required keys: {', '.join(missing)}")

    raw_sections = raw.get("sections") or []
    if not isinstance(raw_sections, list):
        raise ValueError(f"{source}: 'sections' must be a list")

    sections = []
    for i, section in enumerate(raw_sections):
        if not isinstance(section, dict) or not section.get("type"):
            raise ValueError(f"{source}: section {i} needs a 'type'")
        sections.append(TemplateSection(
            type=section["type"],
            title=section.get("title"),
            admin_title=section.get("admin_title"),
            content=section.get("content"),
        ))

    return FunnelTemplate(
        slug=raw["slug"],
        display_name=raw["display_name"],
        route=raw.get("route") or f"/{raw['slug']}",
        sections=sections,
    )


class FunnelService:
    """Service for funnel templates."""

    def __init__(self, supabase: Optional[Client] = None, template_dir: Optional[str] = None):
        self.supabase = supabase or get_supabase_client()
        self.template_dir = Path(template_dir or Config.FUNNEL_TEMPLATE_DIR)
        self.pages = PageService(self.supabase)
        self.sections = SectionService(self.supabase)

    def _template_paths(self) -> List[Path]:
        if not self.template_dir.is_dir():
            return []
        return sorted(self.template_dir.glob("*.yml"))

    def list_templates(self) -> List[FunnelTemplate]:
        """Every valid template in the template directory; invalid files are logged and skipped."""
        templates = []
        for path in self._template_paths():
            try:
                templates.append(self._read(path))
            except ValueError as e:
                logger.warning(f"Skipping funnel template {path.name}: {e}")
        return templates

    def load_template(self, slug: str) -> FunnelTemplate:
        """
        Load one template by slug.

        Raises:
            NotFoundError: If no template has this slug
            ValueError: If the slug is malformed or the template file is invalid
        """
        if not TEMPLATE_SLUG_PATTERN.fullmatch(slug or ""):
            raise ValueError(f"Invalid funnel template slug: {slug!r}")
        path = self.template_dir / f"{slug}.yml"
        if not path.is_file():
            raise NotFoundError(f"Funnel template '{slug}' not found")
        return self._read(path)

    def _read(self, path: Path) -> FunnelTemplate:
        try:
            with open(path, 'r') as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"{path.name}: invalid YAML: {e}") from e
        return parse_template(raw, source=path.name)

    def install_template(self, slug: str, page_slug: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a funnel page from a template.

        Args:
            slug: Template slug
            page_slug: Slug for the new page (defaults to the template slug)

        Returns:
            Dict with the created page and the ids of its sections in order

        Raises:
            NotFoundError: If the template does not exist
            ConflictError: If the page slug is taken

        If a section cannot be created or attached, the sections created so
        far and the page are deleted before the error is re-raised.
        """
        template = self.load_template(slug)

        with logfire.span("install_funnel_template", template=slug):
            page: Page = self.pages.create_page(
                slug=page_slug or template.slug,
                title=template.display_name,
                page_type=PageType.FUNNEL.value,
            )

            section_ids = []
            try:
                for position, blueprint in enumerate(template.sections):
                    section = self.sections.create_section(
                        blueprint.type,
                        title=blueprint.title,
                        admin_title=blueprint.admin_title,
                        content=blueprint.content,
                    )
                    section_ids.append(section.id)
                    self.pages.attach_section(
                        page.id, section.id, position=position, status=PublishStatus.DRAFT
                    )
            except Exception as e:
                logger.error(f"Installing funnel '{slug}' failed, removing page {page.id}: {e}")
                self._remove_partial_install(page.id, section_ids)
                raise

        logger.info(f"Installed funnel '{slug}' as page {page.id} with {len(section_ids)} sections")
        return {"page": page, "section_ids": section_ids}

    def _remove_partial_install(self, page_id: str, section_ids: List[str]) -> None:
        # Cleanup failures are logged; the caller re-raises the install error
        for section_id in section_ids:
            try:
                self.sections.delete_section(section_id)
            except Exception as e:
                logger.error(f"Could not delete section {section_id}: {e}")
        try:
            self.pages.delete_page(page_id)
        except Exception as e:
            logger.error(f"Could not delete page {page_id}: {e}")
