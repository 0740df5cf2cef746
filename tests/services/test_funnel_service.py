"""
Tests for FunnelService - template parsing and installation as pages.
"""

import pytest

from funnelcms.core.exceptions import ConflictError, NotFoundError
from funnelcms.services.funnel_service import FunnelService, parse_template

TEMPLATE = """
slug: roofing
display_name: Roofing Contractors
sections:
  - type: hero
    admin_title: Roofing Hero
    title: More Roofing Jobs
    content:
      cta_button_text: Book a Call
  - type: pricing
    title: Pricing
"""


@pytest.fixture
def template_dir(tmp_path):
    (tmp_path / "roofing.yml").write_text(TEMPLATE)
    return tmp_path


@pytest.fixture
def service(db, template_dir):
    return FunnelService(db, template_dir=str(template_dir))


class TestParseTemplate:
    def test_route_defaults_to_slug(self):
        template = parse_template({"slug": "roofing", "display_name": "Roofing"})
        assert template.route == "/roofing"
        assert template.sections == []

    def test_requires_slug_and_name(self):
        with pytest.raises(ValueError, match="display_name"):
            parse_template({"slug": "roofing"})

    def test_section_needs_type(self):
        with pytest.raises(ValueError, match="section 1"):
            parse_template({"slug": "r", "display_name": "R", "sections": [{"type": "hero"}, {"title": "x"}]})

    def test_rejects_non_mapping(self):
        with pytest.raises(ValueError):
            parse_template(["slug"])


class TestTemplates:
    def test_list_skips_invalid_files(self, service, template_dir):
        (template_dir / "broken.yml").write_text("slug: [unclosed")
        (template_dir / "incomplete.yml").write_text("slug: nameless\n")

        templates = service.list_templates()

        assert [t.slug for t in templates] == ["roofing"]
        assert [s.type for s in templates[0].sections] == ["hero", "pricing"]

    def test_load_missing(self, service):
        with pytest.raises(NotFoundError):
            service.load_template("plumbing")

    @pytest.mark.parametrize("slug", ["../roofing", "../../etc/passwd", "/tmp/roofing", "Roofing", ""])
    def test_load_rejects_path_like_slugs(self, service, slug):
        with pytest.raises(ValueError, match="Invalid funnel template slug"):
            service.load_template(slug)

    def test_install_rejects_path_like_slug(self, service, db):
        with pytest.raises(ValueError):
            service.install_template("../roofing")
        assert db.rows("pages") == []

    def test_bundled_templates_parse(self, db):
        slugs = {t.slug for t in FunnelService(db).list_templates()}
        assert {"outbound-system", "commercial-cleaning"} <= slugs


class TestInstallTemplate:
    def test_creates_funnel_page_with_draft_sections(self, service, db):
        result = service.install_template("roofing")

        page = result["page"]
        assert page.slug == "roofing"
        assert page.type == "funnel"
        assert page.title == "Roofing Contractors"

        placements = sorted(db.rows("page_sections"), key=lambda r: r["position"])
        assert [p["section_id"] for p in placements] == result["section_ids"]
        assert all(p["status"] == "draft" for p in placements)

        hero = next(s for s in db.rows("sections") if s["id"] == result["section_ids"][0])
        assert hero["admin_title"] == "Roofing Hero"
        assert hero["content"] == {"cta_button_text": "Book a Call"}

    def test_custom_page_slug(self, service):
        assert service.install_template("roofing", page_slug="roofing-v2")["page"].slug == "roofing-v2"

    def test_taken_slug(self, service, db):
        db.seed("pages", {"slug": "roofing", "title": "Existing"})
        with pytest.raises(ConflictError):
            service.install_template("roofing")
        assert db.rows("sections") == []

    def test_failed_attach_removes_page_and_sections(self, service, db):
        db.fail("page_sections", "insert")

        with pytest.raises(RuntimeError, match="insert on page_sections failed"):
            service.install_template("roofing")

        assert db.rows("pages") == []
        assert db.rows("sections") == []

    def test_failed_section_create_removes_earlier_sections(self, service, db, monkeypatch):
        created = []
        original = service.sections.create_section

        def create_section(section_type, **fields):
            if created:
                raise ValueError("Failed to create section record")
            section = original(section_type, **fields)
            created.append(section.id)
            return section

        monkeypatch.setattr(service.sections, "create_section", create_section)

        with pytest.raises(ValueError, match="Failed to create section record"):
            service.install_template("roofing")

        assert len(created) == 1
        assert db.rows("pages") == []
        assert db.rows("sections") == []
