"""
Tests for PageService - page CRUD, section placement and public composition.
"""

import pytest

from funnelcms.core.cache import cache
from funnelcms.core.exceptions import ConflictError, NotFoundError
from funnelcms.core.models import PublishStatus
from funnelcms.services.page_service import PageService


@pytest.fixture
def service(db):
    return PageService(db)


def _page_with_sections(db, statuses):
    page = db.seed("pages", {"slug": "home", "title": "Home", "type": "home"})[0]
    placements = []
    for position, status in enumerate(statuses):
        section = db.seed("sections", {"type": "hero", "title": f"Section {position}"})[0]
        placements.append(db.seed("page_sections", {
            "page_id": page["id"],
            "section_id": section["id"],
            "position": position,
            "status": status,
        })[0])
    return page, placements


# ============================================================================
# Pages
# ============================================================================

class TestCreatePage:
    def test_creates_page(self, service, db):
        page = service.create_page("pricing", "Pricing", description="Plans")

        assert page.slug == "pricing"
        assert page.type == "standard"
        assert db.rows("pages")[0]["description"] == "Plans"

    def test_duplicate_slug_conflicts(self, service, db):
        db.seed("pages", {"slug": "pricing", "title": "Pricing"})
        with pytest.raises(ConflictError):
            service.create_page("pricing", "Pricing again")

    def test_requires_slug_and_title(self, service):
        with pytest.raises(ValueError):
            service.create_page("", "Title")

    def test_invalidates_cached_slug(self, service):
        cache.set("page:pricing", "stale", tags=["page-pricing"])
        service.create_page("pricing", "Pricing")
        assert cache.get("page:pricing") is None


class TestUpdatePage:
    def test_only_provided_fields_change(self, service, db):
        row = db.seed("pages", {"slug": "about", "title": "About", "description": "Old"})[0]

        updated = service.update_page(row["id"], title="About Us", description=None)

        assert updated.title == "About Us"
        assert updated.description == "Old"

    def test_slug_change_invalidates_both_slugs(self, service, db):
        row = db.seed("pages", {"slug": "about", "title": "About"})[0]
        cache.set("old", 1, tags=["page-about"])
        cache.set("new", 1, tags=["page-about-us"])

        service.update_page(row["id"], slug="about-us")

        assert cache.get("old") is None
        assert cache.get("new") is None

    def test_slug_clash_conflicts(self, service, db):
        row = db.seed("pages", {"slug": "about", "title": "About"})[0]
        db.seed("pages", {"slug": "team", "title": "Team"})
        with pytest.raises(ConflictError):
            service.update_page(row["id"], slug="team")

    def test_missing_page(self, service):
        assert service.update_page("nope", title="X") is None


class TestDeletePage:
    def test_deletes(self, service, db):
        row = db.seed("pages", {"slug": "about", "title": "About"})[0]
        assert service.delete_page(row["id"]) is True
        assert db.rows("pages") == []

    def test_missing(self, service):
        assert service.delete_page("nope") is False


def test_get_home_page(service, db):
    db.seed("pages", {"slug": "about", "title": "About", "type": "standard"})
    db.seed("pages", {"slug": "home", "title": "Home", "type": "home"})
    assert service.get_home_page().slug == "home"


# ============================================================================
# Placement
# ============================================================================

class TestAttachSection:
    def test_appends_after_last_position(self, service, db):
        page, _ = _page_with_sections(db, ["published", "draft"])
        section = db.seed("sections", {"type": "faq"})[0]

        placed = service.attach_section(page["id"], section["id"])

        assert placed.position == 2
        assert placed.status == PublishStatus.DRAFT

    def test_first_section_gets_position_zero(self, service, db):
        page = db.seed("pages", {"slug": "new", "title": "New"})[0]
        section = db.seed("sections", {"type": "hero"})[0]
        assert service.attach_section(page["id"], section["id"]).position == 0

    def test_already_attached(self, service, db):
        page, placements = _page_with_sections(db, ["published"])
        with pytest.raises(ConflictError):
            service.attach_section(page["id"], placements[0]["section_id"])


class TestSetSectionStatus:
    def test_updates_status(self, service, db):
        _, placements = _page_with_sections(db, ["draft"])
        updated = service.set_section_status(placements[0]["id"], "published")
        assert updated.status == PublishStatus.PUBLISHED
        assert db.rows("page_sections")[0]["status"] == "published"

    def test_invalid_status(self, service, db):
        _, placements = _page_with_sections(db, ["draft"])
        with pytest.raises(ValueError):
            service.set_section_status(placements[0]["id"], "archived")

    def test_missing_placement(self, service):
        with pytest.raises(NotFoundError):
            service.set_section_status("nope", "published")


class TestReorderSections:
    def test_rewrites_positions(self, service, db):
        page, placements = _page_with_sections(db, ["published", "published", "draft"])
        new_order = [placements[2]["id"], placements[0]["id"], placements[1]["id"]]

        result = service.reorder_sections(page["id"], new_order)

        assert [p.id for p in result] == new_order
        positions = {r["id"]: r["position"] for r in db.rows("page_sections")}
        assert [positions[i] for i in new_order] == [0, 1, 2]

    def test_rejects_partial_list(self, service, db):
        page, placements = _page_with_sections(db, ["published", "published"])
        with pytest.raises(ValueError):
            service.reorder_sections(page["id"], [placements[0]["id"]])

    def test_rejects_duplicates(self, service, db):
        page, placements = _page_with_sections(db, ["published", "published"])
        with pytest.raises(ValueError):
            service.reorder_sections(page["id"], [placements[0]["id"], placements[0]["id"]])


def test_detach_section(service, db):
    _, placements = _page_with_sections(db, ["published"])
    assert service.detach_section(placements[0]["id"]) is True
    assert service.detach_section(placements[0]["id"]) is False


# ============================================================================
# Composition
# ============================================================================

class TestPageComposition:
    def test_production_shows_published_only(self, service, db):
        _page_with_sections(db, ["published", "draft", "deactivated"])

        composition = service.get_page_composition("home")

        assert [s.title for s in composition.sections] == ["Section 0"]

    def test_development_shows_drafts(self, service, db, development):
        _page_with_sections(db, ["published", "draft", "deactivated"])

        composition = service.get_page_composition("home")

        assert [s.title for s in composition.sections] == ["Section 0", "Section 1"]

    def test_sections_follow_position(self, service, db):
        page, placements = _page_with_sections(db, ["published", "published"])
        service.reorder_sections(page["id"], [placements[1]["id"], placements[0]["id"]])

        composition = service.get_page_composition("home")

        assert [s.title for s in composition.sections] == ["Section 1", "Section 0"]

    def test_unknown_slug(self, service):
        assert service.get_page_composition("missing") is None

    def test_attaches_visible_media_and_ctas(self, service, db):
        _, placements = _page_with_sections(db, ["published"])
        section_id = placements[0]["section_id"]
        video = db.seed("media", {"title": "Demo", "url": "https://cdn/x.mp4", "type": "video"})[0]
        hidden = db.seed("media", {"title": "Old", "url": "https://cdn/y.mp4", "type": "video"})[0]
        db.seed(
            "section_media",
            {"section_id": section_id, "media_id": video["id"], "role": "main", "sort_order": 0, "status": "published"},
            {"section_id": section_id, "media_id": hidden["id"], "role": "main", "sort_order": 1, "status": "draft"},
        )
        live = db.seed("cta_buttons", {"label": "Book a call", "status": "published"})[0]
        draft = db.seed("cta_buttons", {"label": "Secret", "status": "draft"})[0]
        db.seed(
            "section_cta_buttons",
            {"section_id": section_id, "cta_button_id": live["id"], "position": 0},
            {"section_id": section_id, "cta_button_id": draft["id"], "position": 1},
        )

        section = service.get_page_composition("home").sections[0]

        assert [m["title"] for m in section.media] == ["Demo"]
        assert section.media[0]["section_media"]["role"] == "main"
        assert [c["label"] for c in section.cta_buttons] == ["Book a call"]

    def test_composition_is_cached_until_revalidated(self, service, db):
        _, placements = _page_with_sections(db, ["published", "draft"])
        assert len(service.get_page_composition("home").sections) == 1

        db.rows("page_sections")[1]["status"] = "published"
        assert len(service.get_page_composition("home").sections) == 1

        service.set_section_status(placements[0]["id"], "published")
        assert len(service.get_page_composition("home").sections) == 2
