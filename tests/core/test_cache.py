"""
Tests for TaggedCache - tag indexing, expiry and revalidation.
"""

import pytest

from funnelcms.core.cache import TaggedCache


@pytest.fixture
def tagged():
    return TaggedCache(ttl_seconds=60)


class TestGetOrSet:
    def test_loader_runs_once(self, tagged):
        calls = []

        def loader():
            calls.append(1)
            return {"slug": "home"}

        assert tagged.get_or_set("page:home", loader, tags=["pages"]) == {"slug": "home"}
        assert tagged.get_or_set("page:home", loader, tags=["pages"]) == {"slug": "home"}
        assert len(calls) == 1

    def test_loader_error_is_not_cached(self, tagged):
        def failing():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            tagged.get_or_set("page:home", failing, tags=["pages"])
        assert tagged.get("page:home") is None

    def test_expired_entry_is_reloaded(self, tagged):
        tagged.set("k", "old", tags=["t"], ttl=0)
        assert tagged.get("k") is None
        assert tagged.get_or_set("k", lambda: "new", tags=["t"]) == "new"


class TestRevalidateTag:
    def test_evicts_every_entry_with_tag(self, tagged):
        tagged.set("a", 1, tags=["pages", "page-home"])
        tagged.set("b", 2, tags=["pages"])
        tagged.set("c", 3, tags=["sections"])

        assert tagged.revalidate_tag("pages") == 2
        assert tagged.get("a") is None
        assert tagged.get("b") is None
        assert tagged.get("c") == 3

    def test_evicted_entry_leaves_other_tags(self, tagged):
        tagged.set("a", 1, tags=["pages", "page-home"])
        tagged.revalidate_tag("pages")
        assert tagged.revalidate_tag("page-home") == 0

    def test_unknown_tag(self, tagged):
        assert tagged.revalidate_tag("nothing") == 0

    def test_reset_replaces_tags(self, tagged):
        tagged.set("a", 1, tags=["old"])
        tagged.set("a", 2, tags=["new"])
        assert tagged.revalidate_tag("old") == 0
        assert tagged.revalidate_tag("new") == 1
