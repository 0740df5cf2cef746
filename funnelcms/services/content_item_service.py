"""
ContentItemService - Reusable section content (CTAs, FAQs, testimonials, ...).

Every content kind follows the same shape: an item table holding the
content itself, and a section junction table holding placement metadata
(order column, publish status, optional extra columns). The CONTENT_KINDS
registry describes each kind once; the service methods are generic over it.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from ..core.cache import revalidate_tag
from ..core.database import get_supabase_client, first_row
from ..core.exceptions import ConflictError, NotFoundError
from ..core.models import PublishStatus

logger = logging.getLogger(__name__)

VERSION_SUFFIX = re.compile(r"\s+V\d+$")

# Duplicate naming rules
NAMING_VERSION = "version"  # "Title" -> "Title V2", "Title V3", ...
NAMING_COPY = "copy"        # "Title" -> "Title (Copy)", "Title (Copy 2)", ...
NAMING_KEEP = "keep"        # unchanged


@dataclass(frozen=True)
class ContentKind:
    """Describes one kind of section content."""
    name: str
    table: str
    junction: str
    foreign_key: str
    cache_tag: str
    label_field: Optional[str] = None
    order_column: str = "position"
    naming: str = NAMING_KEEP
    # Link without explicit order goes to the end instead of position 0
    append_by_default: bool = False
    # Extra junction columns copied on duplicate / editable on update
    link_fields: Tuple[str, ...] = field(default_factory=tuple)
    link_defaults: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)
    # Whether the item table itself has an ordering column
    item_ordered: bool = True
    # Item column numbered after the current maximum on duplicate
    sequence_field: Optional[str] = None


CONTENT_KINDS: Dict[str, ContentKind] = {
    kind.name: kind for kind in (
        ContentKind(
            name="cta_buttons", table="cta_buttons", junction="section_cta_buttons",
            foreign_key="cta_button_id", cache_tag="cta-buttons",
            label_field="label", naming=NAMING_VERSION, item_ordered=False,
        ),
        ContentKind(
            name="faq_items", table="faq_items", junction="section_faq_items",
            foreign_key="faq_item_id", cache_tag="faq-items",
            label_field="question", naming=NAMING_VERSION,
        ),
        ContentKind(
            name="testimonials", table="testimonials", junction="section_testimonials",
            foreign_key="testimonial_id", cache_tag="testimonials",
            label_field="author_name",
        ),
        ContentKind(
            name="timeline", table="timeline", junction="section_timeline",
            foreign_key="timeline_id", cache_tag="timeline",
            label_field="title", naming=NAMING_COPY, sequence_field="step",
        ),
        ContentKind(
            name="features", table="offer_features", junction="section_features",
            foreign_key="feature_id", cache_tag="features",
            label_field="title", naming=NAMING_VERSION,
        ),
        ContentKind(
            name="results", table="results", junction="section_results",
            foreign_key="result_id", cache_tag="results",
            label_field="title",
        ),
        ContentKind(
            name="social_platforms", table="social_platforms", junction="section_socials",
            foreign_key="platform_id", cache_tag="social-platforms",
            label_field="name", order_column="order", append_by_default=True,
            item_ordered=False,
        ),
        ContentKind(
            name="softwares", table="softwares", junction="section_softwares",
            foreign_key="software_id", cache_tag="softwares",
            label_field="name", order_column="order", append_by_default=True,
            link_fields=("icon_override",), item_ordered=False,
        ),
        ContentKind(
            name="media", table="media", junction="section_media",
            foreign_key="media_id", cache_tag="media",
            label_field="title", order_column="sort_order", append_by_default=True,
            link_fields=("role",), link_defaults=(("role", "main"),), item_ordered=False,
        ),
    )
}


def get_kind(name: str) -> ContentKind:
    """Look up a content kind by name (e.g. 'faq_items')."""
    try:
        return CONTENT_KINDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown content kind '{name}'. Expected one of: {', '.join(sorted(CONTENT_KINDS))}"
        )


def next_version_label(base: str, taken) -> str:
    """
    First free "<base> V<n>" label, n starting at 2.

    An existing version suffix on base is stripped first, so duplicating
    "Hero V2" yields "Hero V3" rather than "Hero V2 V2".
    """
    root = VERSION_SUFFIX.sub("", base)
    version = 2
    while taken(f"{root} V{version}"):
        version += 1
    return f"{root} V{version}"


def next_copy_label(base: str, taken) -> str:
    """First free "<base> (Copy)" / "<base> (Copy <n>)" label."""
    candidate = f"{base} (Copy)"
    counter = 2
    while taken(candidate):
        candidate = f"{base} (Copy {counter})"
        counter += 1
    return candidate


class ContentItemService:
    """Generic CRUD and section placement for every content kind."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    def _invalidate(self, kind: ContentKind):
        revalidate_tag(kind.cache_tag)
        revalidate_tag("sections")

    # ─── Items ───────────────────────────────────────────────────────

    def list_items(self, kind_name: str) -> List[Dict[str, Any]]:
        kind = get_kind(kind_name)
        query = self.supabase.table(kind.table).select("*")
        if kind.item_ordered:
            query = query.order("position")
        elif kind.label_field:
            query = query.order(kind.label_field)
        return query.execute().data or []

    def get_item(self, kind_name: str, item_id: str) -> Optional[Dict[str, Any]]:
        kind = get_kind(kind_name)
        return first_row(
            self.supabase.table(kind.table).select("*").eq("id", item_id).limit(1).execute()
        )

    def _next_item_position(self, kind: ContentKind, column: str = "position", start: int = 0) -> int:
        row = first_row(
            self.supabase.table(kind.table).select(column).order(
                column, desc=True
            ).limit(1).execute()
        )
        if row is None or row.get(column) is None:
            return start
        return row[column] + 1

    def create_item(self, kind_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an item. Ordered kinds get position max+1 unless provided.

        Raises:
            ValueError: If the label field is missing
        """
        kind = get_kind(kind_name)
        if kind.label_field and not data.get(kind.label_field):
            raise ValueError(f"{kind.label_field} is required")

        record = dict(data)
        if kind.item_ordered and record.get("position") is None:
            record["position"] = self._next_item_position(kind)

        row = first_row(self.supabase.table(kind.table).insert(record).execute())
        if not row:
            raise ValueError(f"Failed to create {kind.name} record")

        self._invalidate(kind)
        return row

    def update_item(self, kind_name: str, item_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        kind = get_kind(kind_name)
        update_data = {k: v for k, v in data.items() if k != "id"}
        if not update_data:
            return self.get_item(kind_name, item_id)

        row = first_row(
            self.supabase.table(kind.table).update(update_data).eq("id", item_id).execute()
        )
        if row:
            self._invalidate(kind)
        return row

    def delete_item(self, kind_name: str, item_id: str) -> bool:
        kind = get_kind(kind_name)
        result = self.supabase.table(kind.table).delete().eq("id", item_id).execute()
        deleted = bool(result.data)
        if deleted:
            self._invalidate(kind)
        return deleted

    def _label_taken(self, kind: ContentKind, label: str) -> bool:
        return first_row(
            self.supabase.table(kind.table).select("id").eq(
                kind.label_field, label
            ).limit(1).execute()
        ) is not None

    def duplicate_item(
        self,
        kind_name: str,
        item_id: str,
        section_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Copy an item, rename it per the kind's naming rule, place it last.

        Args:
            kind_name: Content kind
            item_id: Item to copy
            section_id: When given, the copy is also linked to this section
                (end of the list, status draft)

        Raises:
            NotFoundError: If the item does not exist
        """
        kind = get_kind(kind_name)
        original = self.get_item(kind_name, item_id)
        if original is None:
            raise NotFoundError(f"{kind.name} item {item_id} not found")

        record = {
            k: v for k, v in original.items()
            if k not in ("id", "created_at", "updated_at", "status")
        }

        label = original.get(kind.label_field) if kind.label_field else None
        if label:
            taken = lambda candidate: self._label_taken(kind, candidate)
            if kind.naming == NAMING_VERSION:
                record[kind.label_field] = next_version_label(label, taken)
            elif kind.naming == NAMING_COPY:
                record[kind.label_field] = next_copy_label(label, taken)

        if kind.item_ordered:
            record["position"] = self._next_item_position(kind)
        if kind.sequence_field:
            record[kind.sequence_field] = self._next_item_position(kind, kind.sequence_field, start=1)

        duplicate = first_row(self.supabase.table(kind.table).insert(record).execute())
        if not duplicate:
            raise ValueError(f"Failed to duplicate {kind.name} item {item_id}")

        if section_id:
            try:
                self.link_item(kind_name, section_id, duplicate["id"], position=self._next_link_position(kind, section_id))
            except ValueError as e:
                # The copy exists either way; report and carry on
                logger.error(f"Failed to link duplicated {kind.name} {duplicate['id']} to section {section_id}: {e}")

        self._invalidate(kind)
        logger.info(f"Duplicated {kind.name} {item_id} -> {duplicate['id']}")
        return duplicate

    # ─── Section links ───────────────────────────────────────────────

    def _links(self, kind: ContentKind, section_id: str) -> List[Dict[str, Any]]:
        return self.supabase.table(kind.junction).select("*").eq(
            "section_id", section_id
        ).order(kind.order_column).execute().data or []

    def _next_link_position(self, kind: ContentKind, section_id: str) -> int:
        links = self._links(kind, section_id)
        return max((l.get(kind.order_column) or 0 for l in links), default=-1) + 1

    def _link_metadata(self, kind: ContentKind, link: Dict[str, Any]) -> Dict[str, Any]:
        meta = {
            "id": link["id"],
            kind.order_column: link.get(kind.order_column),
            "status": link.get("status") or PublishStatus.DRAFT.value,
            "created_at": link.get("created_at"),
        }
        for name in kind.link_fields:
            meta[name] = link.get(name)
        return meta

    def list_section_items(self, kind_name: str, section_id: str) -> List[Dict[str, Any]]:
        """
        Items linked to a section, in link order, each with a "link" key
        holding the junction metadata. Links to deleted items are dropped.
        """
        kind = get_kind(kind_name)
        links = self._links(kind, section_id)
        if not links:
            return []

        items = self.supabase.table(kind.table).select("*").in_(
            "id", list({l[kind.foreign_key] for l in links})
        ).execute().data or []
        items_by_id = {i["id"]: i for i in items}

        merged = []
        for link in links:
            item = items_by_id.get(link[kind.foreign_key])
            if item is None:
                continue
            merged.append({**item, "link": self._link_metadata(kind, link)})
        return merged

    def link_item(
        self,
        kind_name: str,
        section_id: str,
        item_id: str,
        position: Optional[int] = None,
        status: PublishStatus = PublishStatus.DRAFT,
        **link_fields: Any,
    ) -> Dict[str, Any]:
        """
        Link an existing item to a section.

        Raises:
            ValueError: If item_id is empty or an unknown link field is given
            ConflictError: If the item is already linked to the section
        """
        kind = get_kind(kind_name)
        if not item_id:
            raise ValueError(f"{kind.foreign_key} is required")

        unknown = set(link_fields) - set(kind.link_fields)
        if unknown:
            raise ValueError(f"Unknown link fields for {kind.name}: {', '.join(sorted(unknown))}")

        existing = first_row(
            self.supabase.table(kind.junction).select("id").eq(
                "section_id", section_id
            ).eq(kind.foreign_key, item_id).limit(1).execute()
        )
        if existing:
            raise ConflictError(f"{kind.name} item is already connected to this section")

        if position is None:
            position = self._next_link_position(kind, section_id) if kind.append_by_default else 0

        record = {
            "section_id": section_id,
            kind.foreign_key: item_id,
            kind.order_column: position,
            "status": PublishStatus(status).value,
        }
        for name, default in kind.link_defaults:
            record[name] = default
        record.update({k: v for k, v in link_fields.items() if v is not None})

        link = first_row(self.supabase.table(kind.junction).insert(record).execute())
        if not link:
            raise ValueError(f"Failed to link {kind.name} item")

        self._invalidate(kind)
        return link

    def update_link(self, kind_name: str, section_id: str, link_id: str, **changes: Any) -> Dict[str, Any]:
        """
        Update order, status, or extra columns of a link.

        Raises:
            ValueError: If nothing valid to update
            NotFoundError: If the link does not belong to the section
        """
        kind = get_kind(kind_name)
        allowed = {kind.order_column, "status", *kind.link_fields}
        update_data = {k: v for k, v in changes.items() if k in allowed and v is not None}
        if "status" in update_data:
            update_data["status"] = PublishStatus(update_data["status"]).value
        if not update_data:
            raise ValueError(f"Nothing to update; allowed fields: {', '.join(sorted(allowed))}")

        link = first_row(
            self.supabase.table(kind.junction).update(update_data).eq(
                "id", link_id
            ).eq("section_id", section_id).execute()
        )
        if not link:
            raise NotFoundError(f"Link {link_id} not found on section {section_id}")

        self._invalidate(kind)
        return link

    def unlink_item(
        self,
        kind_name: str,
        section_id: str,
        link_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> bool:
        """Remove a link, addressed by link id or by item id."""
        kind = get_kind(kind_name)
        if not link_id and not item_id:
            raise ValueError("Either link_id or item_id is required")

        query = self.supabase.table(kind.junction).delete().eq("section_id", section_id)
        if link_id:
            query = query.eq("id", link_id)
        else:
            query = query.eq(kind.foreign_key, item_id)

        result = query.execute()
        self._invalidate(kind)
        return bool(result.data)

    def reorder_links(self, kind_name: str, section_id: str, ordered_link_ids: List[str]) -> List[Dict[str, Any]]:
        """Rewrite the order column 0..n-1 following ordered_link_ids."""
        kind = get_kind(kind_name)
        links = {l["id"]: l for l in self._links(kind, section_id)}
        if len(set(ordered_link_ids)) != len(ordered_link_ids) or set(ordered_link_ids) != set(links):
            raise ValueError("ordered_link_ids must list every link of the section exactly once")

        reordered = []
        for index, link_id in enumerate(ordered_link_ids):
            if links[link_id].get(kind.order_column) != index:
                self.supabase.table(kind.junction).update(
                    {kind.order_column: index}
                ).eq("id", link_id).execute()
            reordered.append({**links[link_id], kind.order_column: index})

        self._invalidate(kind)
        return reordered
