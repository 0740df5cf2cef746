"""
AnalyticsService - Event tracking and aggregated stats.

Events are stored raw in analytics_events and aggregated in Python over
a lookback window.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from supabase import Client

from ..core.database import get_supabase_client, first_row
from ..core.models import AnalyticsEvent, AnalyticsStats, DailyPoint, EntityType, EventType

logger = logging.getLogger(__name__)

SCOPES = ("7", "30", "90", "365", "all")
ALL_TIME_DAYS = 365

TOP_CTA_LIMIT = 10
TOP_COUNTRY_LIMIT = 20
TOP_COUNTRY_PER_METRIC_LIMIT = 10


def lookback_days(scope: Union[str, int]) -> int:
    """
    Convert a scope ("7", "30", "90", "365", "all") to days.

    "all" is capped at one year.

    Raises:
        ValueError: If the scope is not recognised
    """
    scope = str(scope).strip().lower()
    if scope == "all":
        return ALL_TIME_DAYS
    if not scope.isdigit() or int(scope) <= 0:
        raise ValueError(f"Invalid scope '{scope}'. Use one of: {', '.join(SCOPES)}")
    return int(scope)


def _is_page_view(e: Dict) -> bool:
    return e.get("event_type") == EventType.PAGE_VIEW.value


def _is_session_start(e: Dict) -> bool:
    return e.get("event_type") == EventType.SESSION_START.value


def _is_cta_click(e: Dict) -> bool:
    return (e.get("event_type") == EventType.LINK_CLICK.value
            and e.get("entity_type") == EntityType.CTA_BUTTON.value)


def _is_video_click(e: Dict) -> bool:
    return (e.get("event_type") == EventType.LINK_CLICK.value
            and e.get("entity_type") == EntityType.MEDIA.value)


def _event_date(event: Dict) -> str:
    created_at = event.get("created_at")
    if isinstance(created_at, datetime):
        return created_at.date().isoformat()
    return str(created_at)[:10]


def _location(event: Dict) -> str:
    return (event.get("metadata") or {}).get("location") or "unknown"


def daily_series(events: List[Dict]) -> List[DailyPoint]:
    """Count events per calendar day, sorted by date."""
    counts = Counter(_event_date(e) for e in events)
    return [DailyPoint(date=d, count=c) for d, c in sorted(counts.items())]


def top_countries(events: List[Dict], limit: int) -> List[Dict[str, Any]]:
    counts = Counter(e["country"] for e in events if e.get("country"))
    return [{"country": c, "count": n} for c, n in counts.most_common(limit)]


def top_locations(events: List[Dict]) -> List[Dict[str, Any]]:
    counts = Counter(_location(e) for e in events)
    return [{"location": loc, "clicks": n} for loc, n in counts.most_common()]


class AnalyticsService:
    """Service for analytics events."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    def track_event(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        session_id: Optional[str] = None,
        country: Optional[str] = None,
        city: Optional[str] = None,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AnalyticsEvent:
        """
        Record a visitor event.

        Raises:
            ValueError: If event_type, entity_type or entity_id is missing
        """
        for name, value in (("event_type", event_type), ("entity_type", entity_type), ("entity_id", entity_id)):
            if not value:
                raise ValueError(f"{name} is required")

        record = {
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "session_id": session_id or None,
            "country": country or None,
            "city": city or None,
            "user_agent": user_agent or None,
            "referrer": referrer or None,
            "metadata": metadata or None,
        }
        row = first_row(self.supabase.table("analytics_events").insert(record).execute())
        if not row:
            raise ValueError("Failed to store analytics event")
        return AnalyticsEvent(**row)

    def list_events(
        self,
        event_type: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        session_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[AnalyticsEvent]:
        """Events matching every given filter, newest first."""
        query = self.supabase.table("analytics_events").select("*")
        for column, value in (
            ("event_type", event_type),
            ("entity_type", entity_type),
            ("entity_id", entity_id),
            ("session_id", session_id),
        ):
            if value:
                query = query.eq(column, value)
        if start_date:
            query = query.gte("created_at", start_date)
        if end_date:
            query = query.lte("created_at", end_date)

        result = query.order("created_at", desc=True).execute()
        return [AnalyticsEvent(**row) for row in (result.data or [])]

    def _events_since(self, days: int, **filters: str) -> List[Dict[str, Any]]:
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        query = self.supabase.table("analytics_events").select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        return query.gte("created_at", since).execute().data or []

    def get_stats(self, scope: Union[str, int] = "30") -> AnalyticsStats:
        """
        Aggregate every event in the lookback window.

        Args:
            scope: "7", "30", "90", "365" or "all" (one year)
        """
        events = self._events_since(lookback_days(scope))
        if not events:
            return AnalyticsStats()

        page_views = [e for e in events if _is_page_view(e)]
        cta_clicks = [e for e in events if _is_cta_click(e)]
        video_clicks = [e for e in events if _is_video_click(e)]
        session_starts = [e for e in events if _is_session_start(e)]

        return AnalyticsStats(
            total_page_views=len(page_views),
            total_cta_clicks=len(cta_clicks),
            total_video_clicks=len(video_clicks),
            total_session_starts=len(session_starts),
            unique_sessions=len({e["session_id"] for e in events if e.get("session_id")}),
            page_views_series=daily_series(page_views),
            cta_clicks_series=daily_series(cta_clicks),
            session_starts_series=daily_series(session_starts),
            video_clicks_series=daily_series(video_clicks),
            top_ctas=self._top_ctas(cta_clicks),
            top_locations=top_locations(cta_clicks),
            top_countries=top_countries(events, TOP_COUNTRY_LIMIT),
            top_countries_by_session_start=top_countries(session_starts, TOP_COUNTRY_PER_METRIC_LIMIT),
            top_countries_by_page_view=top_countries(page_views, TOP_COUNTRY_PER_METRIC_LIMIT),
            top_countries_by_cta_click=top_countries(cta_clicks, TOP_COUNTRY_PER_METRIC_LIMIT),
            top_countries_by_video_click=top_countries(video_clicks, TOP_COUNTRY_PER_METRIC_LIMIT),
        )

    def _top_ctas(self, cta_clicks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Top CTA/location pairs by clicks, labelled from cta_buttons."""
        if not cta_clicks:
            return []

        buttons = self.supabase.table("cta_buttons").select("id, label").execute().data or []
        labels = {b["id"]: b["label"] for b in buttons}

        counts = Counter((e["entity_id"], _location(e)) for e in cta_clicks)
        return [
            {
                "id": entity_id,
                "label": labels.get(entity_id, entity_id),
                "clicks": clicks,
                "location": location,
            }
            for (entity_id, location), clicks in counts.most_common(TOP_CTA_LIMIT)
        ]

    def get_entity_stats(
        self,
        entity_type: str,
        entity_id: str,
        scope: Union[str, int] = "30"
    ) -> Dict[str, Any]:
        """
        Click stats for a single CTA button or FAQ item.

        Returns:
            Dict with total_clicks, clicks_series, top_countries and,
            for CTA buttons, top_locations
        """
        entity_id = str(entity_id or "").strip()
        if not entity_id:
            raise ValueError("entity_id is required")
        if entity_type not in (EntityType.CTA_BUTTON.value, EntityType.FAQ_ITEM.value):
            raise ValueError("Entity stats are available for cta_button and faq_item only")

        events = [
            e for e in self._events_since(
                lookback_days(scope),
                entity_type=entity_type,
                event_type=EventType.LINK_CLICK.value,
            )
            if str(e.get("entity_id")).strip() == entity_id
        ]
        logger.debug(f"Entity stats {entity_type}/{entity_id}: {len(events)} events")

        stats: Dict[str, Any] = {
            "total_clicks": len(events),
            "clicks_series": [p.model_dump() for p in daily_series(events)],
            "top_countries": top_countries(events, TOP_COUNTRY_PER_METRIC_LIMIT),
        }
        if entity_type == EntityType.CTA_BUTTON.value:
            stats["top_locations"] = top_locations(events)
        return stats
