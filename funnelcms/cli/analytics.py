"""
Analytics commands for FunnelCMS CLI
"""

from typing import Optional

import click

from ..core.models import EntityType, EventType
from ..services.analytics_service import SCOPES, AnalyticsService


@click.group('analytics')
def analytics_group():
    """Visitor analytics"""
    pass


@analytics_group.command('stats')
@click.option('--scope', type=click.Choice(SCOPES), default='30', help='Lookback in days (default: 30)')
def stats(scope: str):
    """
    Site-wide totals, top CTAs and top countries

    Examples:
        fcms analytics stats --scope 7
    """
    try:
        result = AnalyticsService().get_stats(scope)

        click.echo(f"\n{'='*60}")
        click.echo(f"📈 Analytics (last {scope} days)" if scope != 'all' else "📈 Analytics (all time)")
        click.echo(f"{'='*60}\n")
        click.echo(f"Page views:      {result.total_page_views:,}")
        click.echo(f"Sessions:        {result.total_session_starts:,} ({result.unique_sessions:,} unique)")
        click.echo(f"CTA clicks:      {result.total_cta_clicks:,}")
        click.echo(f"Video clicks:    {result.total_video_clicks:,}")

        if result.top_ctas:
            click.echo("\n🔘 Top CTAs:")
            for cta in result.top_ctas:
                click.echo(f"   {cta['clicks']:>5}  {cta['label']} ({cta['location']})")

        if result.top_countries:
            click.echo("\n🌍 Top countries:")
            for country in result.top_countries[:10]:
                click.echo(f"   {country['count']:>5}  {country['country']}")
        click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@analytics_group.command('entity')
@click.argument('entity_type', type=click.Choice([EntityType.CTA_BUTTON.value, EntityType.FAQ_ITEM.value]))
@click.argument('entity_id')
@click.option('--scope', type=click.Choice(SCOPES), default='30', help='Lookback in days (default: 30)')
def entity_stats(entity_type: str, entity_id: str, scope: str):
    """
    Click stats for one CTA button or FAQ item

    Examples:
        fcms analytics entity cta_button <cta-id>
    """
    try:
        result = AnalyticsService().get_entity_stats(entity_type, entity_id, scope)

        click.echo(f"\n🔘 {entity_type} {entity_id}: {result['total_clicks']:,} clicks")
        for point in result["clicks_series"]:
            click.echo(f"   {point['date']}  {point['count']}")
        for location in result.get("top_locations", []):
            click.echo(f"   📍 {location['location']}: {location['clicks']}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@analytics_group.command('events')
@click.option('--type', 'event_type', type=click.Choice([t.value for t in EventType]), help='Event type')
@click.option('--entity-type', type=click.Choice([t.value for t in EntityType]), help='Entity type')
@click.option('--session', 'session_id', help='Session id')
@click.option('--since', help='Start date (YYYY-MM-DD)')
@click.option('--limit', '-n', default=20, type=int, help='Rows to show (default: 20)')
def list_events(
    event_type: Optional[str],
    entity_type: Optional[str],
    session_id: Optional[str],
    since: Optional[str],
    limit: int
):
    """Recent raw events, newest first"""
    try:
        events = AnalyticsService().list_events(
            event_type=event_type,
            entity_type=entity_type,
            session_id=session_id,
            start_date=since,
        )

        click.echo(f"\n📋 {len(events)} events\n")
        for event in events[:limit]:
            where = ", ".join(p for p in (event.city, event.country) if p)
            click.echo(f"{event.created_at}  {event.event_type} {event.entity_type}/{event.entity_id}"
                       + (f"  [{where}]" if where else ""))

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
