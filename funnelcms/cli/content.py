"""
Section content commands (CTAs, FAQs, testimonials, ...) for FunnelCMS CLI
"""

import json
from typing import Optional, Tuple

import click

from ..core.models import PublishStatus
from ..services.content_item_service import CONTENT_KINDS, ContentItemService, get_kind

KIND_CHOICE = click.Choice(sorted(CONTENT_KINDS))


def _parse_fields(fields: Tuple[str, ...], data: Optional[str]) -> dict:
    """Merge a JSON object with repeated key=value options."""
    record = json.loads(data) if data else {}
    if not isinstance(record, dict):
        raise click.BadParameter("--json must be a JSON object")
    for field in fields:
        if "=" not in field:
            raise click.BadParameter(f"Expected key=value, got '{field}'")
        key, value = field.split("=", 1)
        record[key] = value
    return record


@click.group('content')
def content_group():
    """Manage section content items"""
    pass


@content_group.command('list')
@click.argument('kind', type=KIND_CHOICE)
@click.option('--section', '-s', help='Only items linked to this section')
def list_items(kind: str, section: Optional[str]):
    """
    List items of a content kind

    Examples:
        fcms content list faq_items
        fcms content list cta_buttons --section <section-id>
    """
    try:
        service = ContentItemService()
        items = service.list_section_items(kind, section) if section else service.list_items(kind)
        content_kind = get_kind(kind)

        click.echo(f"\n{'='*60}")
        click.echo(f"📦 {kind} ({len(items)})")
        click.echo(f"{'='*60}\n")

        for item in items:
            label = item.get(content_kind.label_field) or "(no label)"
            click.echo(f"{label}")
            click.echo(f"   ID: {item['id']}")
            if "link" in item:
                link = item["link"]
                click.echo(f"   Link: {link['id']} · {content_kind.order_column} {link.get(content_kind.order_column)} · {link['status']}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@content_group.command('create')
@click.argument('kind', type=KIND_CHOICE)
@click.option('--field', '-f', 'fields', multiple=True, help='Column value as key=value (repeatable)')
@click.option('--json', 'data', help='Column values as a JSON object')
def create_item(kind: str, fields: Tuple[str, ...], data: Optional[str]):
    """
    Create a content item

    Examples:
        fcms content create faq_items -f question="How long?" -f answer="30 days"
        fcms content create cta_buttons --json '{"label": "Book a Call", "url": "https://..."}'
    """
    try:
        item = ContentItemService().create_item(kind, _parse_fields(fields, data))
        click.echo(f"✅ Created {kind} item {item['id']}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@content_group.command('delete')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('item_id')
def delete_item(kind: str, item_id: str):
    """Delete a content item"""
    try:
        if ContentItemService().delete_item(kind, item_id):
            click.echo(f"✅ Deleted {kind} item {item_id}")
        else:
            click.echo(f"❌ {kind} item {item_id} not found", err=True)
            raise click.Abort()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@content_group.command('duplicate')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('item_id')
@click.option('--section', '-s', help='Also link the copy to this section')
def duplicate_item(kind: str, item_id: str, section: Optional[str]):
    """
    Copy a content item

    Examples:
        fcms content duplicate faq_items <item-id>
        fcms content duplicate cta_buttons <item-id> --section <section-id>
    """
    try:
        content_kind = get_kind(kind)
        duplicate = ContentItemService().duplicate_item(kind, item_id, section_id=section)
        click.echo(f"✅ Duplicated -> {duplicate['id']}")
        if content_kind.label_field and duplicate.get(content_kind.label_field):
            click.echo(f"   {content_kind.label_field}: {duplicate[content_kind.label_field]}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@content_group.command('link')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('section_id')
@click.argument('item_id')
@click.option('--position', '-p', type=int, help='Position in the section')
@click.option(
    '--status',
    type=click.Choice([s.value for s in PublishStatus]),
    default=PublishStatus.DRAFT.value,
    help='Publish status (default: draft)'
)
@click.option('--field', '-f', 'fields', multiple=True, help='Extra link column as key=value (role, icon_override)')
def link_item(kind: str, section_id: str, item_id: str, position: Optional[int], status: str, fields: Tuple[str, ...]):
    """
    Connect an item to a section

    Examples:
        fcms content link faq_items <section-id> <item-id>
        fcms content link media <section-id> <media-id> -f role=background
    """
    try:
        link = ContentItemService().link_item(
            kind, section_id, item_id,
            position=position,
            status=status,
            **_parse_fields(fields, None),
        )
        click.echo(f"✅ Linked ({link['status']}) as {link['id']}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@content_group.command('unlink')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('section_id')
@click.argument('item_id')
def unlink_item(kind: str, section_id: str, item_id: str):
    """Disconnect an item from a section"""
    try:
        if ContentItemService().unlink_item(kind, section_id, item_id=item_id):
            click.echo("✅ Unlinked")
        else:
            click.echo("⚠️  Item was not linked to this section")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@content_group.command('reorder')
@click.argument('kind', type=KIND_CHOICE)
@click.argument('section_id')
@click.argument('link_ids', nargs=-1, required=True)
def reorder_links(kind: str, section_id: str, link_ids):
    """Reorder a section's links (list every link id in the new order)"""
    try:
        reordered = ContentItemService().reorder_links(kind, section_id, list(link_ids))
        click.echo(f"✅ Reordered {len(reordered)} {kind} links")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
