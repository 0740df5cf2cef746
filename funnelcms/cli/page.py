"""
Page management commands for FunnelCMS CLI
"""

import logging
from typing import Optional

import click

from ..core.models import PageType, PublishStatus
from ..services.page_service import PageService
from ..services.site_structure_service import SiteStructureService

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    PublishStatus.PUBLISHED: "✅",
    PublishStatus.DRAFT: "📝",
    PublishStatus.DEACTIVATED: "⏸️ ",
}


@click.group('page')
def page_group():
    """Manage pages and their sections"""
    pass


@page_group.command('list')
def list_pages():
    """
    List all pages

    Examples:
        fcms page list
    """
    try:
        pages = PageService().list_pages()

        if not pages:
            click.echo("No pages found.")
            click.echo("\nCreate your first page with: fcms page create <slug> <title>")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"📄 Pages ({len(pages)})")
        click.echo(f"{'='*60}\n")

        for page in pages:
            click.echo(f"{page.title}")
            click.echo(f"   Slug: {page.slug}")
            click.echo(f"   Type: {page.type or PageType.STANDARD.value}")
            click.echo(f"   ID: {page.id}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('create')
@click.argument('slug')
@click.argument('title')
@click.option('--description', '-d', help='Page description')
@click.option(
    '--type', 'page_type',
    type=click.Choice([t.value for t in PageType]),
    default=PageType.STANDARD.value,
    help='Page type (default: standard)'
)
def create_page(slug: str, title: str, description: Optional[str], page_type: str):
    """
    Create a page

    Examples:
        fcms page create pricing "Pricing"
        fcms page create home "Home" --type home
    """
    try:
        page = PageService().create_page(slug, title, description=description, page_type=page_type)
        click.echo(f"✅ Created page '{page.title}' ({page.slug})")
        click.echo(f"   ID: {page.id}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('show')
@click.argument('slug')
def show_page(slug: str):
    """
    Show a page with every attached section

    Examples:
        fcms page show home
    """
    try:
        service = PageService()
        page = service.get_page_by_slug(slug)
        if page is None:
            click.echo(f"❌ Page '{slug}' not found", err=True)
            raise click.Abort()

        sections = service.get_sections_for_page(page.id)
        roles = SiteStructureService(service.supabase).get_page_roles(page.id)

        click.echo(f"\n{'='*60}")
        click.echo(f"📄 {page.title}")
        click.echo(f"{'='*60}\n")
        click.echo(f"Slug: {page.slug}")
        click.echo(f"Type: {page.type or PageType.STANDARD.value}")
        if page.description:
            click.echo(f"Description: {page.description}")
        for role in roles:
            click.echo(f"Serves: {role['page_type']} ({role['environment']})")

        click.echo(f"\n🧩 Sections ({len(sections)}):")
        if not sections:
            click.echo("   None")
            click.echo(f"   Attach one with: fcms page attach {slug} <section-id>")
        for section in sections:
            icon = STATUS_ICONS.get(section.status, "")
            label = section.admin_title or section.title or section.type
            click.echo(f"   {section.position}. {icon} {label} [{section.type}]")
            click.echo(f"      Placement: {section.page_section_id}")
        click.echo()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('attach')
@click.argument('slug')
@click.argument('section_id')
@click.option('--position', '-p', type=int, help='Position (default: after the last section)')
@click.option(
    '--status', '-s',
    type=click.Choice([s.value for s in PublishStatus]),
    default=PublishStatus.DRAFT.value,
    help='Publish status (default: draft)'
)
def attach_section(slug: str, section_id: str, position: Optional[int], status: str):
    """
    Place a section on a page

    Examples:
        fcms page attach home <section-id>
        fcms page attach home <section-id> --position 0 --status published
    """
    try:
        service = PageService()
        page = service.get_page_by_slug(slug)
        if page is None:
            click.echo(f"❌ Page '{slug}' not found", err=True)
            raise click.Abort()

        placement = service.attach_section(page.id, section_id, position=position, status=status)
        click.echo(f"✅ Attached section at position {placement.position} ({placement.status.value})")
        click.echo(f"   Placement: {placement.id}")

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('detach')
@click.argument('page_section_id')
def detach_section(page_section_id: str):
    """Remove a section placement from its page"""
    try:
        if PageService().detach_section(page_section_id):
            click.echo("✅ Section detached")
        else:
            click.echo(f"❌ Placement {page_section_id} not found", err=True)
            raise click.Abort()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('status')
@click.argument('page_section_id')
@click.argument('status', type=click.Choice([s.value for s in PublishStatus]))
def set_status(page_section_id: str, status: str):
    """
    Publish, draft or deactivate a section placement

    Examples:
        fcms page status <placement-id> published
    """
    try:
        placement = PageService().set_section_status(page_section_id, status)
        click.echo(f"{STATUS_ICONS[placement.status]} Placement is now {placement.status.value}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('reorder')
@click.argument('slug')
@click.argument('page_section_ids', nargs=-1, required=True)
def reorder_sections(slug: str, page_section_ids):
    """
    Reorder a page's sections (list every placement id in the new order)

    Examples:
        fcms page reorder home <placement-b> <placement-a>
    """
    try:
        service = PageService()
        page = service.get_page_by_slug(slug)
        if page is None:
            click.echo(f"❌ Page '{slug}' not found", err=True)
            raise click.Abort()

        reordered = service.reorder_sections(page.id, list(page_section_ids))
        click.echo(f"✅ Reordered {len(reordered)} sections on '{slug}'")

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@page_group.command('assign')
@click.argument('page_type')
@click.argument('slug')
@click.option('--production', help='Production page id')
@click.option('--development', help='Development page id')
def assign_page_type(page_type: str, slug: str, production: Optional[str], development: Optional[str]):
    """
    Point a site page type (home, pricing, ...) at concrete pages

    Examples:
        fcms page assign home / --production <page-id> --development <page-id>
    """
    try:
        entry = SiteStructureService().assign(
            page_type, slug,
            production_page_id=production,
            development_page_id=development,
        )
        click.echo(f"✅ {entry.page_type} -> {entry.slug}")
        click.echo(f"   Production: {entry.production_page_id or '-'}")
        click.echo(f"   Development: {entry.development_page_id or '-'}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
