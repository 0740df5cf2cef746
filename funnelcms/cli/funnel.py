"""
Funnel template commands for FunnelCMS CLI
"""

from typing import Optional

import click

from ..services.funnel_service import FunnelService


@click.group('funnel')
def funnel_group():
    """Install funnel pages from templates"""
    pass


@funnel_group.command('list')
def list_templates():
    """List available funnel templates"""
    try:
        templates = FunnelService().list_templates()

        if not templates:
            click.echo("No funnel templates found.")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"🧲 Funnel Templates ({len(templates)})")
        click.echo(f"{'='*60}\n")

        for template in templates:
            click.echo(f"{template.display_name}")
            click.echo(f"   Slug: {template.slug}")
            click.echo(f"   Route: {template.route}")
            click.echo(f"   Sections: {', '.join(s.type for s in template.sections)}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@funnel_group.command('install')
@click.argument('slug')
@click.option('--page-slug', help='Slug for the new page (default: template slug)')
def install_template(slug: str, page_slug: Optional[str]):
    """
    Create a funnel page and its draft sections from a template

    Examples:
        fcms funnel install outbound-system
        fcms funnel install outbound-system --page-slug outbound-v2
    """
    try:
        result = FunnelService().install_template(slug, page_slug=page_slug)
        page = result["page"]
        click.echo(f"✅ Installed '{slug}' as page '{page.slug}'")
        click.echo(f"   Page ID: {page.id}")
        click.echo(f"   Sections: {len(result['section_ids'])} (draft)")
        click.echo(f"\n💡 Publish sections with: fcms page status <placement-id> published")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
