"""
Section management commands for FunnelCMS CLI
"""

import json
from typing import Optional

import click

from ..services.section_service import SectionService


@click.group('section')
def section_group():
    """Manage reusable sections"""
    pass


@section_group.command('list')
def list_sections():
    """
    List sections (home page sections first) with the pages using them

    Examples:
        fcms section list
    """
    try:
        sections = SectionService().list_sections()

        if not sections:
            click.echo("No sections found.")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"🧩 Sections ({len(sections)})")
        click.echo(f"{'='*60}\n")

        for section in sections:
            click.echo(f"{section.admin_title or section.title or '(untitled)'} [{section.type}]")
            click.echo(f"   ID: {section.id}")
            if section.pages:
                pages = ", ".join(f"{p.title} ({p.status.value})" for p in section.pages)
                click.echo(f"   Pages: {pages}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@section_group.command('create')
@click.argument('section_type')
@click.option('--title', '-t', help='Website-facing title')
@click.option('--admin-title', '-a', help='Title shown in admin listings')
@click.option('--subtitle', help='Subtitle')
@click.option('--content', help='Section content as JSON')
def create_section(
    section_type: str,
    title: Optional[str],
    admin_title: Optional[str],
    subtitle: Optional[str],
    content: Optional[str]
):
    """
    Create a section

    Examples:
        fcms section create hero --title "Book More Calls" --admin-title "Home Hero"
    """
    try:
        section = SectionService().create_section(
            section_type,
            title=title,
            admin_title=admin_title,
            subtitle=subtitle,
            content=json.loads(content) if content else None,
        )
        click.echo(f"✅ Created section {section.id} [{section.type}]")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@section_group.command('delete')
@click.argument('section_id')
@click.confirmation_option(prompt='Delete this section from every page?')
def delete_section(section_id: str):
    """Delete a section (and its placements)"""
    try:
        if SectionService().delete_section(section_id):
            click.echo(f"✅ Deleted section {section_id}")
        else:
            click.echo(f"❌ Section {section_id} not found", err=True)
            raise click.Abort()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@section_group.command('duplicate')
@click.argument('section_id')
def duplicate_section(section_id: str):
    """
    Copy a section with all its content links

    Examples:
        fcms section duplicate <section-id>
    """
    try:
        duplicate, warnings = SectionService().duplicate_section(section_id)
        click.echo(f"✅ Duplicated section -> {duplicate.id}")
        if duplicate.admin_title:
            click.echo(f"   Admin title: {duplicate.admin_title}")
        for warning in warnings:
            click.echo(f"   ⚠️  {warning}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
