"""
Main CLI entry point for FunnelCMS
"""

import logging

import click

from .. import __version__
from .page import page_group
from .section import section_group
from .content import content_group
from .kb import kb_group
from .project import project_group
from .run import run_group
from .funnel import funnel_group
from .analytics import analytics_group
from .chat import chat_group


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose: bool):
    """
    FunnelCMS - Marketing site content and research intelligence

    Compose pages from reusable sections, manage section content, track
    analytics, and run AI research workflows over knowledge bases.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Register command groups
cli.add_command(page_group)
cli.add_command(section_group)
cli.add_command(content_group)
cli.add_command(kb_group)
cli.add_command(project_group)
cli.add_command(run_group)
cli.add_command(funnel_group)
cli.add_command(analytics_group)
cli.add_command(chat_group)


if __name__ == '__main__':
    cli()
