"""
Project and workflow commands for FunnelCMS CLI
"""

from typing import Optional

import click

from ..core.models import KnowledgeBaseTarget
from ..services.project_service import ProjectService


@click.group('project')
def project_group():
    """Manage research projects and workflows"""
    pass


@project_group.command('list')
@click.option('--search', '-s', help='Filter by name')
def list_projects(search: Optional[str]):
    """
    List all projects

    Examples:
        fcms project list
        fcms project list --search cleaning
    """
    try:
        projects = ProjectService().list_projects(search)

        if not projects:
            click.echo("No projects found.")
            click.echo("\nCreate your first project with: fcms project create <name>")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"📁 Projects ({len(projects)})")
        click.echo(f"{'='*60}\n")

        for project in projects:
            status = "✅" if (project.status or "active") == "active" else "⏸️ "
            click.echo(f"{status} {project.name}")
            click.echo(f"   ID: {project.id}")
            if project.geography or project.category:
                click.echo(f"   {project.category or '-'} · {project.geography or '-'}")
            click.echo(f"   Workspace: {project.kb_id or '-'}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('create')
@click.argument('name')
@click.option('--geography', '-g', help='Target geography')
@click.option('--category', '-c', help='Niche category')
@click.option('--description', '-d', help='Description')
def create_project(name: str, geography: Optional[str], category: Optional[str], description: Optional[str]):
    """
    Create a project and its workspace knowledge base

    Examples:
        fcms project create "Commercial Cleaning" -g "Austin, TX" -c services
    """
    try:
        project = ProjectService().create_project(
            name, geography=geography, category=category, description=description
        )
        click.echo(f"✅ Created project '{project.name}' ({project.slug})")
        click.echo(f"   ID: {project.id}")
        click.echo(f"   Workspace knowledge base: {project.kb_id}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('link-doc')
@click.argument('project_id')
@click.argument('document_id')
def link_document(project_id: str, document_id: str):
    """Make a document from another knowledge base searchable in the project"""
    try:
        ProjectService().link_document(project_id, document_id)
        click.echo("✅ Document linked")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('workflows')
def list_workflows():
    """List workflows"""
    try:
        service = ProjectService()
        workflows = service.list_workflows()

        click.echo(f"\n{'='*60}")
        click.echo(f"⚙️  Workflows ({len(workflows)})")
        click.echo(f"{'='*60}\n")

        for workflow in workflows:
            webhook = "🔗" if service.get_webhook_url(workflow.id) else "⚠️  no webhook"
            click.echo(f"{workflow.label or workflow.name} {webhook}")
            click.echo(f"   ID: {workflow.id}")
            click.echo(f"   Target: {workflow.knowledge_base_target.value}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('add-workflow')
@click.argument('name')
@click.option('--label', '-l', help='Display label')
@click.option(
    '--target',
    type=click.Choice([t.value for t in KnowledgeBaseTarget]),
    default=KnowledgeBaseTarget.PROJECT.value,
    help='Where the workflow reads context from (default: project)'
)
@click.option('--kb', 'kb_id', help='Knowledge base id (required for --target knowledgebase)')
@click.option('--webhook', help='Webhook URL of the workflow service')
def add_workflow(name: str, label: Optional[str], target: str, kb_id: Optional[str], webhook: Optional[str]):
    """
    Register an external workflow

    Examples:
        fcms project add-workflow niche-intelligence --webhook https://hooks.example.com/abc
    """
    try:
        workflow = ProjectService().create_workflow(
            name,
            label=label,
            knowledge_base_target=target,
            target_knowledge_base_id=kb_id,
            webhook_url=webhook,
        )
        click.echo(f"✅ Created workflow '{workflow.name}'")
        click.echo(f"   ID: {workflow.id}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('set-webhook')
@click.argument('workflow_id')
@click.argument('url')
def set_webhook(workflow_id: str, url: str):
    """Store or replace a workflow's webhook URL"""
    try:
        ProjectService().set_webhook_url(workflow_id, url)
        click.echo("✅ Webhook URL saved")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('docs-by-workflow')
@click.argument('project_id')
@click.argument('workflow_type')
def docs_by_workflow(project_id: str, workflow_type: str):
    """
    Documents produced by a project's runs of one workflow

    Examples:
        fcms project docs-by-workflow <project-id> niche-intelligence
    """
    try:
        documents = ProjectService().documents_by_workflow(project_id, workflow_type)

        if not documents:
            click.echo(f"No documents from '{workflow_type}' runs.")
            return

        click.echo(f"\n📄 Documents from '{workflow_type}' ({len(documents)})\n")
        for doc in documents:
            click.echo(f"{doc['title']}")
            click.echo(f"   ID: {doc['id']} · Run: {doc['run_id'] or '-'}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('subject-types')
@click.option('--enabled-only', is_flag=True, help='Hide disabled subject types')
def list_subject_types(enabled_only: bool):
    """List subject types offered when creating a project"""
    try:
        subject_types = ProjectService().list_subject_types(enabled_only=enabled_only)

        if not subject_types:
            click.echo("No subject types found.")
            return

        click.echo(f"\n🏷️  Subject types ({len(subject_types)})\n")
        for subject_type in subject_types:
            state = "✅" if subject_type.enabled else "⏸️ "
            click.echo(f"{state} {subject_type.label} ({subject_type.name})")
            click.echo(f"   ID: {subject_type.id}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('add-subject-type')
@click.argument('name')
@click.argument('label')
@click.option('--description', '-d', help='Description')
@click.option('--icon', help='Icon name')
@click.option('--disabled', is_flag=True, help='Create it disabled')
def add_subject_type(name: str, label: str, description: Optional[str], icon: Optional[str], disabled: bool):
    """
    Create a subject type

    Examples:
        fcms project add-subject-type niche "Niche" --icon target
    """
    try:
        subject_type = ProjectService().create_subject_type(
            name, label, description=description, icon=icon, enabled=not disabled
        )
        click.echo(f"✅ Created subject type '{subject_type.label}'")
        click.echo(f"   ID: {subject_type.id}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('update-subject-type')
@click.argument('subject_type_id')
@click.option('--name', help='New name')
@click.option('--label', '-l', help='New label')
@click.option('--description', '-d', help='New description')
@click.option('--icon', help='New icon')
@click.option('--enable/--disable', 'enabled', default=None, help='Enable or disable')
def update_subject_type(subject_type_id: str, name: Optional[str], label: Optional[str],
                        description: Optional[str], icon: Optional[str], enabled: Optional[bool]):
    """Update a subject type"""
    try:
        subject_type = ProjectService().update_subject_type(
            subject_type_id, name=name, label=label, description=description, icon=icon, enabled=enabled
        )
        click.echo(f"✅ Updated subject type '{subject_type.label}'")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@project_group.command('delete-subject-type')
@click.argument('subject_type_id')
def delete_subject_type(subject_type_id: str):
    """Delete a subject type"""
    try:
        if ProjectService().delete_subject_type(subject_type_id):
            click.echo(f"✅ Deleted subject type {subject_type_id}")
        else:
            click.echo(f"❌ Subject type {subject_type_id} not found", err=True)
            raise click.Abort()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
