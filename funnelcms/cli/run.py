"""
Workflow run commands for FunnelCMS CLI
"""

import asyncio
import json
from typing import Optional

import click

from ..core.models import RunStatus
from ..services.report_service import ReportService
from ..services.run_service import RunService

STEP_ICONS = {
    "completed": "✅",
    "active": "🔄",
    "waiting": "⏳",
    "failed": "❌",
}


@click.group('run')
def run_group():
    """Execute workflows and follow their runs"""
    pass


@run_group.command('execute')
@click.argument('workflow_id')
@click.argument('project_id')
@click.option('--user', 'user_id', help='Requesting user id')
@click.option('--input', 'input_json', help='Extra workflow input as JSON')
def execute(workflow_id: str, project_id: str, user_id: Optional[str], input_json: Optional[str]):
    """
    Start a workflow run for a project

    Examples:
        fcms run execute <workflow-id> <project-id>
    """
    try:
        result = asyncio.run(RunService().execute_workflow(
            workflow_id,
            project_id,
            user_id=user_id,
            input=json.loads(input_json) if input_json else None,
        ))
        click.echo(f"🚀 Run started: {result['run_id']}")
        click.echo(f"   Follow it with: fcms run show {result['run_id']}")

    except Exception as e:
        click.echo(f"❌ Execution failed: {e}", err=True)
        raise click.Abort()


@run_group.command('list')
@click.option('--project', 'project_id', help='Filter by project')
@click.option('--workflow', 'workflow_id', help='Filter by workflow')
@click.option('--status', help='Filter by status')
def list_runs(project_id: Optional[str], workflow_id: Optional[str], status: Optional[str]):
    """List runs, newest first"""
    try:
        runs = RunService().list_runs(project_id=project_id, workflow_id=workflow_id, status=status)

        if not runs:
            click.echo("No runs found.")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"🏃 Runs ({len(runs)})")
        click.echo(f"{'='*60}\n")

        for run in runs:
            click.echo(f"{run.id} · {run.status.value}")
            if run.created_at:
                click.echo(f"   Created: {run.created_at}")
            if run.error:
                click.echo(f"   Error: {run.error}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@run_group.command('show')
@click.argument('run_id')
def show_run(run_id: str):
    """
    Show a run's details and progress timeline

    Examples:
        fcms run show <run-id>
    """
    try:
        service = RunService()
        details = service.get_run_details(run_id)
        if details is None:
            click.echo(f"❌ Run {run_id} not found", err=True)
            raise click.Abort()
        progress = service.get_progress(run_id)

        click.echo(f"\n{'='*60}")
        click.echo(f"🏃 Run {run_id}")
        click.echo(f"{'='*60}\n")
        click.echo(f"Workflow: {details['workflow_label'] or details['workflow_name'] or '-'}")
        click.echo(f"Project: {details['project_name'] or '-'}")
        click.echo(f"Knowledge base: {details['knowledge_base_name'] or '-'}")
        click.echo(f"Status: {details['status']} ({progress.percent_complete}%)")
        if details.get("fit_score") is not None:
            click.echo(f"Fit score: {details['fit_score']} · Verdict: {details.get('verdict') or '-'}")

        click.echo("\nSteps:")
        for step in progress.steps:
            done = f" ({step.completed_at})" if step.completed_at else ""
            click.echo(f"   {STEP_ICONS.get(step.status, '')} {step.title}{done}")
        if progress.error:
            click.echo(f"\nError: {progress.error}")
        click.echo()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@run_group.command('status')
@click.argument('run_id')
@click.argument('status')
@click.option('--step', help='Current step name')
@click.option('--error', help='Error message (for failed)')
def update_status(run_id: str, status: str, step: Optional[str], error: Optional[str]):
    """
    Record a status change by hand

    Examples:
        fcms run status <run-id> failed --error "Ingestion timed out"
    """
    try:
        run = RunService().update_status(run_id, status, step=step, error=error)
        click.echo(f"✅ Run is {run.status.value}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@run_group.command('report')
@click.argument('output_or_run_id')
def show_report(output_or_run_id: str):
    """Show the report table of contents for an output or run"""
    try:
        report = ReportService().get_report(output_or_run_id)
        if report is None:
            click.echo("❌ Report not found", err=True)
            raise click.Abort()

        header = report["header"] or {}
        meta = report["data"]["meta"]
        click.echo(f"\n{'='*60}")
        click.echo(f"📊 {header.get('report_type_label') or report['automation_name'] or 'Report'}")
        click.echo(f"{'='*60}\n")
        if header:
            click.echo(f"{header['mode_label']} · {header['subtitle']}")
        click.echo(f"Niche: {meta['input']['niche_name'] or '-'} · Generated: {meta['generated_at']}")
        click.echo(f"Run status: {report['run_status'] or RunStatus.COMPLETE.value}")

        click.echo("\nSections:")
        for section in report["sections"]:
            click.echo(f"   {section['number']}  {section['title']}")
        click.echo()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@run_group.command('delete')
@click.argument('run_id')
@click.option('--with-documents', is_flag=True, help='Also delete documents the run produced')
@click.confirmation_option(prompt='Delete this run?')
def delete_run(run_id: str, with_documents: bool):
    """Delete a run and its outputs"""
    try:
        if RunService().delete_run(run_id, delete_documents=with_documents):
            click.echo(f"✅ Deleted run {run_id}")
        else:
            click.echo(f"❌ Run {run_id} not found", err=True)
            raise click.Abort()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
