"""
RunService - Report generation runs.

A run is one execution of a workflow for a project. This service creates
the run, hands it to the external workflow service through its webhook,
and records the status updates and final output the external service
reports back. Generation itself happens elsewhere.

Lifecycle:
    queued -> collecting -> ingesting -> generating -> complete
    any non-terminal state -> failed
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import logfire
from supabase import Client
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import Config
from ..core.database import get_supabase_client, first_row
from ..core.exceptions import InvalidTransitionError, NotFoundError, WebhookError
from ..core.models import (
    KnowledgeBaseTarget,
    LEGACY_RUN_STATUSES,
    ProgressStep,
    Run,
    RunOutput,
    RunProgress,
    RunStatus,
)
from .project_service import ProjectService

logger = logging.getLogger(__name__)

LIFECYCLE = [
    RunStatus.QUEUED,
    RunStatus.COLLECTING,
    RunStatus.INGESTING,
    RunStatus.GENERATING,
    RunStatus.COMPLETE,
]

STEP_TITLES = {
    RunStatus.QUEUED: "Queued",
    RunStatus.COLLECTING: "Collecting Sources",
    RunStatus.INGESTING: "Ingesting Documents",
    RunStatus.GENERATING: "Generating Report",
    RunStatus.COMPLETE: "Report Ready",
}


def parse_run_status(value) -> RunStatus:
    """RunStatus from a string, accepting legacy names."""
    if isinstance(value, RunStatus):
        return value
    try:
        return RunStatus(LEGACY_RUN_STATUSES.get(value, value))
    except ValueError:
        raise ValueError(
            f"Invalid run status '{value}'. Expected one of: {', '.join(s.value for s in RunStatus)}"
        )


def check_transition(current: RunStatus, requested: RunStatus) -> bool:
    """
    Validate a status change.

    Returns:
        False for a same-status update (nothing to record), True otherwise

    Raises:
        InvalidTransitionError: If the lifecycle does not allow the change
    """
    if requested == current:
        return False
    if current in (RunStatus.COMPLETE, RunStatus.FAILED):
        raise InvalidTransitionError(current.value, requested.value)
    if requested == RunStatus.FAILED:
        return True
    if LIFECYCLE.index(requested) < LIFECYCLE.index(current):
        raise InvalidTransitionError(current.value, requested.value)
    return True


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunService:
    """Service for workflow runs."""

    # Replaced in tests to skip the backoff
    retry_wait = wait_exponential(multiplier=2, min=2, max=8)

    def __init__(
        self,
        supabase: Optional[Client] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.supabase = supabase or get_supabase_client()
        self.http_client = http_client
        self.projects = ProjectService(self.supabase)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_workflow(
        self,
        workflow_id: str,
        project_id: str,
        user_id: Optional[str] = None,
        input: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create a run and hand it to the workflow's webhook.

        Args:
            workflow_id: Workflow to execute
            project_id: Project the report is about
            user_id: Requesting user, forwarded as UserId
            input: Extra workflow input, forwarded as Input when non-empty

        Returns:
            Dict with run_id and the webhook's response data

        Raises:
            NotFoundError: If the workflow, its webhook URL or the project is missing
            ValueError: If no knowledge base can be resolved
            WebhookError: If the webhook is unreachable or answers non-2xx
                (the run is marked failed first)
        """
        if not project_id:
            raise ValueError("project_id is required")

        workflow = self.projects.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        webhook_url = self.projects.get_webhook_url(workflow_id)
        if not webhook_url:
            raise NotFoundError("Webhook URL not configured for this workflow")

        project = self.projects.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")

        if workflow.knowledge_base_target == KnowledgeBaseTarget.KNOWLEDGEBASE:
            knowledge_base_id = workflow.target_knowledge_base_id
            if not knowledge_base_id:
                raise ValueError("Workflow target_knowledge_base_id is not configured")
        else:
            knowledge_base_id = project.kb_id
            if not knowledge_base_id:
                raise ValueError("Project kb_id is not configured")

        run_row = first_row(
            self.supabase.table("rag_runs").insert({
                "knowledge_base_id": knowledge_base_id,
                "workflow_id": workflow_id,
                "project_id": project_id,
                "status": RunStatus.QUEUED.value,
                "created_by": user_id,
                "input": input or {},
                "metadata": {"status_history": [{"status": RunStatus.QUEUED.value, "at": _now_iso()}]},
            }).execute()
        )
        if not run_row or not run_row.get("id"):
            raise ValueError("Failed to create run: no run ID returned")

        run_id = run_row["id"]
        payload = {
            "Name": project.name or "",
            "Geography": project.geography or "",
            "Category": project.category or "",
            "Description": project.description or "",
            "UserId": user_id,
            "WorkflowId": workflow_id,
            "ProjectId": project_id,
            "RunId": run_id,
        }
        if input:
            payload["Input"] = input

        with logfire.span("execute_workflow", workflow_id=workflow_id, run_id=run_id):
            try:
                response = await self._post_webhook(webhook_url, payload)
            except httpx.HTTPError as e:
                logger.error(f"Webhook call failed for run {run_id}: {e}")
                self._mark_failed(run_id, f"Failed to call webhook: {e}")
                raise WebhookError(f"Failed to call webhook: {e}")

            if not response.is_success:
                details = response.text
                logger.error(f"Webhook returned {response.status_code} for run {run_id}")
                self._mark_failed(run_id, f"Webhook returned error: {response.status_code}")
                raise WebhookError(
                    f"Webhook returned error: {response.status_code} {response.reason_phrase}",
                    status_code=response.status_code,
                    details=details,
                )

        try:
            data = response.json()
        except ValueError:
            data = {"message": "Workflow executed successfully"}

        logger.info(f"Started run {run_id} for workflow {workflow_id}, project {project_id}")
        return {"run_id": run_id, "data": data}

    async def _post_webhook(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        """POST the payload, retrying transport errors (not HTTP error statuses)."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(Config.WEBHOOK_MAX_ATTEMPTS),
            wait=self.retry_wait,
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )

        if self.http_client is not None:
            async for attempt in retrying:
                with attempt:
                    return await self.http_client.post(url, json=payload)

        async with httpx.AsyncClient(timeout=Config.WEBHOOK_TIMEOUT_SECONDS) as client:
            async for attempt in retrying:
                with attempt:
                    return await client.post(url, json=payload)

    def _mark_failed(self, run_id: str, error: str):
        try:
            self.update_status(run_id, RunStatus.FAILED, error=error)
        except ValueError as e:
            logger.error(f"Could not mark run {run_id} failed: {e}")

    # =========================================================================
    # Status
    # =========================================================================

    def get_run(self, run_id: str) -> Optional[Run]:
        row = first_row(
            self.supabase.table("rag_runs").select("*").eq("id", run_id).limit(1).execute()
        )
        return Run(**row) if row else None

    def get_run_details(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Run plus knowledge base, project and workflow names."""
        run = self.get_run(run_id)
        if run is None:
            return None

        kb = first_row(
            self.supabase.table("rag_knowledge_bases").select("id, name").eq(
                "id", run.knowledge_base_id
            ).limit(1).execute()
        ) if run.knowledge_base_id else None
        project = self.projects.get_project(run.project_id) if run.project_id else None
        workflow = self.projects.get_workflow(run.workflow_id) if run.workflow_id else None

        return {
            **run.model_dump(mode="json"),
            "knowledge_base_name": kb.get("name") if kb else None,
            "project_name": project.name if project else None,
            "workflow_name": workflow.name if workflow else None,
            "workflow_label": workflow.label if workflow else None,
        }

    def list_runs(
        self,
        project_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None
    ) -> List[Run]:
        query = self.supabase.table("rag_runs").select("*")
        if project_id:
            query = query.eq("project_id", project_id)
        if workflow_id:
            query = query.eq("workflow_id", workflow_id)
        if status:
            query = query.eq("status", parse_run_status(status).value)
        result = query.order("created_at", desc=True).execute()
        return [Run(**row) for row in (result.data or [])]

    def update_status(
        self,
        run_id: str,
        status,
        step: Optional[str] = None,
        error: Optional[str] = None,
        fit_score: Optional[float] = None,
        verdict: Optional[str] = None
    ) -> Run:
        """
        Apply a status update reported by the external workflow service.

        Same-status updates only refresh step/score fields. Every real
        transition is appended to metadata.status_history.

        Raises:
            NotFoundError: If the run does not exist
            InvalidTransitionError: If the lifecycle forbids the change
        """
        requested = parse_run_status(status)
        run = self.get_run(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")

        changed = check_transition(run.status, requested)

        update_data: Dict[str, Any] = {"updated_at": _now_iso()}
        if step is not None:
            update_data["current_step"] = step
        if fit_score is not None:
            update_data["fit_score"] = fit_score
        if verdict is not None:
            update_data["verdict"] = verdict
        if error is not None:
            update_data["error"] = error

        if changed:
            history = list(run.metadata.get("status_history", []))
            history.append({"status": requested.value, "step": step, "at": update_data["updated_at"]})
            update_data["status"] = requested.value
            update_data["metadata"] = {**run.metadata, "status_history": history}
            logger.info(f"Run {run_id}: {run.status.value} -> {requested.value}")
        else:
            logger.debug(f"Run {run_id}: repeated status {requested.value}")

        row = first_row(
            self.supabase.table("rag_runs").update(update_data).eq("id", run_id).execute()
        )
        return Run(**(row or {**run.model_dump(), **update_data}))

    def get_progress(self, run_id: str) -> Optional[RunProgress]:
        """
        Step timeline for a run.

        Steps before the current one are completed, the current one is
        active and later ones are waiting. A failed run shows the step it
        failed in as failed.
        """
        run = self.get_run(run_id)
        if run is None:
            return None

        reached_at: Dict[str, str] = {}
        last_reached = RunStatus.QUEUED
        for entry in run.metadata.get("status_history", []):
            try:
                entry_status = parse_run_status(entry.get("status"))
            except ValueError:
                continue
            if entry_status != RunStatus.FAILED:
                reached_at[entry_status.value] = entry.get("at")
                last_reached = entry_status

        current = last_reached if run.status == RunStatus.FAILED else run.status
        current_index = LIFECYCLE.index(current)

        steps = []
        for index, step_status in enumerate(LIFECYCLE):
            if index < current_index or run.status == RunStatus.COMPLETE:
                state = "completed"
            elif index == current_index:
                state = "failed" if run.status == RunStatus.FAILED else "active"
            else:
                state = "waiting"

            # A step is done once the next one has started
            completed_at = None
            if state == "completed":
                if index + 1 < len(LIFECYCLE):
                    completed_at = reached_at.get(LIFECYCLE[index + 1].value)
                else:
                    completed_at = reached_at.get(step_status.value)

            steps.append(ProgressStep(
                id=step_status.value,
                title=STEP_TITLES[step_status],
                status=state,
                completed_at=completed_at,
            ))

        percent = 100 if run.status == RunStatus.COMPLETE else int(current_index * 100 / (len(LIFECYCLE) - 1))
        return RunProgress(
            run_id=run.id,
            status=run.status,
            percent_complete=percent,
            current_step=run.current_step,
            steps=steps,
            error=run.error,
        )

    # =========================================================================
    # Output
    # =========================================================================

    def record_output(
        self,
        run_id: str,
        output_json: Dict[str, Any],
        automation_name: Optional[str] = None
    ) -> RunOutput:
        """
        Store the final report JSON and mark the run complete.

        Root-level fit_score / verdict in the output are copied onto the run.

        Raises:
            ValueError: If output_json is not a JSON object
            NotFoundError: If the run does not exist
            InvalidTransitionError: If the run already failed
        """
        if not isinstance(output_json, dict):
            raise ValueError("output_json must be a JSON object")

        run = self.get_run(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        check_transition(run.status, RunStatus.COMPLETE)

        row = first_row(
            self.supabase.table("rag_run_outputs").insert({
                "run_id": run_id,
                "automation_name": automation_name,
                "output_json": output_json,
            }).execute()
        )
        if not row:
            raise ValueError("Failed to store run output")

        fit_score = output_json.get("fit_score")
        self.update_status(
            run_id,
            RunStatus.COMPLETE,
            fit_score=fit_score if isinstance(fit_score, (int, float)) else None,
            verdict=output_json.get("verdict") if isinstance(output_json.get("verdict"), str) else None,
        )
        return RunOutput(**row)

    def get_output(self, output_id: str) -> Optional[RunOutput]:
        row = first_row(
            self.supabase.table("rag_run_outputs").select("*").eq("id", output_id).limit(1).execute()
        )
        return RunOutput(**row) if row else None

    def get_output_for_run(self, run_id: str) -> Optional[RunOutput]:
        """Most recent output of a run."""
        row = first_row(
            self.supabase.table("rag_run_outputs").select("*").eq(
                "run_id", run_id
            ).order("created_at", desc=True).limit(1).execute()
        )
        return RunOutput(**row) if row else None

    def delete_run(self, run_id: str, delete_documents: bool = False) -> bool:
        """
        Delete a run. Outputs go via CASCADE.

        Args:
            run_id: Run to delete
            delete_documents: Also delete documents the run produced
        """
        if self.get_run(run_id) is None:
            return False

        if delete_documents:
            self.supabase.table("rag_documents").delete().eq("run_id", run_id).execute()

        self.supabase.table("rag_runs").delete().eq("id", run_id).execute()
        logger.info(f"Deleted run {run_id}" + (" and its documents" if delete_documents else ""))
        return True
