"""
ProjectService - Research projects and the workflows that run on them.

Every project owns a workspace knowledge base, created together with it.
Workflows point at an external report-generation service whose webhook
URL is kept apart in workflow_secrets.
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from ..core.database import get_supabase_client, first_row
from ..core.exceptions import ConflictError, NotFoundError
from ..core.models import KnowledgeBaseTarget, Project, SubjectType, Workflow

logger = logging.getLogger(__name__)

PROJECT_FIELDS = ("name", "geography", "category", "description", "status")
SUBJECT_TYPE_FIELDS = ("name", "label", "description", "icon", "enabled")


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProjectService:
    """Service for projects, subject types, workflows and workflow secrets."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    # ─── Projects ────────────────────────────────────────────────────

    def list_projects(self, search: Optional[str] = None) -> List[Project]:
        query = self.supabase.table("projects").select("*")
        if search:
            query = query.ilike("name", f"%{search}%")
        result = query.order("created_at", desc=True).execute()
        return [Project(**row) for row in (result.data or [])]

    def get_project(self, project_id: str) -> Optional[Project]:
        row = first_row(
            self.supabase.table("projects").select("*").eq("id", project_id).limit(1).execute()
        )
        return Project(**row) if row else None

    def create_project(
        self,
        name: str,
        geography: Optional[str] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        status: str = "active",
    ) -> Project:
        """
        Create a project together with its workspace knowledge base.

        The knowledge base is deleted again if the project insert fails.

        Raises:
            ValueError: If name is empty
        """
        if not name or not name.strip():
            raise ValueError("Project name is required")
        name = name.strip()

        slug = slugify(name)
        if first_row(self.supabase.table("projects").select("id").eq("slug", slug).limit(1).execute()):
            slug = f"{slug}-{int(time.time() * 1000)}"

        kb = first_row(
            self.supabase.table("rag_knowledge_bases").insert({
                "name": f"{name} Workspace",
                "description": f"Workspace for {name} project",
            }).execute()
        )
        if not kb:
            raise ValueError("Failed to create workspace knowledge base")

        try:
            row = first_row(
                self.supabase.table("projects").insert({
                    "name": name,
                    "slug": slug,
                    "geography": geography,
                    "category": category,
                    "description": description,
                    "status": status,
                    "kb_id": kb["id"],
                }).execute()
            )
            if not row:
                raise ValueError("Failed to create project record")
        except Exception:
            self.supabase.table("rag_knowledge_bases").delete().eq("id", kb["id"]).execute()
            raise

        logger.info(f"Created project {row['id']} ({slug}) with workspace {kb['id']}")
        return Project(**row)

    def update_project(self, project_id: str, **fields: Any) -> Optional[Project]:
        update_data = {k: v for k, v in fields.items() if k in PROJECT_FIELDS and v is not None}
        if not update_data:
            return self.get_project(project_id)

        row = first_row(
            self.supabase.table("projects").update(update_data).eq("id", project_id).execute()
        )
        return Project(**row) if row else None

    def delete_project(self, project_id: str) -> bool:
        result = self.supabase.table("projects").delete().eq("id", project_id).execute()
        return bool(result.data)

    def link_document(self, project_id: str, document_id: str) -> Dict[str, Any]:
        """Make a document from another knowledge base searchable in the project."""
        existing = first_row(
            self.supabase.table("project_documents").select("*").eq(
                "project_id", project_id
            ).eq("document_id", document_id).limit(1).execute()
        )
        if existing:
            return existing
        return first_row(
            self.supabase.table("project_documents").insert({
                "project_id": project_id,
                "document_id": document_id,
            }).execute()
        )

    def documents_by_workflow(self, project_id: str, workflow_type: str) -> List[Dict[str, Any]]:
        """
        Documents produced by a project's runs of one workflow, newest first.

        workflow_type is matched against the workflow slug, ignoring case and
        treating spaces, "-" and "_" alike. Documents come from the
        rag_run_documents links, falling back to rag_documents.run_id.

        Raises:
            ValueError: If workflow_type is empty
            NotFoundError: If the project does not exist
        """
        if not workflow_type or not workflow_type.strip():
            raise ValueError("workflow_type is required")
        if self.get_project(project_id) is None:
            raise NotFoundError(f"Project {project_id} not found")

        normalized = re.sub(r"[\s-]+", "_", workflow_type.strip().lower())
        workflow = first_row(
            self.supabase.table("workflows").select("id").in_(
                "slug", [normalized, normalized.replace("_", "-")]
            ).limit(1).execute()
        )
        if not workflow:
            return []

        runs = self.supabase.table("rag_runs").select("id").eq(
            "project_id", project_id
        ).eq("workflow_id", workflow["id"]).order("created_at", desc=True).execute().data or []
        run_ids = [run["id"] for run in runs]
        if not run_ids:
            return []

        links = self.supabase.table("rag_run_documents").select("run_id, document_id").in_(
            "run_id", run_ids
        ).execute().data or []

        documents: List[Dict[str, Any]] = []
        if links:
            run_by_document = {link["document_id"]: link["run_id"] for link in links}
            rows = self.supabase.table("rag_documents").select("id, title, created_at").in_(
                "id", list(run_by_document)
            ).is_("deleted_at", "null").execute().data or []
            documents = [{**row, "run_id": run_by_document[row["id"]]} for row in rows]

        if not documents:
            documents = self.supabase.table("rag_documents").select(
                "id, title, created_at, run_id"
            ).in_("run_id", run_ids).is_("deleted_at", "null").execute().data or []

        unique = {doc["id"]: doc for doc in documents}
        ordered = sorted(unique.values(), key=lambda doc: str(doc.get("created_at") or ""), reverse=True)
        return [
            {
                "id": doc["id"],
                "title": doc.get("title") or "Untitled",
                "created_at": doc.get("created_at"),
                "run_id": doc.get("run_id"),
                "document_ids": [doc["id"]],
            }
            for doc in ordered
        ]

    # ─── Workflows ───────────────────────────────────────────────────

    def list_workflows(self) -> List[Workflow]:
        result = self.supabase.table("workflows").select("*").order("name").execute()
        return [Workflow(**row) for row in (result.data or [])]

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        row = first_row(
            self.supabase.table("workflows").select("*").eq("id", workflow_id).limit(1).execute()
        )
        return Workflow(**row) if row else None

    def create_workflow(
        self,
        name: str,
        label: Optional[str] = None,
        knowledge_base_target: KnowledgeBaseTarget = KnowledgeBaseTarget.PROJECT,
        target_knowledge_base_id: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> Workflow:
        """
        Create a workflow, optionally storing its webhook URL.

        Raises:
            ValueError: If name is empty, or the target is "knowledgebase"
                without a target_knowledge_base_id
        """
        if not name:
            raise ValueError("Workflow name is required")
        target = KnowledgeBaseTarget(knowledge_base_target)
        if target == KnowledgeBaseTarget.KNOWLEDGEBASE and not target_knowledge_base_id:
            raise ValueError("target_knowledge_base_id is required when the target is 'knowledgebase'")

        row = first_row(
            self.supabase.table("workflows").insert({
                "name": name,
                "label": label,
                "slug": slugify(name),
                "knowledge_base_target": target.value,
                "target_knowledge_base_id": target_knowledge_base_id,
            }).execute()
        )
        if not row:
            raise ValueError("Failed to create workflow record")

        if webhook_url:
            self.set_webhook_url(row["id"], webhook_url)

        logger.info(f"Created workflow {row['id']} ({name})")
        return Workflow(**row)

    def set_webhook_url(self, workflow_id: str, webhook_url: str) -> None:
        """Store or replace the workflow's webhook URL."""
        if not webhook_url.startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an http(s) URL")
        if self.get_workflow(workflow_id) is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        self.supabase.table("workflow_secrets").upsert(
            {"workflow_id": workflow_id, "webhook_url": webhook_url},
            on_conflict="workflow_id",
        ).execute()

    def get_webhook_url(self, workflow_id: str) -> Optional[str]:
        row = first_row(
            self.supabase.table("workflow_secrets").select("webhook_url").eq(
                "workflow_id", workflow_id
            ).limit(1).execute()
        )
        return row.get("webhook_url") if row else None

    # ─── Subject types ───────────────────────────────────────────────

    def list_subject_types(self, enabled_only: bool = False) -> List[SubjectType]:
        query = self.supabase.table("subject_types").select("*")
        if enabled_only:
            query = query.eq("enabled", True)
        result = query.order("label").execute()
        return [SubjectType(**row) for row in (result.data or [])]

    def get_subject_type(self, subject_type_id: str) -> Optional[SubjectType]:
        row = first_row(
            self.supabase.table("subject_types").select("*").eq("id", subject_type_id).limit(1).execute()
        )
        return SubjectType(**row) if row else None

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        query = self.supabase.table("subject_types").select("id").eq("name", name)
        if exclude_id:
            query = query.neq("id", exclude_id)
        return first_row(query.limit(1).execute()) is not None

    def create_subject_type(
        self,
        name: str,
        label: str,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        enabled: bool = True,
    ) -> SubjectType:
        """
        Raises:
            ValueError: If name or label is empty
            ConflictError: If another subject type already uses the name
        """
        if not name or not name.strip():
            raise ValueError("Subject type name is required")
        if not label or not label.strip():
            raise ValueError("Subject type label is required")
        name = name.strip()
        if self._name_taken(name):
            raise ConflictError(f"Subject type with name '{name}' already exists")

        row = first_row(
            self.supabase.table("subject_types").insert({
                "name": name,
                "label": label.strip(),
                "description": description,
                "icon": icon,
                "enabled": enabled,
            }).execute()
        )
        if not row:
            raise ValueError("Failed to create subject type record")

        logger.info(f"Created subject type {row['id']} ({name})")
        return SubjectType(**row)

    def update_subject_type(self, subject_type_id: str, **fields: Any) -> SubjectType:
        """
        Update name, label, description, icon or enabled.

        Raises:
            NotFoundError: If the subject type does not exist
            ConflictError: If the new name belongs to another subject type
        """
        existing = self.get_subject_type(subject_type_id)
        if existing is None:
            raise NotFoundError(f"Subject type {subject_type_id} not found")

        update_data = {k: v for k, v in fields.items() if k in SUBJECT_TYPE_FIELDS and v is not None}
        if not update_data:
            return existing

        name = update_data.get("name")
        if name and name != existing.name and self._name_taken(name, exclude_id=subject_type_id):
            raise ConflictError(f"Subject type with name '{name}' already exists")

        update_data["updated_at"] = _now_iso()
        row = first_row(
            self.supabase.table("subject_types").update(update_data).eq("id", subject_type_id).execute()
        )
        return SubjectType(**(row or {**existing.model_dump(), **update_data}))

    def delete_subject_type(self, subject_type_id: str) -> bool:
        result = self.supabase.table("subject_types").delete().eq("id", subject_type_id).execute()
        return bool(result.data)
