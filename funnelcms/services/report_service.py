"""
ReportService - Registry of report automations and report loading.

Each run output carries an automation_name. The registry maps that name
(or one of its aliases) to the header and table-of-contents sections a
report viewer needs. Raw output JSON is normalized so viewers can rely on
a meta block with defaults.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from ..core.database import get_supabase_client, first_row
from .project_service import ProjectService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportHeader:
    report_type_label: str
    mode_label: str
    subtitle: str
    show_stats_cards: bool = False


@dataclass(frozen=True)
class Automation:
    """One report type produced by an external workflow."""
    name: str
    header: ReportHeader
    sections: Tuple[Tuple[str, str], ...]
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    def section_list(self) -> List[Dict[str, str]]:
        return [
            {"id": section_id, "number": f"{i:02d}", "title": title}
            for i, (section_id, title) in enumerate(self.sections, start=1)
        ]


NICHE_INTELLIGENCE_SECTIONS = (
    ("niche-profile", "Niche Profile"),
    ("market-intelligence", "Market Intelligence"),
    ("buyer-psychology", "Buyer Psychology"),
    ("how-they-position", "How They Position"),
    ("positioning-intel", "Positioning Intel"),
    ("messaging-inputs", "Messaging Inputs"),
    ("targeting-strategy", "Targeting Strategy"),
    ("lead-gen-strategy", "Lead Gen Strategy"),
    ("lead-gen-scoring", "Lead Gen Scoring"),
    ("research-links", "Research Links"),
)

ICP_SECTIONS = (
    ("icp-snapshot", "ICP Snapshot"),
    ("market-sizing", "Market Sizing"),
    ("primary-segments", "Primary Segments"),
    ("buying-committee", "Buying Committee"),
    ("purchase-journey", "Purchase Journey"),
    ("triggers", "Triggers"),
    ("competitive-context", "Competitive Context"),
    ("ops-outputs", "Ops Outputs"),
)

NICHE_EVALUATION_SECTIONS = (
    ("executive-summary", "Executive Summary"),
    ("quantitative-summary", "Quantitative Summary"),
    ("individual-scores", "Individual Scores"),
    ("consensus-flags", "Consensus Flags"),
    ("meta-synthesis", "Meta Synthesis"),
    ("individual-agent-evaluations", "Individual Agent Evaluations"),
)

OUTBOUND_SECTIONS = (
    ("our-positioning", "Our Positioning"),
    ("targeting-strategy", "Targeting Strategy"),
    ("segmentation-rules", "Segmentation Rules"),
    ("title-packs", "Title Packs"),
    ("enrichment-requirements", "Enrichment Requirements"),
    ("buyer-psychology", "Buyer Psychology"),
    ("messaging-strategy", "Messaging Strategy"),
    ("objection-handling", "Objection Handling"),
    ("sales-process", "Sales Process"),
    ("pilot", "Pilot"),
    ("targeting-quick-reference", "Targeting Quick Reference"),
)

OFFER_ARCHITECT_SECTIONS = (
    ("target-market", "Target Market"),
    ("what-you-sell", "What You Sell"),
    ("offer-structure", "Offer Structure"),
    ("pricing-architecture", "Pricing Architecture"),
    ("guarantee-design", "Guarantee Design"),
    ("value-proposition", "Value Proposition"),
    ("offer-naming", "Offer Naming & Framing"),
    ("lead-magnet-strategy", "Lead Magnet Strategy"),
    ("objection-handling", "Objection Handling"),
    ("proof-requirements", "Proof Requirements"),
    ("sales-enablement", "Sales Enablement"),
    ("outreach-strategy", "Outreach Strategy"),
    ("competitive-differentiation", "Competitive Differentiation"),
    ("implementation-roadmap", "Implementation Roadmap"),
)

AUTOMATIONS: Tuple[Automation, ...] = (
    Automation(
        name="niche-intelligence",
        header=ReportHeader(
            report_type_label="Niche Intelligence Report",
            mode_label="Lead Generation Targeting Mode",
            subtitle="Comprehensive Market Intelligence & Strategic Targeting Analysis",
            show_stats_cards=True,
        ),
        sections=NICHE_INTELLIGENCE_SECTIONS,
    ),
    Automation(
        name="descriptive-intelligence",
        header=ReportHeader(
            report_type_label="Niche Intelligence Report",
            mode_label="Descriptive Intelligence Mode",
            subtitle="Comprehensive Market Intelligence & Niche Analysis",
            show_stats_cards=True,
        ),
        sections=NICHE_INTELLIGENCE_SECTIONS,
    ),
    Automation(
        name="icp-research",
        aliases=("customer-intelligence", "niche-customer-research"),
        header=ReportHeader(
            report_type_label="ICP Research Report",
            mode_label="Customer Research Mode",
            subtitle="Ideal Customer Profile & Buyer Intelligence",
        ),
        sections=ICP_SECTIONS,
    ),
    Automation(
        name="niche-fit-evaluation",
        header=ReportHeader(
            report_type_label="Niche Evaluation Report",
            mode_label="Strategic Assessment Mode",
            subtitle="Detailed Niche Analysis & Opportunity Evaluation",
        ),
        sections=NICHE_EVALUATION_SECTIONS,
    ),
    Automation(
        name="outbound-strategy",
        aliases=("lead-gen-targeting",),
        header=ReportHeader(
            report_type_label="Outbound Strategy Report",
            mode_label="Lead Gen Targeting Mode",
            subtitle="Comprehensive Outbound Sales Strategy & Targeting Playbook",
            show_stats_cards=True,
        ),
        sections=OUTBOUND_SECTIONS,
    ),
    Automation(
        name="offer-architect",
        header=ReportHeader(
            report_type_label="Offer Architecture Report",
            mode_label="Offer Design Mode",
            subtitle="Complete Offer Architecture Including Pricing, Guarantees & Positioning",
            show_stats_cards=True,
        ),
        sections=OFFER_ARCHITECT_SECTIONS,
    ),
)

_BY_NAME: Dict[str, Automation] = {}
for _automation in AUTOMATIONS:
    _BY_NAME[_automation.name] = _automation
    for _alias in _automation.aliases:
        _BY_NAME[_alias] = _automation


def resolve_automation(name: Optional[str]) -> Optional[Automation]:
    """Registry entry for an automation name or alias, or None."""
    if not name:
        return None
    return _BY_NAME.get(name.strip().lower())


def is_evaluation_payload(output_json: Dict[str, Any]) -> bool:
    """Niche evaluations put verdict and score_details at the root and have no meta."""
    return bool(
        output_json.get("verdict")
        and output_json.get("score_details")
        and not output_json.get("meta")
        and not output_json.get("niche_profile")
    )


def normalize_output(output_json: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalize raw run output into {"meta": {...}, "data": {...}}.

    Evaluation payloads are wrapped whole under data.evaluation. Everything
    else keeps its data block and gets meta defaults filled in.
    """
    output_json = output_json or {}
    today = date.today().isoformat()

    if is_evaluation_payload(output_json):
        return {
            "meta": {
                "knowledge_base": "unknown",
                "mode": "niche_fit_evaluation",
                "confidence": 0,
                "generated_at": output_json.get("evaluation_timestamp") or today,
                "input": {"niche_name": output_json.get("niche_name") or "", "geo": ""},
            },
            "data": {"evaluation": output_json},
        }

    meta = output_json.get("meta") or {}
    meta_input = meta.get("input") or {}
    confidence = meta.get("confidence")

    normalized_meta = {
        **meta,
        "knowledge_base": meta.get("knowledge_base") or "unknown",
        "mode": meta.get("mode") or "lead_gen_targeting",
        "confidence": confidence if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else 0,
        "generated_at": meta.get("generated_at") or today,
        "input": {
            **meta_input,
            "niche_name": meta_input.get("niche_name") or "",
            "geo": meta_input.get("geo") or "",
        },
    }
    if not isinstance(meta.get("sources_used"), list):
        normalized_meta.pop("sources_used", None)

    return {"meta": normalized_meta, "data": output_json.get("data") or {}}


class ReportService:
    """Loads run outputs as viewer-ready reports."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()
        self.projects = ProjectService(self.supabase)

    def _find_output(self, output_or_run_id: str) -> Optional[Dict[str, Any]]:
        row = first_row(
            self.supabase.table("rag_run_outputs").select("*").eq(
                "id", output_or_run_id
            ).limit(1).execute()
        )
        if row:
            return row
        return first_row(
            self.supabase.table("rag_run_outputs").select("*").eq(
                "run_id", output_or_run_id
            ).order("created_at", desc=True).limit(1).execute()
        )

    def get_report(self, output_or_run_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a report by output id, falling back to run id.

        Returns:
            Dict with normalized data, header, sections, run status/input and
            knowledge base, project and workflow names, or None if not found
        """
        output = self._find_output(output_or_run_id)
        if output is None:
            return None

        run = first_row(
            self.supabase.table("rag_runs").select("*").eq("id", output["run_id"]).limit(1).execute()
        ) or {}

        workflow = self.projects.get_workflow(run["workflow_id"]) if run.get("workflow_id") else None
        project = self.projects.get_project(run["project_id"]) if run.get("project_id") else None
        kb = first_row(
            self.supabase.table("rag_knowledge_bases").select("id, name").eq(
                "id", run["knowledge_base_id"]
            ).limit(1).execute()
        ) if run.get("knowledge_base_id") else None

        # Older outputs lack automation_name; the workflow slug names the same thing
        automation_name = output.get("automation_name") or (workflow.slug if workflow else None)
        automation = resolve_automation(automation_name)
        if automation is None:
            logger.warning(f"Unknown automation '{automation_name}' for output {output['id']}")

        return {
            "id": output["id"],
            "run_id": output["run_id"],
            "automation_name": automation.name if automation else automation_name,
            "created_at": output.get("created_at"),
            "data": normalize_output(output.get("output_json")),
            "header": asdict(automation.header) if automation else None,
            "sections": automation.section_list() if automation else [],
            "run_status": run.get("status"),
            "run_input": run.get("input"),
            "knowledge_base_name": kb.get("name") if kb else None,
            "project_name": project.name if project else None,
            "workflow_name": workflow.name if workflow else None,
            "workflow_label": workflow.label if workflow else None,
        }
