#!/usr/bin/env python3
"""
Skill & Solution Validation - Reference Resolver

Builds an ID index for every ID-bearing section of a skill document and
resolves cross-references against it:
1. Workflow steps must name an existing tool (by id or name), a system tool,
   or another workflow
2. Mock `toolId` values must name an existing tool
3. Intent `maps_to_workflow` must name an existing workflow
4. Approval rules must name an existing tool
5. IDs are unique within each section (optionally across sections)
6. Workflows calling each other must not form a cycle

An absent or empty reference means "no reference declared" and always
resolves; only a non-empty reference that fails lookup is unresolved.
The document is never mutated: resolution flags are returned instead.

Usage:
    from validate_references import resolve_references
    resolution = resolve_references(skill_doc)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ssv_validation_common import (
    Finding,
    FindingReport,
    as_dict,
    as_list,
    dict_items,
    get_intents,
    get_workflows,
    non_empty_string,
    register_checks,
)

# Tools provided by the agent runtime; they never need a local definition
SYSTEM_TOOL_PREFIXES = ("sys.", "ui.", "cp.")

# ID-bearing sections, in index-building order
ID_SECTIONS = ("tools", "intents", "scenarios", "guardrails", "workflows")

REFERENCE_CHECKS = register_checks(
    {
        "reference.duplicate_id": "ERROR",
        "reference.cross_section_duplicate": "ERROR",
        "reference.duplicate_tool_name": "WARNING",
        "reference.tool_not_found": "ERROR",
        "reference.mock_tool_not_found": "ERROR",
        "reference.workflow_not_found": "ERROR",
        "reference.approval_tool_not_found": "ERROR",
        "reference.workflow_circular": "ERROR",
        "reference.intent_no_tools": "WARNING",
    }
)

# Intent ids are split on these to find keywords shared with tool names
KEYWORD_SPLIT_PATTERN = re.compile(r"[_\-.]")

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ReferenceResolution:
    """Outcome of reference resolution for one skill document.

    Attributes:
        resolved: True when nothing is unresolved and no duplicates exist
        unresolved: Missing tool identifiers, plus the ids of workflows, intents
            and mocks whose references failed
        duplicates: IDs that appear more than once within a section
        cross_section_duplicates: IDs shared by two different sections
        intent_workflow_resolved: intent id -> maps_to_workflow resolved flag
        steps_resolved: workflow id -> per-step resolved flags
        findings: reference.* findings
    """

    resolved: bool = True
    unresolved: dict[str, list[str]] = field(
        default_factory=lambda: {"tools": [], "workflows": [], "intents": [], "mocks": []}
    )
    duplicates: list[str] = field(default_factory=list)
    cross_section_duplicates: list[str] = field(default_factory=list)
    intent_workflow_resolved: dict[str, bool] = field(default_factory=dict)
    steps_resolved: dict[str, list[bool]] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {
            "resolved": self.resolved,
            "unresolved": self.unresolved,
            "duplicates": self.duplicates,
            "cross_section_duplicates": self.cross_section_duplicates,
        }


@dataclass
class ToolIndex:
    """Lookup over tool ids and case-insensitive tool names."""

    ids: set[str] = field(default_factory=set)
    names: set[str] = field(default_factory=set)

    def add(self, tool: dict[str, Any]) -> None:
        if non_empty_string(tool.get("id")):
            self.ids.add(tool["id"])
        if non_empty_string(tool.get("name")):
            self.names.add(tool["name"].lower())

    def has(self, ref: str) -> bool:
        return ref in self.ids or ref.lower() in self.names


# =============================================================================
# Helper Functions
# =============================================================================


def is_system_tool(name: str) -> bool:
    """Check if a tool name is provided by the runtime (sys.*, ui.*, cp.*)."""
    lower = name.lower()
    return any(lower.startswith(prefix) for prefix in SYSTEM_TOOL_PREFIXES)


def get_guardrails(doc: dict[str, Any]) -> list[dict[str, Any]]:
    """Return guardrail entries that carry structure.

    Guardrails arrive either as a list of objects or as `{never: [...], always: [...]}`
    where entries may be plain strings; only object entries can carry an id.
    """
    guardrails = as_dict(doc.get("policy")).get("guardrails")
    if isinstance(guardrails, dict):
        return dict_items(guardrails.get("never")) + dict_items(guardrails.get("always"))
    return dict_items(guardrails)


def collect_section_ids(doc: dict[str, Any], skip: frozenset[str] = frozenset()) -> dict[str, list[str]]:
    """Collect declared IDs per ID-bearing section, in declaration order."""
    entries = {
        "tools": dict_items(doc.get("tools")),
        "intents": get_intents(doc),
        "scenarios": dict_items(doc.get("scenarios")),
        "guardrails": get_guardrails(doc),
        "workflows": get_workflows(doc),
    }
    # Guardrails and workflows live inside the policy section
    owner = {"tools": "tools", "intents": "intents", "scenarios": "scenarios"}
    ids: dict[str, list[str]] = {}
    for section in ID_SECTIONS:
        if owner.get(section, "policy") in skip:
            ids[section] = []
            continue
        ids[section] = [item["id"] for item in entries[section] if non_empty_string(item.get("id"))]
    return ids


def _section_path(section: str) -> str:
    return {
        "intents": "intents",
        "guardrails": "policy.guardrails",
        "workflows": "policy.workflows",
    }.get(section, section)


def _append_unique(values: list[str], value: str) -> None:
    if value not in values:
        values.append(value)


# =============================================================================
# Checks
# =============================================================================


def check_duplicates(ids: dict[str, list[str]], resolution: ReferenceResolution, report: FindingReport) -> None:
    """Per-section uniqueness: two entities of one section may not share an ID."""
    for section in ID_SECTIONS:
        seen: set[str] = set()
        for entity_id in ids[section]:
            if entity_id in seen:
                report.add(
                    "reference.duplicate_id",
                    section,
                    f"Duplicate {section[:-1]} ID: \"{entity_id}\"",
                    field=f"{_section_path(section)}[].id",
                    fix=f"Each {section[:-1]} must have a unique ID",
                )
                _append_unique(resolution.duplicates, entity_id)
            seen.add(entity_id)


def check_cross_section_duplicates(
    ids: dict[str, list[str]], resolution: ReferenceResolution, report: FindingReport
) -> None:
    """Shared-namespace uniqueness: one ID may not name entities of two sections."""
    owners: dict[str, str] = {}
    for section in ID_SECTIONS:
        for entity_id in dict.fromkeys(ids[section]):
            first = owners.get(entity_id)
            if first is None:
                owners[entity_id] = section
                continue
            if first == section:
                continue
            report.add(
                "reference.cross_section_duplicate",
                section,
                f"ID \"{entity_id}\" is used by both {first} and {section}",
                field=f"{_section_path(section)}[].id",
                fix="Give entities in different sections distinct IDs",
            )
            _append_unique(resolution.cross_section_duplicates, entity_id)


def check_duplicate_tool_names(doc: dict[str, Any], report: FindingReport) -> None:
    """Tool names are matched case-insensitively, so duplicates are ambiguous."""
    seen: set[str] = set()
    for i, tool in enumerate(dict_items(doc.get("tools"))):
        name = tool.get("name")
        if not non_empty_string(name):
            continue
        if name.lower() in seen:
            report.add(
                "reference.duplicate_tool_name",
                "tools",
                f"Duplicate tool name: \"{name}\"",
                field=f"tools[{i}].name",
                fix="Tool names should be unique for clarity",
            )
        seen.add(name.lower())


def resolve_workflow_steps(
    workflows: list[dict[str, Any]],
    tools: ToolIndex,
    workflow_ids: set[str],
    resolution: ReferenceResolution,
    report: FindingReport,
) -> None:
    """Each step must resolve to a tool, a system tool or another workflow."""
    for wi, workflow in enumerate(workflows):
        workflow_id = workflow.get("id") if non_empty_string(workflow.get("id")) else f"policy.workflows[{wi}]"
        flags: list[bool] = []
        for si, step in enumerate(as_list(workflow.get("steps"))):
            step_ref = (step.get("tool") or step.get("tool_id")) if isinstance(step, dict) else step
            if not non_empty_string(step_ref):
                flags.append(True)
                continue
            resolved = tools.has(step_ref) or is_system_tool(step_ref) or step_ref in workflow_ids
            flags.append(resolved)
            if resolved:
                continue
            _append_unique(resolution.unresolved["tools"], step_ref)
            _append_unique(resolution.unresolved["workflows"], workflow_id)
            report.add(
                "reference.tool_not_found",
                "policy",
                f"Workflow \"{workflow_id}\" step references tool \"{step_ref}\" which is not defined",
                field=f"policy.workflows[{wi}].steps[{si}]",
                fix=f"Define tool \"{step_ref}\" or remove it from the workflow",
            )
        resolution.steps_resolved[workflow_id] = flags


def resolve_mocks(
    doc: dict[str, Any], tools: ToolIndex, resolution: ReferenceResolution, report: FindingReport
) -> None:
    """Every mock must target a defined tool."""
    for i, mock in enumerate(dict_items(doc.get("mocks"))):
        tool_id = mock.get("toolId")
        if not non_empty_string(tool_id) or tools.has(tool_id):
            continue
        _append_unique(resolution.unresolved["mocks"], tool_id)
        report.add(
            "reference.mock_tool_not_found",
            "mocks",
            f"Mock references tool \"{tool_id}\" which is not defined",
            field=f"mocks[{i}].toolId",
            fix=f"Define tool \"{tool_id}\" or remove the mock",
        )


def resolve_intent_workflows(
    intents: list[dict[str, Any]],
    workflow_ids: set[str],
    resolution: ReferenceResolution,
    report: FindingReport,
    path_prefix: str,
) -> None:
    """`maps_to_workflow`, when declared, must name an existing workflow."""
    for ii, intent in enumerate(intents):
        intent_id = intent.get("id") if non_empty_string(intent.get("id")) else f"{path_prefix}[{ii}]"
        target = intent.get("maps_to_workflow")
        if target is None or target == "":
            resolution.intent_workflow_resolved[intent_id] = True
            continue
        resolved = isinstance(target, str) and target in workflow_ids
        resolution.intent_workflow_resolved[intent_id] = resolved
        if resolved:
            continue
        _append_unique(resolution.unresolved["intents"], intent_id)
        report.add(
            "reference.workflow_not_found",
            "intents",
            f"Intent \"{intent_id}\" maps to workflow \"{target}\" which is not defined",
            field=f"{path_prefix}[{ii}].maps_to_workflow",
            fix=f"Define workflow \"{target}\" or remove the mapping",
        )


def resolve_approvals(
    doc: dict[str, Any], tools: ToolIndex, resolution: ReferenceResolution, report: FindingReport
) -> None:
    """Approval rules must gate a tool that exists."""
    for ri, rule in enumerate(dict_items(as_dict(doc.get("policy")).get("approvals"))):
        tool_id = rule.get("tool_id")
        if not non_empty_string(tool_id) or tools.has(tool_id) or is_system_tool(tool_id):
            continue
        _append_unique(resolution.unresolved["tools"], tool_id)
        report.add(
            "reference.approval_tool_not_found",
            "policy",
            f"Approval rule references tool \"{tool_id}\" which is not defined",
            field=f"policy.approvals[{ri}].tool_id",
            fix=f"Define tool \"{tool_id}\" or update the approval rule",
        )


def check_intent_tool_mapping(
    intents: list[dict[str, Any]],
    tools: ToolIndex,
    workflows: list[dict[str, Any]],
    workflow_ids: set[str],
    report: FindingReport,
    path_prefix: str,
) -> None:
    """Warn about intents nothing in the skill can fulfil.

    An intent is connected when it maps to an existing workflow, when a
    workflow's trigger is the intent id, or when a tool name contains one of
    the intent id's keywords (longer than two characters).
    """
    triggers = {wf["trigger"] for wf in workflows if non_empty_string(wf.get("trigger"))}
    tool_names = " ".join(sorted(tools.names))

    for ii, intent in enumerate(intents):
        intent_id = intent.get("id")
        if not non_empty_string(intent_id):
            continue
        target = intent.get("maps_to_workflow")
        if (isinstance(target, str) and target in workflow_ids) or intent_id in triggers:
            continue
        keywords = [kw for kw in KEYWORD_SPLIT_PATTERN.split(intent_id.lower()) if len(kw) > 2]
        if any(kw in tool_names for kw in keywords):
            continue
        report.add(
            "reference.intent_no_tools",
            "intents",
            f"Intent \"{intent_id}\" has no mapped workflow and no obviously related tools",
            field=f"{path_prefix}[{ii}]",
            fix=f"Add maps_to_workflow, create a workflow with trigger \"{intent_id}\", "
            "or ensure tool names relate to this intent",
        )


def detect_workflow_cycles(workflows: list[dict[str, Any]], workflow_ids: set[str], report: FindingReport) -> None:
    """Workflow steps may call other workflows; the call graph must be acyclic."""
    graph: dict[str, list[str]] = {}
    for wf in workflows:
        wf_id = wf.get("id")
        if not non_empty_string(wf_id):
            continue
        refs = [s for s in as_list(wf.get("steps")) if isinstance(s, str) and s in workflow_ids and s != wf_id]
        graph.setdefault(wf_id, []).extend(dict.fromkeys(refs))

    visited: set[str] = set()
    visiting: list[str] = []

    def visit(node: str) -> None:
        if node in visiting:
            cycle = visiting[visiting.index(node) :] + [node]
            report.add(
                "reference.workflow_circular",
                "policy",
                f"Circular workflow reference detected: {' → '.join(cycle)}",
                field="policy.workflows",
                fix="Remove the circular dependency between workflows",
            )
            return
        if node in visited:
            return
        visiting.append(node)
        for neighbor in graph.get(node, []):
            visit(neighbor)
        visiting.pop()
        visited.add(node)

    for node in graph:
        visit(node)


# =============================================================================
# Main Resolution
# =============================================================================


def resolve_references(
    doc: Any,
    cross_section_ids: bool = False,
    skip_sections: frozenset[str] = frozenset(),
) -> ReferenceResolution:
    """Resolve all cross-references in a skill document.

    Args:
        doc: Skill document
        cross_section_ids: Also require IDs to be unique across sections
        skip_sections: Sections that already failed the schema stage

    Returns:
        ReferenceResolution with unresolved lists, duplicates and findings
    """
    resolution = ReferenceResolution()
    if not isinstance(doc, dict):
        return resolution

    report = FindingReport()

    tools = ToolIndex()
    if "tools" not in skip_sections:
        for tool in dict_items(doc.get("tools")):
            tools.add(tool)
    for meta_tool in dict_items(doc.get("meta_tools")):
        tools.add(meta_tool)

    workflows = [] if "policy" in skip_sections else get_workflows(doc)
    workflow_ids = {wf["id"] for wf in workflows if non_empty_string(wf.get("id"))}
    intents = [] if "intents" in skip_sections else get_intents(doc)
    intent_path = "intents.supported" if isinstance(doc.get("intents"), dict) else "intents"

    ids = collect_section_ids(doc, skip_sections)
    check_duplicates(ids, resolution, report)
    if cross_section_ids:
        check_cross_section_duplicates(ids, resolution, report)
    if "tools" not in skip_sections:
        check_duplicate_tool_names(doc, report)

    resolve_workflow_steps(workflows, tools, workflow_ids, resolution, report)
    if "mocks" not in skip_sections:
        resolve_mocks(doc, tools, resolution, report)
    resolve_intent_workflows(intents, workflow_ids, resolution, report, intent_path)
    if "policy" not in skip_sections:
        resolve_approvals(doc, tools, resolution, report)

    check_intent_tool_mapping(intents, tools, workflows, workflow_ids, report, intent_path)
    detect_workflow_cycles(workflows, workflow_ids, report)

    resolution.findings = report.findings
    resolution.resolved = (
        not any(resolution.unresolved.values())
        and not resolution.duplicates
        and not resolution.cross_section_duplicates
    )
    return resolution


def are_all_references_resolved(doc: Any) -> bool:
    """Shortcut: True when every declared reference resolves."""
    return resolve_references(doc).resolved
