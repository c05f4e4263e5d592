#!/usr/bin/env python3
"""
Skill & Solution Validation - Completeness Checker

Scores each section of a skill document against minimum-viable-content
thresholds and derives the ready-to-export flag.

Thresholds:
    problem    statement of at least 10 characters
    scenarios  at least 1 scenario with a name and a description
    role       persona of at least 10 characters
    intents    at least 1 intent with a name and a description
    tools      at least 1 tool with a name, a description and an output
    policy     section present
    engine     provider and model both set

`ready_to_export` is the AND of every section plus "no blocking errors".
Warnings never block export.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ssv_validation_common import (
    Finding,
    FindingReport,
    as_dict,
    dict_items,
    get_intents,
    get_workflows,
    non_empty_string,
    register_checks,
)

MIN_PROBLEM_STATEMENT_CHARS = 10
MIN_PERSONA_CHARS = 10

SECTIONS = ("problem", "scenarios", "role", "intents", "tools", "policy", "engine")

COMPLETENESS_CHECKS = register_checks({f"completeness.{section}": "WARNING" for section in SECTIONS})

FIX_HINTS = {
    "problem": f"Describe the problem in at least {MIN_PROBLEM_STATEMENT_CHARS} characters",
    "scenarios": "Add a scenario with a name and a description",
    "role": f"Describe the agent persona in at least {MIN_PERSONA_CHARS} characters",
    "intents": "Add an intent with a name and a description",
    "tools": "Add a tool with a name, a description and an output definition",
    "policy": "Add a policy section",
    "engine": "Set both engine.provider and engine.model",
}


@dataclass
class CompletenessResult:
    """Per-section completeness and the derived export flag."""

    completeness: dict[str, bool] = field(default_factory=dict)
    ready_to_export: bool = False

    def to_dict(self) -> dict[str, object]:
        return {**self.completeness, "ready_to_export": self.ready_to_export}


# =============================================================================
# Section Predicates
# =============================================================================


def _long_enough(value: Any, minimum: int) -> bool:
    return isinstance(value, str) and len(value) >= minimum


def is_problem_complete(doc: dict[str, Any]) -> bool:
    return _long_enough(as_dict(doc.get("problem")).get("statement"), MIN_PROBLEM_STATEMENT_CHARS)


def are_scenarios_complete(doc: dict[str, Any]) -> bool:
    # `title` is the older spelling of a scenario's name
    return any(
        (non_empty_string(s.get("name")) or non_empty_string(s.get("title"))) and non_empty_string(s.get("description"))
        for s in dict_items(doc.get("scenarios"))
    )


def is_role_complete(doc: dict[str, Any]) -> bool:
    return _long_enough(as_dict(doc.get("role")).get("persona"), MIN_PERSONA_CHARS)


def are_intents_complete(doc: dict[str, Any]) -> bool:
    return any(non_empty_string(i.get("name")) and non_empty_string(i.get("description")) for i in get_intents(doc))


def are_tools_complete(doc: dict[str, Any]) -> bool:
    return any(
        non_empty_string(t.get("name")) and non_empty_string(t.get("description")) and t.get("output") is not None
        for t in dict_items(doc.get("tools"))
    )


def is_policy_complete(doc: dict[str, Any]) -> bool:
    return isinstance(doc.get("policy"), dict)


def is_engine_complete(doc: dict[str, Any]) -> bool:
    engine = as_dict(doc.get("engine"))
    return non_empty_string(engine.get("provider")) and non_empty_string(engine.get("model"))


SECTION_PREDICATES = {
    "problem": is_problem_complete,
    "scenarios": are_scenarios_complete,
    "role": is_role_complete,
    "intents": are_intents_complete,
    "tools": are_tools_complete,
    "policy": is_policy_complete,
    "engine": is_engine_complete,
}

# =============================================================================
# Main Check
# =============================================================================


def check_completeness(doc: Any, blocking: list[Finding] | None = None) -> CompletenessResult:
    """Check completeness of every section.

    Args:
        doc: Skill document
        blocking: Findings from earlier stages; any ERROR among them blocks export

    Returns:
        CompletenessResult with per-section flags and ready_to_export
    """
    if not isinstance(doc, dict):
        return CompletenessResult({section: False for section in SECTIONS}, False)

    completeness = {section: predicate(doc) for section, predicate in SECTION_PREDICATES.items()}
    has_errors = any(f.level == "ERROR" for f in blocking or [])
    return CompletenessResult(completeness, all(completeness.values()) and not has_errors)


def completeness_findings(result: CompletenessResult) -> list[Finding]:
    """One `completeness.<section>` warning per incomplete section."""
    report = FindingReport()
    for section in SECTIONS:
        if not result.completeness.get(section, False):
            report.add(
                f"completeness.{section}",
                section,
                f"Section '{section}' does not meet the minimum content for export",
                field=section,
                fix=FIX_HINTS[section],
            )
    return report.findings


def get_incomplete_sections(doc: Any) -> list[str]:
    """Sections that fail their threshold, in canonical order."""
    result = check_completeness(doc)
    return [section for section in SECTIONS if not result.completeness[section]]


def get_completeness_report(doc: Any) -> dict[str, Any]:
    """Detailed completeness report with per-section details and overall progress."""
    doc = doc if isinstance(doc, dict) else {}
    completeness = check_completeness(doc).completeness
    problem = as_dict(doc.get("problem"))
    role = as_dict(doc.get("role"))
    engine = as_dict(doc.get("engine"))
    policy = as_dict(doc.get("policy"))
    scenarios = dict_items(doc.get("scenarios"))
    intents = get_intents(doc)
    tools = dict_items(doc.get("tools"))

    report: dict[str, Any] = {
        "problem": {
            "complete": completeness["problem"],
            "details": {
                "has_statement": _long_enough(problem.get("statement"), MIN_PROBLEM_STATEMENT_CHARS),
                "has_context": non_empty_string(problem.get("context")),
                "has_goals": isinstance(problem.get("goals"), list) and bool(problem["goals"]),
            },
        },
        "scenarios": {
            "complete": completeness["scenarios"],
            "details": {"count": len(scenarios), "min_required": 1},
        },
        "role": {
            "complete": completeness["role"],
            "details": {
                "has_name": non_empty_string(role.get("name")),
                "has_persona": _long_enough(role.get("persona"), MIN_PERSONA_CHARS),
            },
        },
        "intents": {
            "complete": completeness["intents"],
            "details": {"count": len(intents), "min_required": 1},
        },
        "tools": {
            "complete": completeness["tools"],
            "details": {
                "count": len(tools),
                "min_required": 1,
                "fully_defined": sum(
                    1
                    for t in tools
                    if non_empty_string(t.get("name"))
                    and non_empty_string(t.get("description"))
                    and t.get("output") is not None
                ),
            },
        },
        "policy": {
            "complete": completeness["policy"],
            "details": {
                "workflows_count": len(get_workflows(doc)),
                "approvals_count": len(dict_items(policy.get("approvals"))),
            },
        },
        "engine": {
            "complete": completeness["engine"],
            "details": {
                "has_provider": non_empty_string(engine.get("provider")),
                "has_model": non_empty_string(engine.get("model")),
            },
        },
    }
    completed = sum(1 for section in SECTIONS if completeness[section])
    report["overall_progress"] = round(completed / len(SECTIONS) * 100)
    return report
