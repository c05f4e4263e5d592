#!/usr/bin/env python3
"""
Skill & Solution Validation - Schema Validator

Structural checks for a skill document. For each declared section the
validator checks existence, required-field presence and primitive type
against a fixed per-section rule table. It never looks at semantics
(whether a referenced tool exists); that is the reference resolver's job.

Check codes are derived from the table: `schema.<section>` for a section
and `schema.<section>.<field>` for a field, e.g. `schema.tools.name` or
`schema.policy.workflows.steps`. A few advisory fields report their absence
as a warning under `schema.<section>.<field>.missing` instead.

Usage:
    from validate_schema import validate_schema
    findings = validate_schema(skill_doc)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ssv_validation_common import (
    Finding,
    FindingReport,
    Level,
    register_checks,
    shape_of,
)

VALID_DATA_TYPES = ("string", "number", "boolean", "object", "array", "text")

VALID_PHASES = (
    "PROBLEM_DISCOVERY",
    "SCENARIO_EXPLORATION",
    "INTENT_DEFINITION",
    "TOOLS_PROPOSAL",
    "TOOL_DEFINITION",
    "POLICY_DEFINITION",
    "MOCK_TESTING",
    "READY_TO_EXPORT",
    "EXPORTED",
    "DEPLOYED",
)

# =============================================================================
# Rule Table
# =============================================================================


@dataclass(frozen=True)
class FieldRule:
    """Shape rule for one field.

    Attributes:
        name: Field key (may be dotted for nested objects, e.g. "communication_style.tone")
        kind: Expected primitive type; "|" separates alternatives ("object|array")
        required: Absence is a finding
        non_empty: Strings must contain a non-blank character
        choices: Allowed values for enumerated strings
        minimum: Lower bound for numbers
        maximum: Upper bound for numbers
        items: Rules for dict entries when kind is "array"
        missing_level: Severity when a required field is absent or blank.
            Anything but ERROR is reported under its own
            `<code>.missing` check; a present value of the wrong shape is
            always an ERROR under `<code>`.
    """

    name: str
    kind: str
    required: bool = False
    non_empty: bool = False
    choices: tuple[str, ...] = ()
    minimum: float | None = None
    maximum: float | None = None
    items: tuple[FieldRule, ...] = ()
    missing_level: Level = "ERROR"

    def missing_code(self, code: str) -> str:
        return code if self.missing_level == "ERROR" else f"{code}.missing"


@dataclass(frozen=True)
class SectionRule:
    """Shape rule for a top-level section."""

    kind: str
    required: bool
    fields: tuple[FieldRule, ...] = ()
    items: tuple[FieldRule, ...] = ()


PARAMETER_RULES = (
    FieldRule("name", "string", required=True, non_empty=True),
    FieldRule("type", "string", choices=VALID_DATA_TYPES),
    FieldRule("required", "boolean"),
    FieldRule("description", "string"),
)

TOOL_RULES = (
    FieldRule("id", "string", required=True, non_empty=True),
    FieldRule("name", "string", required=True, non_empty=True),
    FieldRule("description", "string", required=True, non_empty=True, missing_level="WARNING"),
    FieldRule("parameters", "array", items=PARAMETER_RULES),
    FieldRule("inputs", "array", items=PARAMETER_RULES),
    FieldRule("output", "object", required=True, missing_level="WARNING"),
    FieldRule("output.type", "string", choices=VALID_DATA_TYPES),
    FieldRule("security", "object"),
    FieldRule("security.classification", "string"),
    FieldRule("mock_status", "string", choices=("untested", "tested", "skipped")),
)

INTENT_RULES = (
    FieldRule("id", "string", required=True, non_empty=True),
    FieldRule("name", "string"),
    FieldRule("description", "string", required=True, non_empty=True, missing_level="WARNING"),
    FieldRule("examples", "array"),
    FieldRule("maps_to_workflow", "string"),
    FieldRule(
        "entities",
        "array",
        items=(
            FieldRule("name", "string", required=True, non_empty=True),
            FieldRule("type", "string", choices=VALID_DATA_TYPES),
        ),
    ),
)

WORKFLOW_RULES = (
    FieldRule("id", "string", required=True, non_empty=True),
    FieldRule("name", "string", required=True, non_empty=True),
    FieldRule("steps", "array", required=True),
    FieldRule("trigger", "string"),
)

SECTION_RULES: dict[str, SectionRule] = {
    "problem": SectionRule(
        "object",
        required=True,
        fields=(
            FieldRule("statement", "string"),
            FieldRule("context", "string"),
            FieldRule("goals", "array"),
        ),
    ),
    "scenarios": SectionRule(
        "array",
        required=False,
        items=(
            FieldRule("id", "string", required=True, non_empty=True),
            FieldRule("name", "string"),
            FieldRule("title", "string"),
            FieldRule("description", "string"),
            FieldRule("steps", "array"),
        ),
    ),
    "role": SectionRule(
        "object",
        required=True,
        fields=(
            FieldRule("name", "string"),
            FieldRule("persona", "string"),
            FieldRule("goals", "array"),
            FieldRule("limitations", "array"),
            FieldRule("communication_style", "object"),
            FieldRule("communication_style.tone", "string", choices=("formal", "casual", "technical")),
            FieldRule("communication_style.verbosity", "string", choices=("concise", "balanced", "detailed")),
        ),
    ),
    "intents": SectionRule(
        "object|array",
        required=True,
        fields=(
            FieldRule("supported", "array"),
            FieldRule("thresholds", "object"),
            FieldRule("thresholds.accept", "number", minimum=0, maximum=1),
            FieldRule("thresholds.clarify", "number", minimum=0, maximum=1),
            FieldRule("thresholds.reject", "number", minimum=0, maximum=1),
            FieldRule("out_of_skill", "object"),
            FieldRule("out_of_skill.action", "string", choices=("redirect", "reject", "escalate")),
        ),
        items=INTENT_RULES,
    ),
    "tools": SectionRule("array", required=False, items=TOOL_RULES),
    "meta_tools": SectionRule("array", required=False, items=(FieldRule("name", "string"),)),
    "policy": SectionRule(
        "object",
        required=True,
        fields=(
            FieldRule("guardrails", "object|array"),
            FieldRule("guardrails.never", "array"),
            FieldRule("guardrails.always", "array"),
            FieldRule("workflows", "array", items=WORKFLOW_RULES),
            FieldRule(
                "approvals",
                "array",
                items=(
                    FieldRule("id", "string", required=True, non_empty=True),
                    FieldRule("tool_id", "string", required=True, non_empty=True),
                ),
            ),
        ),
    ),
    "engine": SectionRule(
        "object",
        required=True,
        fields=(
            FieldRule("provider", "string"),
            FieldRule("model", "string"),
            FieldRule("temperature", "number", minimum=0, maximum=2),
            FieldRule("rv2", "object"),
            FieldRule("rv2.max_iterations", "number", minimum=1),
            FieldRule("rv2.on_max_iterations", "string", choices=("escalate", "fail", "ask_user")),
            FieldRule("hlr", "object"),
            FieldRule("hlr.critic.strictness", "string", choices=("low", "medium", "high")),
            FieldRule("autonomy", "object"),
            FieldRule("autonomy.level", "string", choices=("autonomous", "supervised", "restricted")),
        ),
    ),
    "mocks": SectionRule(
        "array",
        required=False,
        items=(
            FieldRule("toolId", "string", required=True, non_empty=True),
            FieldRule("responses", "array"),
        ),
    ),
    "triggers": SectionRule(
        "array",
        required=False,
        items=(
            FieldRule("id", "string", required=True, non_empty=True),
            FieldRule("type", "string", required=True, choices=("schedule", "event")),
            FieldRule("enabled", "boolean"),
            FieldRule("prompt", "string"),
        ),
    ),
    "access_policy": SectionRule(
        "object|array",
        required=False,
        fields=(
            FieldRule(
                "rules",
                "array",
                items=(
                    FieldRule("tools", "array|string", required=True),
                    FieldRule("effect", "string", required=True),
                    FieldRule("when", "object"),
                    FieldRule("require", "object|array"),
                ),
            ),
        ),
    ),
    "response_filters": SectionRule(
        "array",
        required=False,
        items=(
            FieldRule("id", "string"),
            FieldRule("tools", "array|string"),
            FieldRule("strip_fields", "array"),
            FieldRule("mask_fields", "array"),
        ),
    ),
    "grant_mappings": SectionRule(
        "array",
        required=False,
        items=(
            FieldRule("tool", "string", required=True, non_empty=True),
            FieldRule("grants", "array"),
        ),
    ),
    "metadata": SectionRule("object", required=False),
}

# Rules applied to the top-level document itself
METADATA_RULES = (
    FieldRule("id", "string", required=True, non_empty=True),
    FieldRule("name", "string", required=True, non_empty=True),
    FieldRule("phase", "string", choices=VALID_PHASES),
)

# =============================================================================
# Check Registration
# =============================================================================


def _rule_codes(prefix: str, rules: tuple[FieldRule, ...]) -> dict[str, Level]:
    codes: dict[str, Level] = {}
    for rule in rules:
        code = f"{prefix}.{rule.name}"
        codes[code] = "ERROR"
        codes[rule.missing_code(code)] = rule.missing_level
        codes.update(_rule_codes(code, rule.items))
    return codes


def _build_check_table() -> dict[str, Level]:
    codes: dict[str, Level] = {"schema.document": "ERROR"}
    codes.update(_rule_codes("schema.metadata", METADATA_RULES))
    for section, rule in SECTION_RULES.items():
        codes[f"schema.{section}"] = "ERROR"
        codes.update(_rule_codes(f"schema.{section}", rule.fields))
        codes.update(_rule_codes(f"schema.{section}", rule.items))
    return codes


SCHEMA_CHECKS = register_checks(_build_check_table())

# =============================================================================
# Field Checking
# =============================================================================


def _lookup(container: dict[str, Any], dotted: str) -> Any:
    """Follow a dotted key path; a missing or non-object hop yields None."""
    value: Any = container
    for key in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _matches_kind(value: Any, kind: str) -> bool:
    return any(shape_of(value, alternative) == "valid" for alternative in kind.split("|"))


def _check_fields(
    container: dict[str, Any],
    rules: tuple[FieldRule, ...],
    code_prefix: str,
    path_prefix: str,
    section: str,
    report: FindingReport,
) -> None:
    for rule in rules:
        code = f"{code_prefix}.{rule.name}"
        path = f"{path_prefix}.{rule.name}" if path_prefix else rule.name
        value = _lookup(container, rule.name)

        if value is None:
            if rule.required:
                report.add(rule.missing_code(code), section, f"'{path}' is required", field=path)
            continue

        if not _matches_kind(value, rule.kind):
            report.add(
                code,
                section,
                f"'{path}' must be of type {rule.kind.replace('|', ' or ')}, got {type(value).__name__}",
                field=path,
            )
            continue

        if rule.non_empty and isinstance(value, str) and not value.strip():
            report.add(rule.missing_code(code), section, f"'{path}' must be a non-empty string", field=path)
        if rule.choices and value not in rule.choices:
            report.add(
                code,
                section,
                f"Invalid value '{value}' for '{path}'. Must be one of: {', '.join(rule.choices)}",
                field=path,
            )
        if rule.minimum is not None and isinstance(value, (int, float)) and value < rule.minimum:
            report.add(code, section, f"'{path}' must be at least {rule.minimum}", field=path)
        if rule.maximum is not None and isinstance(value, (int, float)) and value > rule.maximum:
            report.add(code, section, f"'{path}' must be at most {rule.maximum}", field=path)

        if rule.items and isinstance(value, list):
            _check_items(value, rule.items, code, path, section, report)


def _check_items(
    items: list[Any],
    rules: tuple[FieldRule, ...],
    code_prefix: str,
    path_prefix: str,
    section: str,
    report: FindingReport,
) -> None:
    for i, item in enumerate(items):
        item_path = f"{path_prefix}[{i}]"
        if not isinstance(item, dict):
            report.add(
                code_prefix, section, f"'{item_path}' must be an object, got {type(item).__name__}", field=item_path
            )
            continue
        _check_fields(item, rules, code_prefix, item_path, section, report)


# =============================================================================
# Main Validation
# =============================================================================


def validate_schema(doc: Any) -> list[Finding]:
    """Validate the shape of a skill document.

    Total over any input: a non-object document yields a single
    `schema.document` finding instead of an exception.

    Args:
        doc: Skill document as parsed from JSON/YAML

    Returns:
        List of schema findings in section order
    """
    report = FindingReport()

    if not isinstance(doc, dict):
        report.add("schema.document", "document", f"Skill document must be an object, got {type(doc).__name__}")
        return report.findings

    _check_fields(doc, METADATA_RULES, "schema.metadata", "", "metadata", report)

    for section, rule in SECTION_RULES.items():
        value = doc.get(section)
        code = f"schema.{section}"

        if value is None:
            if rule.required:
                report.add(code, section, f"Section '{section}' is required", field=section)
            continue

        if not _matches_kind(value, rule.kind):
            report.add(
                code,
                section,
                f"Section '{section}' must be of type {rule.kind.replace('|', ' or ')}, got {type(value).__name__}",
                field=section,
            )
            continue

        if isinstance(value, dict):
            _check_fields(value, rule.fields, code, section, section, report)
            # `intents: {supported: [...]}` carries the entries one level down
            if section == "intents" and isinstance(value.get("supported"), list):
                _check_items(value["supported"], rule.items, code, "intents.supported", section, report)
        elif isinstance(value, list):
            _check_items(value, rule.items, code, section, section, report)

    return report.findings


def failed_sections(findings: list[Finding]) -> frozenset[str]:
    """Sections whose container itself failed the schema (missing or wrong type).

    Downstream stages skip these sections instead of reasoning about a shape
    the schema stage already rejected.
    """
    return frozenset(f.section for f in findings if f.level == "ERROR" and f.field == f.section)
