#!/usr/bin/env python3
"""
Skill & Solution Validation - Security Module

Checks that access-control artifacts exist and cover the tools that need
them. The access policy itself is never executed here; only its structure
and coverage are examined, rule by rule in declaration order.

Security Checks Implemented:
1. High-risk tools (pii_write, financial, destructive) must be matched by at
   least one access-policy rule (error)
2. PII tools (pii_read, pii_write) should have an applicable response filter (warning)
3. Classification and risk values must be known
4. Policy rules and grant mappings must reference defined tools
5. Policy effects must be allow / deny / constrain
6. Response-filter field paths must be syntactically valid
7. Tools with a data_owner_field should be constrained by that field
8. Rules shadowed by an earlier unconditional wildcard rule are unreachable
"""

from __future__ import annotations

import re
from typing import Any

from ssv_validation_common import (
    Finding,
    FindingReport,
    as_dict,
    as_list,
    dict_items,
    get_access_rules,
    non_empty_string,
    register_checks,
)
from validate_references import is_system_tool

# =============================================================================
# Classification Tables
# =============================================================================

VALID_CLASSIFICATIONS = ("public", "pii_read", "pii_write", "financial", "destructive")

# Tools with these classifications must never be reachable without an explicit gate
HIGH_RISK_CLASSIFICATIONS = ("pii_write", "financial", "destructive")

# Tools with these classifications should have their responses filtered
PII_CLASSIFICATIONS = ("pii_read", "pii_write")

VALID_RISK_LEVELS = ("low", "medium", "high", "critical")

VALID_EFFECTS = ("allow", "deny", "constrain")

# Filter-list values meaning "applies to every tool"
ALL_TOOLS_MARKERS = {"*", "all"}

# Dotted identifiers with optional bracket indices, e.g. "customer.address.line1" or "items[0].name"
FIELD_PATH_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*|\[\d+\])*$")

SECURITY_CHECKS = register_checks(
    {
        "security.policy_missing": "ERROR",
        "security.pii_no_filter": "WARNING",
        "security.unclassified_tool": "WARNING",
        "security.invalid_classification": "ERROR",
        "security.invalid_risk_level": "ERROR",
        "security.invalid_policy_effect": "ERROR",
        "security.policy_unknown_tool": "ERROR",
        "security.grant_mapping_unknown_tool": "ERROR",
        "security.invalid_filter_field_path": "ERROR",
        "security.data_owner_no_constrain": "WARNING",
        "security.rule_unreachable": "WARNING",
    }
)

# =============================================================================
# Coverage Helpers
# =============================================================================


def rule_tool_refs(rule: dict[str, Any]) -> list[str]:
    """Tool references of a rule; `tools` may be a list or the bare string "*"."""
    tools = rule.get("tools")
    if isinstance(tools, str):
        return [tools]
    return [ref for ref in as_list(tools) if isinstance(ref, str)]


def rule_matches_tool(rule: dict[str, Any], tool: dict[str, Any]) -> bool:
    """Would this rule match the tool (exact name, id or wildcard)?"""
    refs = rule_tool_refs(rule)
    return "*" in refs or tool.get("name") in refs or tool.get("id") in refs


def is_unconditional(rule: dict[str, Any]) -> bool:
    return not rule.get("when") and not rule.get("require")


def filter_applies_to_tool(response_filter: dict[str, Any], tool: dict[str, Any]) -> bool:
    """A filter with no/empty `tools`, or "all"/"*", applies to every tool."""
    tools = response_filter.get("tools")
    if tools is None or tools == [] or tools == "":
        return True
    refs = [tools] if isinstance(tools, str) else [ref for ref in as_list(tools) if isinstance(ref, str)]
    if not refs:
        return True
    return bool(ALL_TOOLS_MARKERS.intersection(refs)) or tool.get("name") in refs or tool.get("id") in refs


def has_constrain_for_field(doc: dict[str, Any], tool: dict[str, Any], field_name: str) -> bool:
    """Is the data-owner field injected by a constrain rule or captured by a grant mapping?"""
    for rule in get_access_rules(doc):
        if rule.get("effect") != "constrain" or not rule_matches_tool(rule, tool):
            continue
        for key, value in as_dict(rule.get("constrain")).items():
            if field_name in (key, value):
                return True

    for mapping in dict_items(doc.get("grant_mappings")):
        if mapping.get("tool") != tool.get("name"):
            continue
        if any(grant.get("value_from") == field_name for grant in dict_items(mapping.get("grants"))):
            return True

    return False


def _tool_label(tool: dict[str, Any], index: int) -> str:
    return tool.get("name") if non_empty_string(tool.get("name")) else f"tools[{index}]"


# =============================================================================
# Checks
# =============================================================================


def check_tool_coverage(doc: dict[str, Any], report: FindingReport) -> None:
    """Per-tool classification, policy coverage, filter coverage and data-owner checks."""
    rules = get_access_rules(doc)
    filters = dict_items(doc.get("response_filters"))

    for i, tool in enumerate(dict_items(doc.get("tools"))):
        label = _tool_label(tool, i)
        path = f"tools[{i}].security"
        security = as_dict(tool.get("security"))
        classification = security.get("classification")

        if classification is None or classification == "":
            report.add(
                "security.unclassified_tool",
                "security",
                f"Tool \"{label}\" has no security classification",
                field=f"{path}.classification",
                fix=f"Assign a classification ({', '.join(VALID_CLASSIFICATIONS)})",
            )
            continue

        if classification not in VALID_CLASSIFICATIONS:
            report.add(
                "security.invalid_classification",
                "security",
                f"Tool \"{label}\" has invalid classification \"{classification}\"",
                field=f"{path}.classification",
                fix=f"Must be one of: {', '.join(VALID_CLASSIFICATIONS)}",
            )

        risk = security.get("risk")
        if risk is not None and risk not in VALID_RISK_LEVELS:
            report.add(
                "security.invalid_risk_level",
                "security",
                f"Tool \"{label}\" has invalid risk level \"{risk}\"",
                field=f"{path}.risk",
                fix=f"Must be one of: {', '.join(VALID_RISK_LEVELS)}",
            )

        if classification in HIGH_RISK_CLASSIFICATIONS and not any(rule_matches_tool(r, tool) for r in rules):
            report.add(
                "security.policy_missing",
                "security",
                f"High-risk tool \"{label}\" ({classification}) is not matched by any access policy rule",
                field=path,
                fix=f"Add an access_policy rule whose tools include \"{label}\" or \"*\"",
            )

        if classification in PII_CLASSIFICATIONS and not any(filter_applies_to_tool(f, tool) for f in filters):
            report.add(
                "security.pii_no_filter",
                "security",
                f"PII tool \"{label}\" ({classification}) has no applicable response filter",
                field=path,
                fix="Add a response_filter that strips or masks sensitive fields for this tool",
            )

        data_owner_field = security.get("data_owner_field")
        if non_empty_string(data_owner_field) and not has_constrain_for_field(doc, tool, data_owner_field):
            report.add(
                "security.data_owner_no_constrain",
                "security",
                f"Tool \"{label}\" has data_owner_field \"{data_owner_field}\" "
                "but no constrain rule or grant mapping injects it",
                field=f"{path}.data_owner_field",
                fix=f"Add a constrain rule referencing \"{data_owner_field}\" or a grant mapping that captures it",
            )


def check_policy_rules(doc: dict[str, Any], tool_names: set[str], report: FindingReport) -> None:
    """Rule structure in declaration order: known tools, valid effects, reachability."""
    shadowed_by: int | None = None
    for i, rule in enumerate(get_access_rules(doc)):
        path = f"access_policy.rules[{i}]"

        for j, ref in enumerate(rule_tool_refs(rule)):
            if ref == "*" or ref in tool_names or is_system_tool(ref):
                continue
            report.add(
                "security.policy_unknown_tool",
                "security",
                f"Access policy rule references non-existent tool \"{ref}\"",
                field=f"{path}.tools[{j}]",
                fix="Update the tool name or define the missing tool",
            )

        effect = rule.get("effect")
        if effect is not None and effect not in VALID_EFFECTS:
            report.add(
                "security.invalid_policy_effect",
                "security",
                f"Access policy rule has invalid effect \"{effect}\"",
                field=f"{path}.effect",
                fix=f"Must be one of: {', '.join(VALID_EFFECTS)}",
            )

        # Rules are evaluated first-match-wins
        if shadowed_by is not None:
            report.add(
                "security.rule_unreachable",
                "security",
                f"Access policy rule {i} can never match: rule {shadowed_by} matches every call first",
                field=path,
                fix="Move the unconditional wildcard rule to the end of the policy",
            )
        elif "*" in rule_tool_refs(rule) and is_unconditional(rule):
            shadowed_by = i


def check_grant_mappings(doc: dict[str, Any], tool_names: set[str], report: FindingReport) -> None:
    for i, mapping in enumerate(dict_items(doc.get("grant_mappings"))):
        tool = mapping.get("tool")
        if not non_empty_string(tool) or tool in tool_names or is_system_tool(tool):
            continue
        report.add(
            "security.grant_mapping_unknown_tool",
            "security",
            f"Grant mapping references non-existent tool \"{tool}\"",
            field=f"grant_mappings[{i}].tool",
            fix="Update the tool name or define the missing tool",
        )


def check_filter_paths(doc: dict[str, Any], report: FindingReport) -> None:
    for i, response_filter in enumerate(dict_items(doc.get("response_filters"))):
        for key in ("strip_fields", "mask_fields"):
            for j, field_path in enumerate(as_list(response_filter.get(key))):
                if isinstance(field_path, str) and FIELD_PATH_PATTERN.match(field_path):
                    continue
                report.add(
                    "security.invalid_filter_field_path",
                    "security",
                    f"Invalid field path \"{field_path}\" in response filter",
                    field=f"response_filters[{i}].{key}[{j}]",
                    fix="Use dotted notation (e.g. \"customer.ssn\") or bracket notation (e.g. \"items[0].name\")",
                )


# =============================================================================
# Main Validation
# =============================================================================


def validate_security(doc: Any, skip_sections: frozenset[str] = frozenset()) -> list[Finding]:
    """Validate access-control coverage of a skill document.

    Args:
        doc: Skill document
        skip_sections: Sections that already failed the schema stage

    Returns:
        List of security.* findings
    """
    report = FindingReport()
    if not isinstance(doc, dict) or "tools" in skip_sections:
        return report.findings

    tool_names = {t["name"] for t in dict_items(doc.get("tools")) if non_empty_string(t.get("name"))}

    check_tool_coverage(doc, report)
    if "access_policy" not in skip_sections:
        check_policy_rules(doc, tool_names, report)
    if "grant_mappings" not in skip_sections:
        check_grant_mappings(doc, tool_names, report)
    if "response_filters" not in skip_sections:
        check_filter_paths(doc, report)

    return report.findings


def is_security_complete(doc: Any) -> bool:
    """True when every high-risk tool is matched by an access policy rule."""
    if not isinstance(doc, dict):
        return False
    rules = get_access_rules(doc)
    for tool in dict_items(doc.get("tools")):
        classification = as_dict(tool.get("security")).get("classification")
        if classification in HIGH_RISK_CLASSIFICATIONS and not any(rule_matches_tool(r, tool) for r in rules):
            return False
    return True


def get_security_report(doc: Any) -> dict[str, int]:
    """Coverage counts: classified tools, high-risk coverage, PII filter coverage."""
    doc = doc if isinstance(doc, dict) else {}
    tools = dict_items(doc.get("tools"))
    rules = get_access_rules(doc)
    filters = dict_items(doc.get("response_filters"))

    counts = {
        "total_tools": len(tools),
        "classified": 0,
        "unclassified": 0,
        "high_risk": 0,
        "high_risk_with_policy": 0,
        "pii_tools": 0,
        "pii_with_filters": 0,
        "grant_mappings_count": len(dict_items(doc.get("grant_mappings"))),
        "access_rules_count": len(rules),
        "response_filters_count": len(filters),
    }
    for tool in tools:
        classification = as_dict(tool.get("security")).get("classification")
        if not classification:
            counts["unclassified"] += 1
            continue
        counts["classified"] += 1
        if classification in HIGH_RISK_CLASSIFICATIONS:
            counts["high_risk"] += 1
            if any(rule_matches_tool(r, tool) for r in rules):
                counts["high_risk_with_policy"] += 1
        if classification in PII_CLASSIFICATIONS:
            counts["pii_tools"] += 1
            if any(filter_applies_to_tool(f, tool) for f in filters):
                counts["pii_with_filters"] += 1
    return counts
