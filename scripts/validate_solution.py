#!/usr/bin/env python3
"""
Skill & Solution Validation - Solution Validator

Orchestrates validation of a whole solution:

1. The skill pipeline (Schema -> Reference -> Completeness -> Security) for
   every skill, in declaration order
2. The connector static analyzer for every connector in the validation
   context, using that connector's embedded files from `mcp_store`
3. Solution-level contracts: skill ids, identity, grants, handoffs,
   routing, security contracts and connector bindings

Findings merge in a fixed order (skills, then connectors, then solution
checks) so the result is reproducible even when the per-skill and
per-connector work is fanned out over a thread pool.

Usage:
    uv run python scripts/validate_solution.py solution.json
    uv run python scripts/validate_solution.py solution.yaml --context context.json
    uv run python scripts/validate_solution.py solution.json --mcp-store ./mcp-store --workers 4

Exit codes:
    0 - No errors (warnings allowed)
    1 - ERROR findings present
    2 - File could not be read or parsed
    3 - WARNING findings present (only with --strict)
"""

from __future__ import annotations

import argparse
import sys
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable

from ssv_validation_common import (
    EXIT_USAGE,
    Finding,
    FindingReport,
    ValidationResult,
    ValidatorOptions,
    as_dict,
    as_list,
    dict_items,
    load_document,
    non_empty_string,
    register_checks,
)
from validate_connector import analyze_connector
from validate_skill import SkillOutcome, add_common_arguments, emit_result, resolve_options, run_skill_stages

SECTION = "solution"

# Handoff mechanisms that need no platform connector
INTERNAL_MECHANISMS = {"internal-message"}

SOLUTION_CHECKS = register_checks(
    {
        "solution.duplicate_skill_id": "ERROR",
        "solution.identity_actor_types": "WARNING",
        "solution.identity_admin_roles": "WARNING",
        "solution.identity_default_type_valid": "ERROR",
        "solution.identity_admin_role_valid": "WARNING",
        "solution.grant_provider_exists": "ERROR",
        "solution.grant_consumer_exists": "ERROR",
        "solution.grant_provider_missing": "ERROR",
        "solution.handoff_source_exists": "ERROR",
        "solution.handoff_target_exists": "ERROR",
        "solution.handoff_grant_undeclared": "WARNING",
        "solution.circular_handoffs": "ERROR",
        "solution.platform_connectors_declared": "WARNING",
        "solution.routing_target_exists": "ERROR",
        "solution.routing_grant_undeclared": "ERROR",
        "solution.routing_covers_channels": "WARNING",
        "solution.no_orphan_skills": "WARNING",
        "solution.mcp_bridge_connector_exists": "ERROR",
        "solution.skill_connector_declared": "WARNING",
        "solution.connector_unused": "WARNING",
        "solution.ui_capable_flag": "WARNING",
        "solution.ui_plugin_connector_exists": "ERROR",
        "solution.contract_consumer_exists": "ERROR",
        "solution.contract_provider_exists": "ERROR",
        "solution.contract_handoff_path": "WARNING",
        "solution.grants_passed_match": "ERROR",
    }
)


# =============================================================================
# Helpers
# =============================================================================


def skill_id_of(skill: dict[str, Any]) -> str | None:
    """A skill's id: top-level `id`, else `metadata.id`."""
    for candidate in (skill.get("id"), as_dict(skill.get("metadata")).get("id")):
        if non_empty_string(candidate):
            return candidate
    return None


def declared_skill_grants(skill: dict[str, Any]) -> set[str]:
    """Grant keys a skill issues through its grant mappings."""
    return {
        grant["key"]
        for mapping in dict_items(skill.get("grant_mappings"))
        for grant in dict_items(mapping.get("grants"))
        if non_empty_string(grant.get("key"))
    }


def string_list(value: Any) -> list[str]:
    return [item for item in as_list(value) if isinstance(item, str)]


def is_known(value: Any, ids: set[str]) -> bool:
    return isinstance(value, str) and value in ids


def find_handoff_path(handoffs: list[dict[str, Any]], source: str, target: str) -> list[dict[str, Any]] | None:
    """Shortest chain of handoffs from source to target (breadth-first), or None."""
    queue: deque[tuple[str, list[dict[str, Any]]]] = deque([(source, [])])
    visited: set[str] = set()
    while queue:
        current, path = queue.popleft()
        if current == target and path:
            return path
        if current in visited:
            continue
        visited.add(current)
        for handoff in handoffs:
            if handoff.get("from") == current and isinstance(handoff.get("to"), str):
                queue.append((handoff.get("to"), [*path, handoff]))
    return None


def detect_handoff_cycles(handoffs: list[dict[str, Any]]) -> list[list[str]]:
    """Cycles in the handoff graph, each closed (first node repeated at the end)."""
    graph: dict[str, list[str]] = {}
    for handoff in handoffs:
        source, target = handoff.get("from"), handoff.get("to")
        if isinstance(source, str) and isinstance(target, str):
            graph.setdefault(source, []).append(target)

    cycles: list[list[str]] = []
    visited: set[str] = set()
    stack: list[str] = []

    def visit(node: str) -> None:
        if node in stack:
            cycles.append([*stack[stack.index(node) :], node])
            return
        if node in visited:
            return
        visited.add(node)
        stack.append(node)
        for neighbor in graph.get(node, []):
            visit(neighbor)
        stack.pop()

    for node in list(graph):
        visit(node)
    return cycles


def connector_files(mcp_store: dict[str, Any], connector: dict[str, Any]) -> Any:
    """Embedded files for a connector; None when it has no usable id or no entry."""
    connector_id = connector.get("id")
    return mcp_store.get(connector_id) if isinstance(connector_id, str) else None


def run_in_order(tasks: list[Callable[[], Any]], workers: int) -> list[Any]:
    """Run tasks, optionally on a thread pool; results keep task order."""
    if workers <= 1 or len(tasks) <= 1:
        return [task() for task in tasks]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(task) for task in tasks]
        return [future.result() for future in futures]


# =============================================================================
# Solution-Level Checks
# =============================================================================


def check_skill_ids(skills: list[dict[str, Any]], report: FindingReport) -> None:
    seen: set[str] = set()
    for i, skill in enumerate(skills):
        skill_id = skill_id_of(skill)
        if skill_id is None:
            continue
        if skill_id in seen:
            report.add(
                "solution.duplicate_skill_id",
                SECTION,
                f'Duplicate skill id "{skill_id}" in solution',
                field=f"skills[{i}].id",
                fix="Give every skill in the solution a unique id",
            )
        seen.add(skill_id)


def check_identity(solution: dict[str, Any], report: FindingReport) -> None:
    identity = as_dict(solution.get("identity"))
    actor_keys = {a["key"] for a in dict_items(identity.get("actor_types")) if non_empty_string(a.get("key"))}
    admin_roles = string_list(identity.get("admin_roles"))

    if not actor_keys:
        report.add(
            "solution.identity_actor_types",
            SECTION,
            "No actor types defined",
            field="identity.actor_types",
            fix="Define the user types of the solution under identity.actor_types",
        )
        return

    if not admin_roles:
        report.add(
            "solution.identity_admin_roles",
            SECTION,
            "No admin roles defined",
            field="identity.admin_roles",
            fix="List the actor types that have admin privileges",
        )

    default_type = identity.get("default_actor_type")
    if default_type is not None and not is_known(default_type, actor_keys):
        report.add(
            "solution.identity_default_type_valid",
            SECTION,
            f'Default actor type "{default_type}" is not a defined actor type',
            field="identity.default_actor_type",
        )

    for role in admin_roles:
        if role not in actor_keys:
            report.add(
                "solution.identity_admin_role_valid",
                SECTION,
                f'Admin role "{role}" is not a defined actor type',
                field="identity.admin_roles",
            )


def check_grants(grants: list[dict[str, Any]], skill_ids: set[str], report: FindingReport) -> None:
    """Issuers and consumers must be skills; consumed grants need an issuer."""
    for i, grant in enumerate(grants):
        if grant.get("internal"):
            continue
        key = grant.get("key")
        issuers = string_list(grant.get("issued_by"))
        consumers = string_list(grant.get("consumed_by"))

        for issuer in issuers:
            if issuer not in skill_ids:
                report.add(
                    "solution.grant_provider_exists",
                    SECTION,
                    f'Grant "{key}" references issuer "{issuer}" which is not a skill in this solution',
                    field=f"grants[{i}].issued_by",
                )
        for consumer in consumers:
            if not is_known(consumer, skill_ids):
                report.add(
                    "solution.grant_consumer_exists",
                    SECTION,
                    f'Grant "{key}" references consumer "{consumer}" which is not a skill in this solution',
                    field=f"grants[{i}].consumed_by",
                )
        if consumers and not issuers:
            report.add(
                "solution.grant_provider_missing",
                SECTION,
                f'Grant "{key}" is consumed by {", ".join(consumers)} but has no issuer',
                field=f"grants[{i}].issued_by",
                fix="Add the skill that issues this grant to issued_by",
            )


def check_handoffs(
    solution: dict[str, Any],
    handoffs: list[dict[str, Any]],
    skill_ids: set[str],
    declared_grants: set[str],
    report: FindingReport,
) -> None:
    """Handoff endpoints, passed grants and mechanisms; then cycles."""
    platform_connectors = {
        c["id"] for c in dict_items(solution.get("platform_connectors")) if non_empty_string(c.get("id"))
    }

    for i, handoff in enumerate(handoffs):
        handoff_id = handoff.get("id", f"handoffs[{i}]")
        for end, check in (("from", "solution.handoff_source_exists"), ("to", "solution.handoff_target_exists")):
            if not is_known(handoff.get(end), skill_ids):
                role = "source" if end == "from" else "target"
                report.add(
                    check,
                    SECTION,
                    f'Handoff "{handoff_id}" references {role} skill "{handoff.get(end)}" which does not exist',
                    field=f"handoffs[{i}].{end}",
                )

        for grant in string_list(handoff.get("grants_passed")):
            if grant not in declared_grants:
                report.add(
                    "solution.handoff_grant_undeclared",
                    SECTION,
                    f'Handoff "{handoff_id}" passes grant "{grant}" which no skill or solution grant declares',
                    field=f"handoffs[{i}].grants_passed",
                )

        mechanism = handoff.get("mechanism")
        if non_empty_string(mechanism) and mechanism not in INTERNAL_MECHANISMS | platform_connectors:
            report.add(
                "solution.platform_connectors_declared",
                SECTION,
                f'Handoff "{handoff_id}" uses mechanism "{mechanism}" which is not declared in platform_connectors',
                field=f"handoffs[{i}].mechanism",
            )

    for cycle in detect_handoff_cycles(handoffs):
        report.add(
            "solution.circular_handoffs",
            SECTION,
            f"Circular handoff chain detected: {' → '.join(cycle)}",
            field="handoffs",
        )


def check_routing(
    routing: dict[str, Any],
    skills: list[dict[str, Any]],
    skill_ids: set[str],
    declared_grants: set[str],
    report: FindingReport,
) -> None:
    for skill in skills:
        for channel in string_list(skill.get("entry_channels")):
            if channel not in routing:
                report.add(
                    "solution.routing_covers_channels",
                    SECTION,
                    f'Skill "{skill_id_of(skill)}" declares entry channel "{channel}" '
                    "but no routing rule exists for it",
                    field=f"routing.{channel}",
                )

    for channel, config in routing.items():
        config = as_dict(config)
        target = config.get("default_skill")
        if target and not is_known(target, skill_ids):
            report.add(
                "solution.routing_target_exists",
                SECTION,
                f'Routing for channel "{channel}" targets skill "{target}" which does not exist',
                field=f"routing.{channel}.default_skill",
            )
        for grant in string_list(config.get("requires_grants")):
            if grant not in declared_grants:
                report.add(
                    "solution.routing_grant_undeclared",
                    SECTION,
                    f'Routing for channel "{channel}" requires grant "{grant}" which no skill declares',
                    field=f"routing.{channel}.requires_grants",
                    fix="Declare the grant in solution.grants or in a skill's grant_mappings",
                )


def check_orphans(
    skills: list[dict[str, Any]], routing: dict[str, Any], handoffs: list[dict[str, Any]], report: FindingReport
) -> None:
    """Every skill should be reachable via routing or take part in a handoff."""
    candidates = [as_dict(config).get("default_skill") for config in routing.values()]
    for handoff in handoffs:
        candidates.extend((handoff.get("from"), handoff.get("to")))
    reachable = {value for value in candidates if isinstance(value, str)}

    for i, skill in enumerate(skills):
        skill_id = skill_id_of(skill)
        if skill_id is not None and skill_id not in reachable:
            report.add(
                "solution.no_orphan_skills",
                SECTION,
                f'Skill "{skill_id}" is not reachable via routing or handoffs',
                field=f"skills[{i}]",
            )


def check_security_contracts(
    contracts: list[dict[str, Any]], handoffs: list[dict[str, Any]], skill_ids: set[str], report: FindingReport
) -> None:
    """Providers must reach consumers through handoffs that pass every required grant."""
    for i, contract in enumerate(contracts):
        name = contract.get("name", f"security_contracts[{i}]")
        consumer = contract.get("consumer")
        provider = contract.get("provider")

        if not is_known(consumer, skill_ids):
            report.add(
                "solution.contract_consumer_exists",
                SECTION,
                f'Security contract "{name}" references consumer "{consumer}" which does not exist',
                field=f"security_contracts[{i}].consumer",
            )
            continue
        if not provider:
            continue
        if not is_known(provider, skill_ids):
            report.add(
                "solution.contract_provider_exists",
                SECTION,
                f'Security contract "{name}" references provider "{provider}" which does not exist',
                field=f"security_contracts[{i}].provider",
            )
            continue

        path = find_handoff_path(handoffs, provider, consumer)
        if path is None:
            report.add(
                "solution.contract_handoff_path",
                SECTION,
                f'Security contract "{name}": no handoff path from "{provider}" to "{consumer}"',
                field=f"security_contracts[{i}]",
            )
            continue

        for grant in string_list(contract.get("requires_grants")):
            if not all(grant in string_list(h.get("grants_passed")) for h in path):
                report.add(
                    "solution.grants_passed_match",
                    SECTION,
                    f'Security contract "{name}": grant "{grant}" is not passed through every handoff '
                    f'from "{provider}" to "{consumer}"',
                    field=f"security_contracts[{i}].requires_grants",
                    fix=f'Add "{grant}" to grants_passed on each handoff of the chain',
                )


def check_connector_bindings(skills: list[dict[str, Any]], connector_ids: set[str], report: FindingReport) -> None:
    """mcp_bridge tools must point at a connector present in the validation context."""
    for skill in skills:
        skill_id = skill_id_of(skill)
        for j, tool in enumerate(dict_items(skill.get("tools"))):
            source = as_dict(tool.get("source"))
            connection_id = source.get("connection_id")
            if source.get("type") != "mcp_bridge" or not connection_id or is_known(connection_id, connector_ids):
                continue
            report.add(
                "solution.mcp_bridge_connector_exists",
                SECTION,
                f'Tool "{tool.get("name")}" in skill "{skill_id}" references connector "{connection_id}" '
                "which is not in the connectors list",
                field=f"tools[{j}].source.connection_id",
                connector=connection_id,
            )


def check_skill_connectors(
    skills: list[dict[str, Any]], context_ids: list[str], declared_ids: set[str], report: FindingReport
) -> None:
    """Skills may only name declared connectors, and every context connector should be used."""
    used: set[str] = set()
    for i, skill in enumerate(skills):
        skill_id = skill_id_of(skill)
        for tool in dict_items(skill.get("tools")):
            connection_id = as_dict(tool.get("source")).get("connection_id")
            if isinstance(connection_id, str):
                used.add(connection_id)
        for j, connector_id in enumerate(as_list(skill.get("connectors"))):
            if isinstance(connector_id, str):
                used.add(connector_id)
            if is_known(connector_id, declared_ids):
                continue
            report.add(
                "solution.skill_connector_declared",
                SECTION,
                f'Skill "{skill_id}" references connector "{connector_id}" which is not declared '
                "in the connectors or platform_connectors",
                field=f"skills[{i}].connectors[{j}]",
                connector=str(connector_id),
            )

    for connector_id in context_ids:
        if connector_id not in used:
            report.add(
                "solution.connector_unused",
                SECTION,
                f'Connector "{connector_id}" is defined but not referenced by any skill',
                connector=connector_id,
                fix="Reference it from a skill's connectors list or remove it",
            )


def check_ui_plugins(skills: list[dict[str, Any]], declared_ids: set[str] | None, report: FindingReport) -> None:
    """Skills with ui_plugins must be ui_capable and point at declared connectors.

    Connector references are only checked when declared_ids is known.
    """
    for i, skill in enumerate(skills):
        plugins = as_list(skill.get("ui_plugins"))
        if not plugins:
            continue
        skill_id = skill_id_of(skill)
        if skill.get("ui_capable") is not True:
            report.add(
                "solution.ui_capable_flag",
                SECTION,
                f'Skill "{skill_id}" has {len(plugins)} ui_plugins but ui_capable is not set to true',
                field=f"skills[{i}].ui_capable",
                fix="Set ui_capable: true",
            )
        if declared_ids is None:
            continue
        for j, plugin in enumerate(plugins):
            connector_id = as_dict(plugin).get("connector_id")
            if not connector_id or is_known(connector_id, declared_ids):
                continue
            report.add(
                "solution.ui_plugin_connector_exists",
                SECTION,
                f'UI plugin "{as_dict(plugin).get("id")}" in skill "{skill_id}" references connector '
                f'"{connector_id}" which is not declared',
                field=f"skills[{i}].ui_plugins[{j}].connector_id",
                connector=str(connector_id),
            )


def solution_findings(
    solution: dict[str, Any], skills: list[dict[str, Any]], context: dict[str, Any] | None
) -> list[Finding]:
    report = FindingReport()
    skill_ids = {skill_id for skill_id in map(skill_id_of, skills) if skill_id is not None}
    grants = dict_items(solution.get("grants"))
    handoffs = dict_items(solution.get("handoffs"))
    routing = as_dict(solution.get("routing"))

    declared_grants = {g["key"] for g in grants if non_empty_string(g.get("key"))}
    for skill in skills:
        declared_grants |= declared_skill_grants(skill)

    check_skill_ids(skills, report)
    check_identity(solution, report)
    check_grants(grants, skill_ids, report)
    check_handoffs(solution, handoffs, skill_ids, declared_grants, report)
    check_security_contracts(dict_items(solution.get("security_contracts")), handoffs, skill_ids, report)
    check_routing(routing, skills, skill_ids, declared_grants, report)
    check_orphans(skills, routing, handoffs, report)
    if context is None:
        check_ui_plugins(skills, None, report)
        return report.findings

    context_ids = [c["id"] for c in dict_items(context.get("connectors")) if non_empty_string(c.get("id"))]
    platform_ids = [c["id"] for c in dict_items(solution.get("platform_connectors")) if non_empty_string(c.get("id"))]
    declared_ids = set(context_ids) | set(platform_ids)
    check_connector_bindings(skills, set(context_ids), report)
    check_skill_connectors(skills, list(dict.fromkeys(context_ids)), declared_ids, report)
    check_ui_plugins(skills, declared_ids, report)
    return report.findings


# =============================================================================
# Main Validation
# =============================================================================


def validate_solution(
    solution: Any, context: Any = None, options: ValidatorOptions | None = None
) -> ValidationResult:
    """Validate a solution and its connectors.

    Args:
        solution: Solution document {id, name, skills[], grants[], handoffs[], routing, ...}
        context: Validation context {connectors: [...], mcp_store: {connector_id: [{path, content}]}}
        options: Pipeline options

    Returns:
        One merged ValidationResult; completeness and unresolved are keyed by skill id
    """
    options = options or ValidatorOptions()
    solution = as_dict(solution)
    context = context if isinstance(context, dict) else None
    skills = dict_items(solution.get("skills"))
    connectors = dict_items(context.get("connectors")) if context else []
    mcp_store = as_dict(context.get("mcp_store")) if context else {}

    tasks: list[Callable[[], Any]] = [lambda skill=skill: run_skill_stages(skill, options) for skill in skills]
    tasks += [
        lambda connector=connector: analyze_connector(connector, connector_files(mcp_store, connector))
        for connector in connectors
    ]
    results = run_in_order(tasks, options.workers)
    skill_outcomes: list[SkillOutcome] = results[: len(skills)]
    connector_findings: list[list[Finding]] = results[len(skills) :]

    findings: list[Finding] = []
    completeness: dict[str, Any] = {}
    unresolved: dict[str, Any] = {}
    ready_to_export = True
    for i, (skill, outcome) in enumerate(zip(skills, skill_outcomes)):
        skill_id = skill_id_of(skill)
        key = skill_id if skill_id is not None and skill_id not in completeness else f"skills[{i}]"
        findings.extend(f.with_skill(skill_id or key) for f in outcome.findings)
        completeness[key] = outcome.completeness
        unresolved[key] = outcome.unresolved
        ready_to_export = ready_to_export and outcome.ready_to_export

    for batch in connector_findings:
        findings.extend(batch)
    findings.extend(solution_findings(solution, skills, context))

    summary = {
        "skills": len(skills),
        "grants": len(dict_items(solution.get("grants"))),
        "handoffs": len(dict_items(solution.get("handoffs"))),
        "channels": len(as_dict(solution.get("routing"))),
        "platform_connectors": len(dict_items(solution.get("platform_connectors"))),
        "security_contracts": len(dict_items(solution.get("security_contracts"))),
        "connectors": len(connectors),
        "error_count": sum(1 for f in findings if f.level == "ERROR"),
        "warning_count": sum(1 for f in findings if f.level == "WARNING"),
    }
    return ValidationResult.from_findings(findings, completeness, unresolved, ready_to_export, summary)


# =============================================================================
# CLI
# =============================================================================


def read_mcp_store(root: Path) -> dict[str, list[dict[str, str]]]:
    """One sub-directory per connector id; every file becomes a {path, content} entry.

    Undecodable bytes (images, fonts under ui-dist/) are replaced, so binary
    assets still count as present.

    Raises:
        OSError: if a file cannot be read
    """
    store: dict[str, list[dict[str, str]]] = {}
    for connector_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        store[connector_dir.name] = [
            {
                "path": path.relative_to(connector_dir).as_posix(),
                "content": path.read_text(encoding="utf-8", errors="replace"),
            }
            for path in sorted(connector_dir.rglob("*"))
            if path.is_file()
        ]
    return store


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Validate a solution document and its connectors")
    parser.add_argument("solution_path", type=Path, help="Path to the solution document (JSON or YAML)")
    parser.add_argument("--context", type=Path, metavar="FILE", help="Validation context with connectors/mcp_store")
    parser.add_argument("--mcp-store", type=Path, metavar="DIR", help="Directory with one sub-directory per connector")
    parser.add_argument("--workers", type=int, metavar="N", help="Validate skills and connectors on N threads")
    add_common_arguments(parser)
    args = parser.parse_args()

    if not args.solution_path.is_file():
        print(f"Error: {args.solution_path} does not exist", file=sys.stderr)
        return EXIT_USAGE
    if args.workers is not None and args.workers < 1:
        print("Error: --workers must be at least 1", file=sys.stderr)
        return EXIT_USAGE
    if args.mcp_store is not None and not args.mcp_store.is_dir():
        print(f"Error: {args.mcp_store} is not a directory", file=sys.stderr)
        return EXIT_USAGE

    try:
        options = resolve_options(args)
        solution = load_document(args.solution_path)
        context = load_document(args.context) if args.context else None
        if args.mcp_store is not None:
            context = dict(as_dict(context))
            context["mcp_store"] = {**as_dict(context.get("mcp_store")), **read_mcp_store(args.mcp_store)}
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    result = validate_solution(solution, context, options)
    return emit_result(result, args, options, f"Solution Validation: {args.solution_path.name}")


if __name__ == "__main__":
    sys.exit(main())
