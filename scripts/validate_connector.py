#!/usr/bin/env python3
"""
Skill & Solution Validation - Connector Static Analyzer

Inspects a connector bundle's embedded source files to predict deployment
failures before the connector is shipped:

1. Dependency extraction from every .js/.mjs/.cjs file
2. Node builtin filtering (only externally-installed packages remain)
3. package.json presence when external packages are used (error)
4. package.json dependency completeness (warning)
5. Deprecated /opt/mcp-connectors/ launch paths (error)
6. /mcp-store/<segment>/ paths that do not match the connector id (warning)
7. UI-capable connector requirements (transport, ui.* tools and the
   ui.listPlugins response shape, ui-dist files)

Connectors without embedded files (prebuilt connectors) are skipped
entirely. The analyzer is a pure function of (connector, files): nothing is
read from disk and running it twice yields identical findings.

Usage:
    from validate_connector import analyze_connector
    findings = analyze_connector({"id": "my-mcp", "args": [...]}, files)
"""

from __future__ import annotations

import json
import re
from typing import Any

from js_import_scanner import SCANNED_EXTENSIONS, extract_specifiers, package_root
from ssv_validation_common import Finding, FindingReport, as_dict, as_list, register_checks

# Node.js builtin modules; "node:"-prefixed specifiers are always builtins
NODE_BUILTINS = frozenset(
    {
        "assert",
        "async_hooks",
        "buffer",
        "child_process",
        "cluster",
        "console",
        "crypto",
        "dgram",
        "dns",
        "events",
        "fs",
        "http",
        "https",
        "module",
        "net",
        "os",
        "path",
        "perf_hooks",
        "process",
        "punycode",
        "querystring",
        "readline",
        "stream",
        "string_decoder",
        "timers",
        "tls",
        "url",
        "util",
        "v8",
        "vm",
        "worker_threads",
        "zlib",
    }
)

DEPRECATED_PATH_PREFIX = "/opt/mcp-connectors/"
MCP_STORE_PATH_PATTERN = re.compile(r"/mcp-store/([^/]+)/")

MANIFEST_NAME = "package.json"
UI_DIST_PREFIX = "ui-dist/"
UI_REQUIRED_TOOLS = ("ui.listPlugins", "ui.getPlugin")

# ui.listPlugins must answer { plugins: [...] }; a stringified array literal near it is a bare list
LIST_PLUGINS_BARE_ARRAY_PATTERN = re.compile(r"""['"]ui\.listPlugins['"][\s\S]{0,500}?JSON\.stringify\s*\(\s*\[""")
PLUGINS_WRAPPER_MARKERS = ("plugins:", '"plugins"')

# Number of offending specifiers named in the missing-manifest message
MAX_REPORTED_SPECIFIERS = 5

CONNECTOR_CHECKS = register_checks(
    {
        "connector_missing_package_json": "ERROR",
        "connector_missing_dependencies": "WARNING",
        "connector_deprecated_path": "ERROR",
        "connector_path_mismatch": "WARNING",
        "connector_ui_transport": "ERROR",
        "connector_ui_missing_tool": "ERROR",
        "connector_ui_listplugins_format": "WARNING",
        "connector_ui_dist_files": "WARNING",
    }
)

SECTION = "connectors"


# =============================================================================
# File Helpers
# =============================================================================


def normalize_files(files: Any) -> list[dict[str, str]]:
    """Keep well-formed {path, content} entries; paths lose a leading "./"."""
    entries = []
    for entry in as_list(files):
        if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
            continue
        content = entry.get("content")
        path = entry["path"].removeprefix("./")
        entries.append({"path": path, "content": content if isinstance(content, str) else ""})
    return entries


def is_builtin(specifier: str) -> bool:
    if specifier.startswith("node:"):
        return True
    return package_root(specifier) in NODE_BUILTINS


def external_specifiers(files: list[dict[str, str]]) -> list[str]:
    """Non-builtin specifiers across all scanned source files, first appearance first."""
    specifiers: list[str] = []
    for entry in files:
        if not entry["path"].endswith(SCANNED_EXTENSIONS):
            continue
        for specifier in extract_specifiers(entry["content"]):
            if not is_builtin(specifier) and specifier not in specifiers:
                specifiers.append(specifier)
    return specifiers


def unique_roots(specifiers: list[str]) -> list[str]:
    roots: list[str] = []
    for specifier in specifiers:
        root = package_root(specifier)
        if root not in roots:
            roots.append(root)
    return roots


def find_manifest(files: list[dict[str, str]]) -> dict[str, str] | None:
    return next((entry for entry in files if entry["path"] == MANIFEST_NAME), None)


def declared_dependencies(manifest: dict[str, str]) -> set[str] | None:
    """Keys of dependencies + devDependencies, or None when the manifest is unparsable."""
    try:
        data = json.loads(manifest["content"])
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    declared: set[str] = set()
    for key in ("dependencies", "devDependencies"):
        declared.update(as_dict(data.get(key)).keys())
    return declared


def manifest_skeleton(connector_id: str, roots: list[str]) -> str:
    """Ready-to-paste package.json for the given package roots."""
    skeleton = {"name": connector_id, "private": True, "dependencies": {root: "*" for root in roots}}
    return json.dumps(skeleton, indent=2)


# =============================================================================
# Checks
# =============================================================================


def check_manifest(connector_id: str, files: list[dict[str, str]], report: FindingReport) -> None:
    """package.json presence and dependency completeness."""
    specifiers = external_specifiers(files)
    if not specifiers:
        return

    manifest = find_manifest(files)
    if manifest is None:
        named = specifiers[:MAX_REPORTED_SPECIFIERS]
        report.add(
            "connector_missing_package_json",
            SECTION,
            f'Connector "{connector_id}" source requires npm packages ({", ".join(named)}) '
            f"but no {MANIFEST_NAME} is included in its files. npm install cannot run and the "
            "connector will crash at startup with MODULE_NOT_FOUND.",
            field=f"mcp_store.{connector_id}",
            connector=connector_id,
            fix=f"Add a {MANIFEST_NAME} to mcp_store.{connector_id}:\n"
            + manifest_skeleton(connector_id, unique_roots(named)),
        )
        return

    declared = declared_dependencies(manifest)
    if declared is None:
        return

    for root in unique_roots(specifiers):
        if root in declared:
            continue
        report.add(
            "connector_missing_dependencies",
            SECTION,
            f'Connector "{connector_id}" source requires "{root}" but it is not declared in '
            f"{MANIFEST_NAME} dependencies. The connector may crash at startup.",
            field=f"mcp_store.{connector_id}.{MANIFEST_NAME}",
            connector=connector_id,
            fix=f'Add to {MANIFEST_NAME} dependencies: "{root}": "*"',
        )


def launch_values(connector: dict[str, Any]) -> list[tuple[str, str]]:
    """(field, value) pairs for the connector's command and string args."""
    values = []
    if isinstance(connector.get("command"), str):
        values.append(("command", connector["command"]))
    for i, arg in enumerate(as_list(connector.get("args"))):
        if isinstance(arg, str):
            values.append((f"args[{i}]", arg))
    return values


def check_deprecated_paths(connector_id: str, connector: dict[str, Any], report: FindingReport) -> None:
    for field_name, value in launch_values(connector):
        if DEPRECATED_PATH_PREFIX not in value:
            continue
        report.add(
            "connector_deprecated_path",
            SECTION,
            f'Connector "{connector_id}" uses deprecated path "{DEPRECATED_PATH_PREFIX}" in {field_name}. '
            "This mount is not supported at deploy time.",
            field=f"connectors.{connector_id}.{field_name}",
            connector=connector_id,
            fix="Remove command and args; the runtime will auto-resolve the entry point from the "
            f'uploaded files. For explicit control use "/mcp-store/{connector_id}/server.js".',
        )


def check_path_consistency(connector_id: str, connector: dict[str, Any], report: FindingReport) -> None:
    for field_name, value in launch_values(connector):
        if not field_name.startswith("args"):
            continue
        match = MCP_STORE_PATH_PATTERN.search(value)
        if match is None or match.group(1) == connector_id:
            continue
        segment = match.group(1)
        report.add(
            "connector_path_mismatch",
            SECTION,
            f'Connector "{connector_id}" {field_name} references "/mcp-store/{segment}/" but the connector '
            f'id is "{connector_id}". Files are stored at /mcp-store/{connector_id}/.',
            field=f"connectors.{connector_id}.{field_name}",
            connector=connector_id,
            fix=f'Change the path to "/mcp-store/{connector_id}/..." or omit command/args to auto-resolve.',
        )


def check_ui_connector(
    connector_id: str,
    connector: dict[str, Any],
    files: list[dict[str, str]],
    report: FindingReport,
) -> None:
    """UI-capable connectors must run over stdio and serve the ui.* plugin tools."""
    if connector.get("ui_capable") is not True:
        return

    transport = connector.get("transport") or "stdio"
    if transport != "stdio":
        report.add(
            "connector_ui_transport",
            SECTION,
            f'UI-capable connector "{connector_id}" must use transport "stdio", got "{transport}"',
            field=f"connectors.{connector_id}.transport",
            connector=connector_id,
            fix='Set transport: "stdio"',
        )

    source = "\n".join(entry["content"] for entry in files if entry["path"].endswith(SCANNED_EXTENSIONS))
    for tool in UI_REQUIRED_TOOLS:
        if tool in source:
            continue
        report.add(
            "connector_ui_missing_tool",
            SECTION,
            f'UI-capable connector "{connector_id}" does not implement the "{tool}" tool',
            field=f"mcp_store.{connector_id}",
            connector=connector_id,
            fix=f'Implement a "{tool}" tool in the server source',
        )

    bare_array = LIST_PLUGINS_BARE_ARRAY_PATTERN.search(source)
    if bare_array:
        window = source[max(0, bare_array.start() - 50) : bare_array.end() + 200]
        if not any(marker in window for marker in PLUGINS_WRAPPER_MARKERS):
            report.add(
                "connector_ui_listplugins_format",
                SECTION,
                f'UI-capable connector "{connector_id}": ui.listPlugins appears to return a bare array '
                "instead of { plugins: [...] }",
                field=f"mcp_store.{connector_id}",
                connector=connector_id,
                fix="Return JSON.stringify({ plugins: [...] }) from ui.listPlugins",
            )

    if not any(entry["path"].startswith(UI_DIST_PREFIX) for entry in files):
        report.add(
            "connector_ui_dist_files",
            SECTION,
            f'UI-capable connector "{connector_id}" has no {UI_DIST_PREFIX} files. '
            f"Plugin assets belong in {UI_DIST_PREFIX}<plugin-id>/<version>/.",
            field=f"mcp_store.{connector_id}",
            connector=connector_id,
        )


# =============================================================================
# Main Analysis
# =============================================================================


def analyze_connector(connector: Any, files: Any) -> list[Finding]:
    """Run every static check on one connector bundle.

    Args:
        connector: Launch configuration {id, transport, command?, args?, ui_capable?}
        files: Embedded source files [{path, content}]

    Returns:
        Findings tagged with the connector id; empty when there are no files
    """
    entries = normalize_files(files)
    if not entries or not isinstance(connector, dict):
        return []

    raw_id = connector.get("id")
    connector_id = "" if raw_id is None else str(raw_id)
    report = FindingReport()

    check_manifest(connector_id, entries, report)
    check_deprecated_paths(connector_id, connector, report)
    check_path_consistency(connector_id, connector, report)
    check_ui_connector(connector_id, connector, entries, report)

    return report.findings
