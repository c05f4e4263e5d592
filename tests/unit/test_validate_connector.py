#!/usr/bin/env python3
"""Tests for validate_connector.py - static analysis of connector bundles.

These check that the analyzer catches common deployment failures:
- Missing package.json when server code uses npm packages
- Missing dependencies in package.json
- Deprecated /opt/mcp-connectors/ paths
- Path mismatches between connector id and /mcp-store/ reference
- UI-capable connector requirements
"""

import json
from typing import Any

import pytest
from validate_connector import NODE_BUILTINS, analyze_connector

SDK_AND_SQLITE = """
    const Database = require('better-sqlite3');
    const { Server } = require('@modelcontextprotocol/sdk/server');
"""


def connector(**overrides: Any) -> dict[str, Any]:
    return {"id": "my-mcp", "transport": "stdio", **overrides}


def server(content: str, path: str = "server.js") -> dict[str, str]:
    return {"path": path, "content": content}


def manifest(*dependencies: str, dev: tuple[str, ...] = ()) -> dict[str, str]:
    data = {
        "name": "my-mcp",
        "dependencies": {name: "*" for name in dependencies},
        "devDependencies": {name: "*" for name in dev},
    }
    return {"path": "package.json", "content": json.dumps(data)}


def by_check(findings: list[Any], check: str) -> list[Any]:
    return [f for f in findings if f.check == check]


class TestMissingPackageJson:
    """External packages without a manifest are a deployment error."""

    def test_require_without_manifest(self) -> None:
        findings = by_check(analyze_connector(connector(), [server(SDK_AND_SQLITE)]), "connector_missing_package_json")
        assert len(findings) == 1
        error = findings[0]
        assert error.level == "ERROR"
        assert "better-sqlite3" in error.message
        assert "package.json" in error.message
        assert error.connector == "my-mcp"
        assert error.section == "connectors"

    def test_es_imports_without_manifest(self) -> None:
        source = "import { Server } from '@modelcontextprotocol/sdk/server';\nimport express from 'express';"
        findings = by_check(analyze_connector(connector(), [server(source)]), "connector_missing_package_json")
        assert len(findings) == 1
        assert "@modelcontextprotocol/sdk/server" in findings[0].message

    def test_fix_contains_manifest_skeleton(self) -> None:
        error = analyze_connector(connector(), [server(SDK_AND_SQLITE)])[0]
        skeleton = json.loads(error.fix.split("\n", 1)[1])
        assert skeleton["name"] == "my-mcp"
        assert skeleton["dependencies"] == {"better-sqlite3": "*", "@modelcontextprotocol/sdk": "*"}

    def test_message_names_at_most_five_packages(self) -> None:
        source = "\n".join(f"require('pkg-{i}');" for i in range(8))
        error = analyze_connector(connector(), [server(source)])[0]
        assert "pkg-4" in error.message
        assert "pkg-5" not in error.message

    def test_builtins_only(self) -> None:
        source = """
            const fs = require('fs');
            const path = require('path');
            const http = require('http');
            const crypto = require('crypto');
            const { spawn } = require('child_process');
            const promises = require('fs/promises');
            import readline from 'node:readline';
        """
        assert analyze_connector(connector(), [server(source)]) == []

    def test_manifest_present(self) -> None:
        files = [server("const db = require('better-sqlite3');"), manifest("better-sqlite3")]
        assert analyze_connector(connector(), files) == []

    def test_every_js_flavour_is_scanned(self) -> None:
        files = [server("console.log('hi')"), server("require('axios');", path="lib/http.cjs")]
        findings = analyze_connector(connector(), files)
        assert [f.check for f in findings] == ["connector_missing_package_json"]
        assert "axios" in findings[0].message

    def test_non_js_files_are_not_scanned(self) -> None:
        files = [server("console.log('hi')"), server("require('axios')", path="README.md")]
        assert analyze_connector(connector(), files) == []


class TestMissingDependencies:
    """Manifest present but incomplete is a warning per missing package."""

    def test_missing_scoped_package(self) -> None:
        findings = analyze_connector(connector(), [server(SDK_AND_SQLITE), manifest("better-sqlite3")])
        assert [f.check for f in findings] == ["connector_missing_dependencies"]
        assert findings[0].level == "WARNING"
        assert "@modelcontextprotocol/sdk" in findings[0].message
        assert "@modelcontextprotocol/sdk/server" not in findings[0].message

    def test_all_declared(self) -> None:
        files = [server(SDK_AND_SQLITE), manifest("better-sqlite3", "@modelcontextprotocol/sdk")]
        assert analyze_connector(connector(), files) == []

    def test_dev_dependencies_count(self) -> None:
        files = [server(SDK_AND_SQLITE), manifest("better-sqlite3", dev=("@modelcontextprotocol/sdk",))]
        assert analyze_connector(connector(), files) == []

    def test_builtins_ignored_with_manifest(self) -> None:
        source = "require('fs'); require('path'); require('http'); require('crypto'); require('better-sqlite3');"
        assert analyze_connector(connector(), [server(source), manifest("better-sqlite3")]) == []

    @pytest.mark.parametrize("content", ["{not json", "[]", '"text"', ""])
    def test_malformed_manifest_skips_check(self, content: str) -> None:
        files = [server(SDK_AND_SQLITE), {"path": "package.json", "content": content}]
        assert analyze_connector(connector(), files) == []


class TestLaunchPaths:
    """Deprecated mount paths and /mcp-store/ id mismatches."""

    def test_deprecated_path_in_args(self) -> None:
        conn = connector(command="node", args=["/opt/mcp-connectors/my-mcp/server.js"])
        findings = analyze_connector(conn, [server("console.log('hi')")])
        assert [f.check for f in findings] == ["connector_deprecated_path"]
        error = findings[0]
        assert error.level == "ERROR"
        assert "/opt/mcp-connectors/" in error.message
        assert "auto-resolve" in error.fix
        assert "/mcp-store/my-mcp/server.js" in error.fix
        assert error.field == "connectors.my-mcp.args[0]"

    def test_deprecated_path_in_command(self) -> None:
        conn = connector(command="/opt/mcp-connectors/my-mcp/run.sh")
        findings = analyze_connector(conn, [server("console.log('hi')")])
        assert [f.field for f in findings] == ["connectors.my-mcp.command"]

    def test_current_path_is_fine(self) -> None:
        conn = connector(command="node", args=["/mcp-store/my-mcp/server.js"])
        assert analyze_connector(conn, [server("console.log('hi')")]) == []

    def test_path_mismatch(self) -> None:
        conn = connector(command="node", args=["/mcp-store/wrong-id/server.js"])
        findings = analyze_connector(conn, [server("console.log('hi')")])
        assert [f.check for f in findings] == ["connector_path_mismatch"]
        assert findings[0].level == "WARNING"
        assert "wrong-id" in findings[0].message
        assert "my-mcp" in findings[0].message

    def test_non_string_args_are_ignored(self) -> None:
        conn = connector(command=["node"], args=[1, None, {"x": "/opt/mcp-connectors/"}])
        assert analyze_connector(conn, [server("console.log('hi')")]) == []


class TestSkipOnEmpty:
    """Prebuilt connectors without embedded files are never penalized."""

    @pytest.mark.parametrize("files", [None, [], "server.js", [{"content": "no path"}]])
    def test_no_files_no_findings(self, files: Any) -> None:
        conn = connector(args=["/opt/mcp-connectors/prebuilt/server.js", "/mcp-store/other/x.js"], ui_capable=True)
        assert analyze_connector(conn, files) == []


class TestUiCapable:
    """UI-capable connectors need stdio, the ui.* plugin tools and ui-dist assets."""

    UI_SOURCE = "const tools = { 'ui.listPlugins': listPlugins, 'ui.getPlugin': getPlugin };"

    def test_complete_ui_connector(self) -> None:
        files = [server(self.UI_SOURCE), {"path": "ui-dist/cal/1.0.0/index.html", "content": "<html></html>"}]
        assert analyze_connector(connector(ui_capable=True), files) == []

    def test_wrong_transport(self) -> None:
        files = [server(self.UI_SOURCE), {"path": "ui-dist/cal/1.0.0/index.html", "content": ""}]
        findings = analyze_connector(connector(ui_capable=True, transport="http"), files)
        assert [f.check for f in findings] == ["connector_ui_transport"]

    def test_missing_tools_and_assets(self) -> None:
        findings = analyze_connector(connector(ui_capable=True), [server("console.log('hi')")])
        assert [f.check for f in findings] == [
            "connector_ui_missing_tool",
            "connector_ui_missing_tool",
            "connector_ui_dist_files",
        ]
        assert "ui.listPlugins" in findings[0].message
        assert "ui.getPlugin" in findings[1].message
        assert findings[2].level == "WARNING"

    def test_list_plugins_bare_array(self) -> None:
        source = (
            "server.tool('ui.listPlugins', async () => ({ content: [{ type: 'text', "
            "text: JSON.stringify([{ id: 'cal' }]) }] }));\nserver.tool('ui.getPlugin', getPlugin);"
        )
        files = [server(source), {"path": "ui-dist/cal/1.0.0/index.html", "content": ""}]
        findings = analyze_connector(connector(ui_capable=True), files)
        assert [f.check for f in findings] == ["connector_ui_listplugins_format"]
        assert findings[0].level == "WARNING"

    def test_list_plugins_wrapped_object(self) -> None:
        source = (
            "server.tool('ui.listPlugins', async () => ({ content: [{ type: 'text', "
            "text: JSON.stringify({ plugins: [{ id: 'cal' }] }) }] }));\nserver.tool('ui.getPlugin', getPlugin);"
        )
        files = [server(source), {"path": "ui-dist/cal/1.0.0/index.html", "content": ""}]
        assert analyze_connector(connector(ui_capable=True), files) == []

    def test_not_ui_capable(self) -> None:
        assert analyze_connector(connector(), [server("console.log('hi')")]) == []


class TestConnectorId:
    """The connector id is carried verbatim into findings."""

    def test_null_id_is_not_stringified(self) -> None:
        findings = analyze_connector(connector(id=None), [server(SDK_AND_SQLITE)])
        assert [f.connector for f in findings] == [""]
        assert "None" not in findings[0].message


class TestPurity:
    """The analyzer is a pure function of its inputs."""

    def test_idempotent(self) -> None:
        conn = connector(args=["/opt/mcp-connectors/my-mcp/server.js", "/mcp-store/wrong-id/server.js"])
        files = [server(SDK_AND_SQLITE)]
        first = [f.to_dict() for f in analyze_connector(conn, files)]
        second = [f.to_dict() for f in analyze_connector(conn, files)]
        assert json.dumps(first) == json.dumps(second)

    def test_inputs_not_mutated(self) -> None:
        conn = connector(args=["/mcp-store/wrong-id/server.js"])
        files = [server(SDK_AND_SQLITE, path="./server.js")]
        before = (json.dumps(conn), json.dumps(files))
        analyze_connector(conn, files)
        assert (json.dumps(conn), json.dumps(files)) == before


def test_builtin_table_covers_common_modules() -> None:
    for name in ("fs", "path", "http", "https", "crypto", "child_process", "worker_threads"):
        assert name in NODE_BUILTINS
