#!/usr/bin/env python3
"""Tests for the validate_skill.py and validate_solution.py command-line entry points."""

import json
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable

import yaml
from validate_solution import read_mcp_store

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
SKILL_SCRIPT = PROJECT_ROOT / "scripts" / "validate_skill.py"
SOLUTION_SCRIPT = PROJECT_ROOT / "scripts" / "validate_solution.py"

MakeSkill = Callable[..., dict[str, Any]]


def run_script(script: Path, *args: str) -> subprocess.CompletedProcess[str]:
    """Run a validator script with given args and return result."""
    cmd = [sys.executable, str(script)] + list(args)
    return subprocess.run(cmd, capture_output=True, text=True, timeout=60)


class TestSkillCli:
    """validate_skill.py exit codes and output formats."""

    def test_valid_skill_json_output(self, tmp_path: Path, make_skill: MakeSkill) -> None:
        path = tmp_path / "skill.json"
        path.write_text(json.dumps(make_skill()))
        result = run_script(SKILL_SCRIPT, str(path), "--json")
        assert result.returncode == 0, result.stderr
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["ready_to_export"] is True
        assert data["errors"] == []

    def test_yaml_skill(self, tmp_path: Path, make_skill: MakeSkill) -> None:
        path = tmp_path / "skill.yaml"
        path.write_text(yaml.safe_dump(make_skill()))
        result = run_script(SKILL_SCRIPT, str(path))
        assert result.returncode == 0, result.stderr
        assert "Ready to export" in result.stdout

    def test_errors_exit_one(self, tmp_path: Path, make_skill: MakeSkill) -> None:
        path = tmp_path / "skill.json"
        path.write_text(json.dumps(make_skill(mocks=[{"toolId": "ghost"}])))
        result = run_script(SKILL_SCRIPT, str(path), "--json")
        assert result.returncode == 1
        checks = [e["check"] for e in json.loads(result.stdout)["errors"]]
        assert checks == ["reference.mock_tool_not_found"]

    def test_strict_fails_on_warnings(self, tmp_path: Path, make_skill: MakeSkill) -> None:
        skill = make_skill()
        del skill["tools"][0]["security"]
        path = tmp_path / "skill.json"
        path.write_text(json.dumps(skill))
        assert run_script(SKILL_SCRIPT, str(path)).returncode == 0
        assert run_script(SKILL_SCRIPT, str(path), "--strict").returncode == 3

    def test_strict_from_options_file(self, tmp_path: Path, make_skill: MakeSkill) -> None:
        skill = make_skill()
        del skill["tools"][0]["security"]
        path = tmp_path / "skill.json"
        path.write_text(json.dumps(skill))
        options = tmp_path / "options.yaml"
        options.write_text("strict: true\n")
        assert run_script(SKILL_SCRIPT, str(path), "--options", str(options)).returncode == 3

    def test_missing_file_is_usage_error(self, tmp_path: Path) -> None:
        result = run_script(SKILL_SCRIPT, str(tmp_path / "absent.json"))
        assert result.returncode == 2
        assert "does not exist" in result.stderr

    def test_unparsable_file_is_usage_error(self, tmp_path: Path) -> None:
        path = tmp_path / "skill.json"
        path.write_text("{ not json")
        result = run_script(SKILL_SCRIPT, str(path))
        assert result.returncode == 2
        assert "Invalid JSON" in result.stderr

    def test_invalid_options_file_is_usage_error(self, tmp_path: Path, make_skill: MakeSkill) -> None:
        path = tmp_path / "skill.json"
        path.write_text(json.dumps(make_skill()))
        options = tmp_path / "options.yaml"
        options.write_text("workers: zero\n")
        assert run_script(SKILL_SCRIPT, str(path), "--options", str(options)).returncode == 2


class TestSolutionCli:
    """validate_solution.py with a context file or an mcp-store directory."""

    def _solution(self, tmp_path: Path) -> Path:
        path = tmp_path / "solution.json"
        path.write_text(json.dumps({"id": "s", "name": "S", "skills": [], "routing": {}}))
        return path

    def test_context_file(self, tmp_path: Path) -> None:
        context = tmp_path / "context.json"
        context.write_text(
            json.dumps(
                {
                    "connectors": [{"id": "my-mcp", "args": ["/opt/mcp-connectors/my-mcp/server.js"]}],
                    "mcp_store": {"my-mcp": [{"path": "server.js", "content": "require('better-sqlite3');"}]},
                }
            )
        )
        result = run_script(SOLUTION_SCRIPT, str(self._solution(tmp_path)), "--context", str(context), "--json")
        assert result.returncode == 1
        checks = [e["check"] for e in json.loads(result.stdout)["errors"]]
        assert checks == ["connector_missing_package_json", "connector_deprecated_path"]

    def test_mcp_store_directory(self, tmp_path: Path) -> None:
        store = tmp_path / "mcp-store"
        (store / "my-mcp" / "lib").mkdir(parents=True)
        (store / "my-mcp" / "server.js").write_text("const db = require('better-sqlite3');")
        (store / "my-mcp" / "lib" / "util.mjs").write_text("import got from 'got';")
        (store / "my-mcp" / "package.json").write_text(json.dumps({"dependencies": {"better-sqlite3": "*"}}))
        context = tmp_path / "context.yaml"
        context.write_text("connectors:\n  - id: my-mcp\n    transport: stdio\n")

        result = run_script(
            SOLUTION_SCRIPT,
            str(self._solution(tmp_path)),
            "--context",
            str(context),
            "--mcp-store",
            str(store),
            "--workers",
            "2",
            "--json",
        )
        assert result.returncode == 0, result.stderr
        data = json.loads(result.stdout)
        missing = [w for w in data["warnings"] if w["check"] == "connector_missing_dependencies"]
        assert len(missing) == 1
        assert '"got"' in missing[0]["message"]

    def test_mcp_store_with_binary_ui_assets(self, tmp_path: Path) -> None:
        store = tmp_path / "mcp-store"
        (store / "ui-mcp" / "ui-dist" / "cal" / "1.0.0").mkdir(parents=True)
        (store / "ui-mcp" / "server.js").write_text(
            "const express = require('express');\nconst tools = { 'ui.listPlugins': list, 'ui.getPlugin': get };\n"
        )
        (store / "ui-mcp" / "ui-dist" / "cal" / "1.0.0" / "icon.png").write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe\x00")
        context = tmp_path / "context.json"
        context.write_text(json.dumps({"connectors": [{"id": "ui-mcp", "transport": "stdio", "ui_capable": True}]}))

        result = run_script(
            SOLUTION_SCRIPT,
            str(self._solution(tmp_path)),
            "--context",
            str(context),
            "--mcp-store",
            str(store),
            "--json",
        )
        assert result.returncode == 1, result.stderr
        data = json.loads(result.stdout)
        assert [e["check"] for e in data["errors"]] == ["connector_missing_package_json"]
        assert data["errors"][0]["connector"] == "ui-mcp"
        assert "connector_ui_dist_files" not in [w["check"] for w in data["warnings"]]

    def test_read_mcp_store(self, tmp_path: Path) -> None:
        (tmp_path / "b-mcp" / "lib").mkdir(parents=True)
        (tmp_path / "a-mcp").mkdir()
        (tmp_path / "b-mcp" / "server.js").write_text("require('x');")
        (tmp_path / "b-mcp" / "lib" / "font.woff").write_bytes(b"\xff\xfe\xfd")
        (tmp_path / "stray.txt").write_text("not a connector")

        store = read_mcp_store(tmp_path)
        assert list(store) == ["a-mcp", "b-mcp"]
        assert store["a-mcp"] == []
        assert [entry["path"] for entry in store["b-mcp"]] == ["lib/font.woff", "server.js"]
        assert store["b-mcp"][1]["content"] == "require('x');"

    def test_bad_workers_is_usage_error(self, tmp_path: Path) -> None:
        result = run_script(SOLUTION_SCRIPT, str(self._solution(tmp_path)), "--workers", "0")
        assert result.returncode == 2
