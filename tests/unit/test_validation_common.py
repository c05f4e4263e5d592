#!/usr/bin/env python3
"""Tests for ssv_validation_common.py - findings, results, registry and options."""

from pathlib import Path

import pytest
from ssv_validation_common import (
    EXIT_ERRORS,
    EXIT_OK,
    EXIT_WARNINGS,
    CheckCodeCollisionError,
    Finding,
    FindingReport,
    ValidationResult,
    ValidatorOptions,
    load_document,
    load_options,
    register_checks,
    shape_of,
)


class TestCheckRegistry:
    """Stable check codes with one severity each."""

    def test_same_severity_can_be_registered_twice(self) -> None:
        register_checks({"test.registry_same": "WARNING"})
        register_checks({"test.registry_same": "WARNING"})

    def test_conflicting_severity_is_a_defect(self) -> None:
        register_checks({"test.registry_conflict": "ERROR"})
        with pytest.raises(CheckCodeCollisionError):
            register_checks({"test.registry_conflict": "WARNING"})

    def test_unregistered_code_cannot_be_reported(self) -> None:
        with pytest.raises(CheckCodeCollisionError):
            FindingReport().add("test.never_registered", "tools", "boom")

    def test_report_looks_up_severity(self) -> None:
        register_checks({"test.report_level": "WARNING"})
        finding = FindingReport().add("test.report_level", "tools", "advisory", field="tools[0]")
        assert finding.level == "WARNING"


class TestValidationResult:
    """Splitting, exit codes and serialization."""

    ERROR = Finding("ERROR", "schema.problem", "problem", "Section 'problem' is required", field="problem")
    WARNING = Finding("WARNING", "completeness.engine", "engine", "incomplete", fix="Set model")

    def test_from_findings_preserves_order(self) -> None:
        result = ValidationResult.from_findings([self.WARNING, self.ERROR], {}, {}, ready_to_export=True)
        assert result.errors == [self.ERROR]
        assert result.warnings == [self.WARNING]
        assert not result.valid
        assert not result.ready_to_export
        assert result.checks() == ["schema.problem", "completeness.engine"]

    def test_exit_codes(self) -> None:
        clean = ValidationResult.from_findings([], {}, {}, True)
        warned = ValidationResult.from_findings([self.WARNING], {}, {}, True)
        failed = ValidationResult.from_findings([self.ERROR], {}, {}, True)
        assert (clean.exit_code, clean.exit_code_strict()) == (EXIT_OK, EXIT_OK)
        assert (warned.exit_code, warned.exit_code_strict()) == (EXIT_OK, EXIT_WARNINGS)
        assert (failed.exit_code, failed.exit_code_strict()) == (EXIT_ERRORS, EXIT_ERRORS)

    def test_finding_dict_omits_empty_fields(self) -> None:
        assert self.WARNING.to_dict() == {
            "check": "completeness.engine",
            "section": "engine",
            "message": "incomplete",
            "fix": "Set model",
        }
        assert self.ERROR.with_skill("s1").to_dict()["skill"] == "s1"

    def test_result_dict_is_never_partial(self) -> None:
        data = ValidationResult.from_findings([], {}, {}, False).to_dict()
        assert set(data) == {"valid", "ready_to_export", "errors", "warnings", "completeness", "unresolved"}


class TestShapes:
    """Absent, invalid and valid stay distinct."""

    def test_shape_of(self) -> None:
        assert shape_of(None, "string") == "absent"
        assert shape_of("", "string") == "valid"
        assert shape_of(3, "string") == "invalid"
        assert shape_of(True, "number") == "invalid"
        assert shape_of(0.5, "number") == "valid"


class TestLoading:
    """Documents and options from disk (CLI layer)."""

    def test_load_yaml_and_json(self, tmp_path: Path) -> None:
        (tmp_path / "a.yml").write_text("id: x\n")
        (tmp_path / "b.json").write_text('{"id": "y"}')
        assert load_document(tmp_path / "a.yml") == {"id": "x"}
        assert load_document(tmp_path / "b.json") == {"id": "y"}

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "a.yaml").write_text("id: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_document(tmp_path / "a.yaml")

    def test_options(self, tmp_path: Path) -> None:
        path = tmp_path / "options.yaml"
        path.write_text("cross_section_ids: true\nworkers: 3\nunknown_key: 1\n")
        assert load_options(path) == ValidatorOptions(cross_section_ids=True, workers=3, strict=False)

    def test_empty_options_file(self, tmp_path: Path) -> None:
        path = tmp_path / "options.yaml"
        path.write_text("")
        assert load_options(path) == ValidatorOptions()

    @pytest.mark.parametrize("data", [["workers"], {"workers": 0}, {"workers": True}, {"workers": "2"}])
    def test_invalid_options(self, data: object) -> None:
        with pytest.raises(ValueError):
            ValidatorOptions.from_mapping(data)
