#!/usr/bin/env python3
"""
Skill & Solution Validation - Common Module

Shared validation infrastructure for the skill/solution validators.
This module contains:
- Type definitions (Level, Finding, FindingReport, ValidationResult)
- The check-code registry (every stable check code and its severity)
- Shape helpers that keep "absent" and "present-but-invalid" apart
- Utility functions (document loading, formatting, exit codes)

All individual validators should import from this module to ensure consistency.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

# =============================================================================
# Type Definitions
# =============================================================================

# Only two severities exist:
# - ERROR: blocks `valid` and `ready_to_export`
# - WARNING: advisory, always reported, never blocks
Level = Literal["ERROR", "WARNING"]

# Shape of a value relative to the type a field expects
Shape = Literal["absent", "invalid", "valid"]

# =============================================================================
# Exit Codes
# =============================================================================

EXIT_OK = 0  # No errors (warnings allowed)
EXIT_ERRORS = 1  # ERROR findings present
EXIT_USAGE = 2  # File or usage problem (CLI only)
EXIT_WARNINGS = 3  # WARNING findings present (only in --strict mode)

# =============================================================================
# Check-Code Registry
# =============================================================================


class CheckCodeCollisionError(RuntimeError):
    """Raised when two validators register one check code with different severities."""


CHECK_REGISTRY: dict[str, Level] = {}


def register_checks(codes: dict[str, Level]) -> dict[str, Level]:
    """Register the check codes a validator module emits.

    Re-registering a code with the same severity is a no-op, so modules can be
    reloaded. A different severity for an existing code is a defect.

    Args:
        codes: Mapping of check code to its severity

    Returns:
        The same mapping, for use as the module's own table
    """
    for code, level in codes.items():
        existing = CHECK_REGISTRY.get(code)
        if existing is not None and existing != level:
            raise CheckCodeCollisionError(f"Check code '{code}' registered as both {existing} and {level}")
        CHECK_REGISTRY[code] = level
    return codes


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Finding:
    """Single validation finding.

    Attributes:
        level: Severity level (ERROR or WARNING)
        check: Stable machine-readable code (e.g. "connector_missing_package_json")
        section: Document section the finding belongs to
        message: Human-readable description
        field: Optional dotted path of the offending field
        connector: Optional connector id (connector findings)
        skill: Optional skill id (findings produced inside a solution)
        fix: Optional actionable hint
    """

    level: Level
    check: str
    section: str
    message: str
    field: str | None = None
    connector: str | None = None
    skill: str | None = None
    fix: str | None = None

    def with_skill(self, skill_id: str | None) -> Finding:
        """Return a copy tagged with the skill it came from."""
        return Finding(
            self.level, self.check, self.section, self.message, self.field, self.connector, skill_id, self.fix
        )

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        result = {"check": self.check, "section": self.section, "message": self.message}
        if self.field is not None:
            result["field"] = self.field
        if self.connector is not None:
            result["connector"] = self.connector
        if self.skill is not None:
            result["skill"] = self.skill
        if self.fix is not None:
            result["fix"] = self.fix
        return result


@dataclass
class FindingReport:
    """Accumulates findings without failing fast.

    Every validator writes into one of these and hands back `findings`.
    Severity is looked up from the check-code registry, so callers only
    name the check.
    """

    findings: list[Finding] = field(default_factory=list)

    def add(
        self,
        check: str,
        section: str,
        message: str,
        field: str | None = None,
        connector: str | None = None,
        fix: str | None = None,
    ) -> Finding:
        """Add a finding for a registered check code."""
        level = CHECK_REGISTRY.get(check)
        if level is None:
            raise CheckCodeCollisionError(f"Check code '{check}' was never registered")
        finding = Finding(level, check, section, message, field, connector, None, fix)
        self.findings.append(finding)
        return finding

    def extend(self, findings: list[Finding]) -> None:
        """Merge findings produced by another stage."""
        self.findings.extend(findings)

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.level == "ERROR"]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.level == "WARNING"]

    @property
    def has_errors(self) -> bool:
        return any(f.level == "ERROR" for f in self.findings)


@dataclass
class ValidationResult:
    """Complete, never-partial result of a validation call.

    Attributes:
        valid: True when there are no ERROR findings
        errors: ERROR findings in deterministic merge order
        warnings: WARNING findings in deterministic merge order
        completeness: Per-section completeness (per skill for solutions)
        unresolved: Unresolved references (per skill for solutions)
        ready_to_export: True when complete and free of blocking errors
        summary: Optional counts for reporting
    """

    valid: bool
    errors: list[Finding] = field(default_factory=list)
    warnings: list[Finding] = field(default_factory=list)
    completeness: dict[str, Any] = field(default_factory=dict)
    unresolved: dict[str, Any] = field(default_factory=dict)
    ready_to_export: bool = False
    summary: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_findings(
        cls,
        findings: list[Finding],
        completeness: dict[str, Any],
        unresolved: dict[str, Any],
        ready_to_export: bool,
        summary: dict[str, int] | None = None,
    ) -> ValidationResult:
        """Split merged findings into errors and warnings, preserving order."""
        errors = [f for f in findings if f.level == "ERROR"]
        warnings = [f for f in findings if f.level == "WARNING"]
        return cls(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            completeness=completeness,
            unresolved=unresolved,
            ready_to_export=ready_to_export and not errors,
            summary=summary or {},
        )

    def checks(self) -> list[str]:
        """All check codes present, errors first."""
        return [f.check for f in self.errors] + [f.check for f in self.warnings]

    @property
    def exit_code(self) -> int:
        """Exit code for the CLI (warnings never affect it)."""
        return EXIT_ERRORS if self.errors else EXIT_OK

    def exit_code_strict(self) -> int:
        """Exit code for --strict mode (warnings also block)."""
        code = self.exit_code
        if code != EXIT_OK:
            return code
        return EXIT_WARNINGS if self.warnings else EXIT_OK

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, object] = {
            "valid": self.valid,
            "ready_to_export": self.ready_to_export,
            "errors": [f.to_dict() for f in self.errors],
            "warnings": [f.to_dict() for f in self.warnings],
            "completeness": self.completeness,
            "unresolved": self.unresolved,
        }
        if self.summary:
            result["summary"] = self.summary
        return result

    def to_json(self, indent: int = 2) -> str:
        """Convert result to a JSON string (stable key order)."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)


# =============================================================================
# Shape Helpers
# =============================================================================

_SHAPE_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "array": (list,),
    "object": (dict,),
    "boolean": (bool,),
}


def shape_of(value: Any, expected: str) -> Shape:
    """Classify a value against the primitive type a field expects.

    `None` counts as absent, matching how optional JSON fields arrive.
    Booleans are never accepted as numbers.
    """
    if value is None:
        return "absent"
    if expected == "number":
        return "valid" if isinstance(value, (int, float)) and not isinstance(value, bool) else "invalid"
    return "valid" if isinstance(value, _SHAPE_TYPES[expected]) else "invalid"


def as_list(value: Any) -> list[Any]:
    """Return value when it is a list, else an empty list."""
    return value if isinstance(value, list) else []


def as_dict(value: Any) -> dict[str, Any]:
    """Return value when it is a dict, else an empty dict."""
    return value if isinstance(value, dict) else {}


def dict_items(value: Any) -> list[dict[str, Any]]:
    """Return the dict entries of a list, skipping malformed ones."""
    return [item for item in as_list(value) if isinstance(item, dict)]


def non_empty_string(value: Any) -> bool:
    """Check value is a string with at least one non-blank character."""
    return isinstance(value, str) and bool(value.strip())


def get_intents(doc: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the intent entries whether `intents` is a list or `{supported: [...]}`."""
    intents = doc.get("intents")
    if isinstance(intents, dict):
        return dict_items(intents.get("supported"))
    return dict_items(intents)


def get_workflows(doc: dict[str, Any]) -> list[dict[str, Any]]:
    """Return `policy.workflows` entries."""
    return dict_items(as_dict(doc.get("policy")).get("workflows"))


def get_access_rules(doc: dict[str, Any]) -> list[dict[str, Any]]:
    """Return access-policy rules whether `access_policy` is a list or `{rules: [...]}`."""
    policy = doc.get("access_policy")
    if isinstance(policy, dict):
        return dict_items(policy.get("rules"))
    return dict_items(policy)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class ValidatorOptions:
    """Pipeline knobs shared by the skill and solution validators.

    Attributes:
        cross_section_ids: Also require IDs to be unique across sections
        workers: Thread-pool size for per-skill/per-connector fan out (1 = sequential)
        strict: CLI only; warnings also fail the run
    """

    cross_section_ids: bool = False
    workers: int = 1
    strict: bool = False

    @classmethod
    def from_mapping(cls, data: Any) -> ValidatorOptions:
        """Build options from a loaded mapping, ignoring unknown keys.

        Raises:
            ValueError: if the mapping or a value has the wrong type
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("Options must be a mapping")
        workers = data.get("workers", 1)
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ValueError(f"workers must be a positive integer, got {workers!r}")
        return cls(
            cross_section_ids=bool(data.get("cross_section_ids", False)),
            workers=workers,
            strict=bool(data.get("strict", False)),
        )


def load_options(path: Path) -> ValidatorOptions:
    """Load ValidatorOptions from a YAML file.

    Raises:
        OSError: if the file cannot be read
        ValueError: if the content is not a valid options mapping
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    return ValidatorOptions.from_mapping(data)


# =============================================================================
# Document Loading (CLI layer only)
# =============================================================================


def load_document(path: Path) -> Any:
    """Load a JSON or YAML document from disk.

    Raises:
        OSError: if the file cannot be read
        ValueError: if the content cannot be parsed
    """
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e


# =============================================================================
# Color Formatting (for terminal output)
# =============================================================================

# ANSI color codes
COLORS = {
    "ERROR": "\033[91m",  # Red
    "WARNING": "\033[95m",  # Magenta, never blocks
    "INFO": "\033[90m",  # Gray
    "PASSED": "\033[92m",  # Green
    "RESET": "\033[0m",  # Reset
    "BOLD": "\033[1m",  # Bold
}


def colorize(text: str, level: str) -> str:
    """Apply color to text based on level."""
    color = COLORS.get(level, "")
    return f"{color}{text}{COLORS['RESET']}"


def format_finding(finding: Finding) -> str:
    """Format a single finding for terminal output."""
    parts = [f"{colorize(f'[{finding.check}]', finding.level)} {finding.message}"]

    location = finding.field or finding.section
    if finding.connector:
        location = f"connector {finding.connector}"
    if finding.skill:
        location = f"{finding.skill}: {location}"
    parts.append(f" ({location})")

    if finding.fix:
        parts.append(f"\n      {COLORS['INFO']}fix: {finding.fix}{COLORS['RESET']}")

    return "".join(parts)


def print_report_summary(result: ValidationResult, title: str = "Validation Report") -> None:
    """Print a formatted summary of a validation result."""
    print(f"\n{'=' * 60}")
    print(f"{COLORS['BOLD']}{title}{COLORS['RESET']}")
    print(f"{'=' * 60}")

    print(f"\n{COLORS['ERROR']}ERRORS:   {len(result.errors)}{COLORS['RESET']}")
    print(f"{COLORS['WARNING']}WARNINGS: {len(result.warnings)}{COLORS['RESET']}")

    export_color = COLORS["PASSED"] if result.ready_to_export else COLORS["WARNING"]
    ready = f"{export_color}{result.ready_to_export}{COLORS['RESET']}"
    print(f"\n{COLORS['BOLD']}Ready to export:{COLORS['RESET']} {ready}")

    if result.valid:
        print(f"\n{COLORS['PASSED']}✓ No blocking errors{COLORS['RESET']}")
    else:
        print(f"\n{COLORS['ERROR']}✗ Errors found - must fix before export{COLORS['RESET']}")


def print_findings_by_level(result: ValidationResult, verbose: bool = False) -> None:
    """Print findings grouped by severity, then completeness in verbose mode."""
    if result.errors:
        print(f"\n{COLORS['ERROR']}--- ERRORS ({len(result.errors)}) ---{COLORS['RESET']}")
        for finding in result.errors:
            print(f"  {format_finding(finding)}")

    if result.warnings:
        print(f"\n{COLORS['WARNING']}--- WARNINGS ({len(result.warnings)}) [non-blocking] ---{COLORS['RESET']}")
        for finding in result.warnings:
            print(f"  {format_finding(finding)}")

    if verbose and result.completeness:
        print(f"\n{COLORS['INFO']}--- COMPLETENESS ---{COLORS['RESET']}")
        print(json.dumps(result.completeness, indent=2, sort_keys=True))
