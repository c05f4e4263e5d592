#!/usr/bin/env python3
"""
Skill & Solution Validation - Skill Validator

Runs the per-skill pipeline in its fixed order:

    Schema -> Reference -> Completeness -> Security

Sections that fail the schema stage are skipped by the later stages so one
malformed section does not cascade into a wall of follow-up findings.

Usage:
    uv run python scripts/validate_skill.py path/to/skill.json
    uv run python scripts/validate_skill.py path/to/skill.yaml --verbose
    uv run python scripts/validate_skill.py path/to/skill.json --json

Exit codes:
    0 - No errors (warnings allowed)
    1 - ERROR findings present
    2 - File could not be read or parsed
    3 - WARNING findings present (only with --strict)
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from check_completeness import check_completeness, completeness_findings
from ssv_validation_common import (
    EXIT_USAGE,
    Finding,
    ValidationResult,
    ValidatorOptions,
    load_document,
    load_options,
    print_findings_by_level,
    print_report_summary,
)
from validate_references import resolve_references
from validate_schema import failed_sections, validate_schema
from validate_security import validate_security


@dataclass
class SkillOutcome:
    """Raw output of the pipeline for one skill, before merging."""

    findings: list[Finding] = field(default_factory=list)
    completeness: dict[str, bool] = field(default_factory=dict)
    unresolved: dict[str, list[str]] = field(default_factory=dict)
    ready_to_export: bool = False


def run_skill_stages(doc: Any, options: ValidatorOptions | None = None) -> SkillOutcome:
    """Run all four stages on one skill document and collect their output."""
    options = options or ValidatorOptions()

    schema_findings = validate_schema(doc)
    skip = failed_sections(schema_findings)

    resolution = resolve_references(doc, cross_section_ids=options.cross_section_ids, skip_sections=skip)
    completeness = check_completeness(doc, blocking=schema_findings + resolution.findings)
    security_findings = validate_security(doc, skip_sections=skip)

    findings = schema_findings + resolution.findings + completeness_findings(completeness) + security_findings
    return SkillOutcome(
        findings=findings,
        completeness=completeness.completeness,
        unresolved=resolution.unresolved,
        ready_to_export=completeness.ready_to_export,
    )


def validate_skill(doc: Any, options: ValidatorOptions | None = None) -> ValidationResult:
    """Validate a single skill document.

    Args:
        doc: Skill document (already parsed)
        options: Pipeline options

    Returns:
        Complete ValidationResult; never raises for malformed documents
    """
    outcome = run_skill_stages(doc, options)
    return ValidationResult.from_findings(
        outcome.findings,
        completeness=outcome.completeness,
        unresolved=outcome.unresolved,
        ready_to_export=outcome.ready_to_export,
    )


def quick_validate(doc: Any) -> bool:
    """True when the skill has no blocking errors."""
    return validate_skill(doc).valid


# =============================================================================
# CLI
# =============================================================================


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags shared by the skill and solution CLIs."""
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Also show per-section completeness",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--strict", action="store_true", help="Strict mode - warnings also fail the run")
    parser.add_argument(
        "--cross-section-ids",
        action="store_true",
        help="Also require IDs to be unique across sections",
    )
    parser.add_argument("--options", type=Path, metavar="FILE", help="YAML file with validator options")


def resolve_options(args: argparse.Namespace) -> ValidatorOptions:
    """Options file first, then command-line flags on top.

    Raises:
        OSError: if the options file cannot be read
        ValueError: if the options file is invalid
    """
    options = load_options(args.options) if args.options else ValidatorOptions()
    overrides: dict[str, Any] = {}
    if args.cross_section_ids:
        overrides["cross_section_ids"] = True
    if args.strict:
        overrides["strict"] = True
    if getattr(args, "workers", None) is not None:
        overrides["workers"] = args.workers
    return replace(options, **overrides)


def emit_result(result: ValidationResult, args: argparse.Namespace, options: ValidatorOptions, title: str) -> int:
    """Print the result and return the exit code."""
    if args.json:
        print(result.to_json())
    else:
        print_report_summary(result, title)
        print_findings_by_level(result, args.verbose)

    if options.strict:
        return result.exit_code_strict()
    return result.exit_code


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Validate a skill document (JSON or YAML)")
    parser.add_argument("skill_path", type=Path, help="Path to the skill document")
    add_common_arguments(parser)
    args = parser.parse_args()

    if not args.skill_path.is_file():
        print(f"Error: {args.skill_path} does not exist", file=sys.stderr)
        return EXIT_USAGE

    try:
        options = resolve_options(args)
        doc = load_document(args.skill_path)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    result = validate_skill(doc, options)
    return emit_result(result, args, options, f"Skill Validation: {args.skill_path.name}")


if __name__ == "__main__":
    sys.exit(main())
