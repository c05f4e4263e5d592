"""Shared fixtures for the skill/solution validator tests."""

import copy
from typing import Any, Callable

import pytest

VALID_SKILL: dict[str, Any] = {
    "id": "clinic-scheduler",
    "name": "Clinic Scheduler",
    "phase": "TOOL_DEFINITION",
    "problem": {
        "statement": "Patients cannot book appointments outside office hours",
        "context": "Small clinic with two doctors",
        "goals": ["Let patients self-book"],
    },
    "scenarios": [
        {
            "id": "sc-book",
            "name": "Book appointment",
            "description": "A patient books the next free slot",
            "steps": ["Ask for a date", "Offer slots", "Confirm"],
        }
    ],
    "role": {
        "name": "Scheduler",
        "persona": "A friendly and precise clinic receptionist",
        "communication_style": {"tone": "formal", "verbosity": "concise"},
    },
    "intents": {
        "supported": [
            {
                "id": "book_appointment",
                "name": "Book appointment",
                "description": "User wants to book a visit",
                "examples": ["I need to see a doctor tomorrow"],
                "maps_to_workflow": "wf-book",
            }
        ],
        "thresholds": {"accept": 0.8, "clarify": 0.5, "reject": 0.2},
        "out_of_skill": {"action": "redirect"},
    },
    "tools": [
        {
            "id": "tool-find-slots",
            "name": "find_slots",
            "description": "Find free appointment slots",
            "parameters": [{"name": "date", "type": "string", "required": True}],
            "output": {"type": "array", "description": "Free slots"},
            "security": {"classification": "public"},
        },
        {
            "id": "tool-book",
            "name": "book_slot",
            "description": "Book an appointment slot for a patient",
            "parameters": [
                {"name": "slot_id", "type": "string", "required": True},
                {"name": "patient_id", "type": "string", "required": True},
            ],
            "output": {"type": "object"},
            "security": {"classification": "pii_write", "risk": "medium", "data_owner_field": "patient_id"},
        },
    ],
    "policy": {
        "guardrails": {"never": ["Share another patient's data"], "always": ["Confirm before booking"]},
        "workflows": [
            {"id": "wf-book", "name": "Booking", "trigger": "book_appointment", "steps": ["find_slots", "book_slot"]}
        ],
        "approvals": [{"id": "ap-book", "tool_id": "tool-book"}],
    },
    "engine": {"provider": "anthropic", "model": "reasoning-large", "temperature": 0.3},
    "mocks": [{"toolId": "tool-find-slots", "responses": [{"slots": ["09:00"]}]}],
    "access_policy": {
        "rules": [
            {"tools": ["book_slot"], "effect": "constrain", "constrain": {"patient_id": "$grant.clinic.patient_id"}},
            {"tools": ["find_slots"], "effect": "allow"},
        ]
    },
    "response_filters": [
        {"id": "rf-patient", "tools": ["book_slot"], "strip_fields": ["patient.ssn"], "mask_fields": ["patient.phone"]}
    ],
    "grant_mappings": [{"tool": "find_slots", "grants": [{"key": "clinic.patient_id", "value_from": "patient_id"}]}],
}


@pytest.fixture
def make_skill() -> Callable[..., dict[str, Any]]:
    """Factory returning a fresh, fully valid skill; keyword arguments override top-level keys."""

    def _make(**overrides: Any) -> dict[str, Any]:
        skill = copy.deepcopy(VALID_SKILL)
        skill.update(overrides)
        return skill

    return _make


@pytest.fixture
def base_solution() -> dict[str, Any]:
    """An empty solution with every top-level collection present."""
    return {"id": "test", "name": "Test", "skills": [], "grants": [], "handoffs": [], "routing": {}}