"""Tests for models/ -- phase definitions, sub-phases and the phases file shape."""

import json

import pytest
from pydantic import ValidationError

from forge.models.phase import (
    PermissionMode,
    Phase,
    PhasesFile,
    PhaseType,
    SubPhase,
    SubPhaseStatus,
)
from forge.models.signals import IterationResult, IterationSignals
from tests.conftest import make_phase

PHASES_JSON = json.dumps(
    {
        "spec_hash": "abc123",
        "generated_at": "2026-01-10T12:00:00Z",
        "phases": [
            {
                "number": "01",
                "name": "Scaffold",
                "promise": "SCAFFOLD COMPLETE",
                "budget": 8,
                "skills": ["python"],
                "phase_type": "scaffold",
            },
            {
                "number": "02",
                "name": "API",
                "promise": "API COMPLETE",
                "budget": 20,
                "depends_on": ["01"],
                "permission_mode": "autonomous",
                "sub_phases": [
                    {
                        "number": "02.1",
                        "parent_phase": "02",
                        "order": 1,
                        "name": "Auth",
                        "promise": "AUTH COMPLETE",
                        "budget": 5,
                        "status": "completed",
                    }
                ],
            },
            {
                "number": "03",
                "name": "Docs",
                "promise": "DOCS COMPLETE",
                "budget": 3,
                "depends_on": ["02"],
                "permission_mode": "readonly",
            },
        ],
    }
)


# =========================================================================
# PhasesFile
# =========================================================================


class TestPhasesFile:
    """Loading and querying the persisted phase plan."""

    def test_from_json(self) -> None:
        phases_file = PhasesFile.from_json(PHASES_JSON)

        assert phases_file.spec_hash == "abc123"
        assert [phase.number for phase in phases_file.phases] == ["01", "02", "03"]
        api = phases_file.get_phase("02")
        assert api.permission_mode == PermissionMode.AUTONOMOUS
        assert api.sub_phases[0].status == SubPhaseStatus.COMPLETED
        assert phases_file.get_phase("01").phase_type == PhaseType.SCAFFOLD
        assert phases_file.get_phase("99") is None

    def test_to_json_preserves_content(self) -> None:
        phases_file = PhasesFile.from_json(PHASES_JSON)
        assert PhasesFile.from_json(phases_file.to_json()) == phases_file

    def test_get_phases_from(self) -> None:
        phases_file = PhasesFile.from_json(PHASES_JSON)
        assert [phase.number for phase in phases_file.get_phases_from("02")] == ["02", "03"]
        assert phases_file.get_phases_from("99") == []

    def test_unknown_permission_mode_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PhasesFile.from_json(
                '{"phases": [{"number": "01", "name": "x", "promise": "p", '
                '"budget": 1, "permission_mode": "root"}]}'
            )


# =========================================================================
# Phase and SubPhase
# =========================================================================


class TestPhaseBudget:
    """Budget arithmetic over sub-phases."""

    def test_remaining_budget(self) -> None:
        phase = PhasesFile.from_json(PHASES_JSON).get_phase("02")
        assert phase.has_sub_phases()
        assert phase.allocated_budget() == 5
        assert phase.remaining_budget() == 15

    def test_remaining_budget_never_negative(self) -> None:
        phase = make_phase("01", budget=2)
        phase.sub_phases.append(
            SubPhase(number="01.1", parent_phase="01", order=1, name="a", promise="a", budget=5)
        )
        assert phase.remaining_budget() == 0

    def test_negative_budget_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_phase("01", budget=-1)

    def test_update_sub_phase_status(self) -> None:
        phase = PhasesFile.from_json(PHASES_JSON).get_phase("02")
        assert phase.update_sub_phase_status("02.1", SubPhaseStatus.FAILED)
        assert not phase.update_sub_phase_status("02.9", SubPhaseStatus.FAILED)
        assert not phase.all_sub_phases_complete()

    def test_no_sub_phases_is_vacuously_complete(self) -> None:
        assert make_phase("01").all_sub_phases_complete()


class TestSubPhaseToPhase:
    """Sub-phases run under their parent's settings."""

    def test_inherits_parent_settings(self) -> None:
        parent = make_phase(
            "02",
            permission_mode=PermissionMode.STRICT,
            phase_type=PhaseType.IMPLEMENT,
            skills=["python", "sql"],
        )
        sub = SubPhase(
            number="02.1", parent_phase="02", order=1, name="Auth", promise="AUTH", budget=4
        )

        phase = sub.to_phase(parent)

        assert phase.number == "02.1"
        assert phase.budget == 4
        assert phase.promise == "AUTH"
        assert phase.permission_mode == PermissionMode.STRICT
        assert phase.phase_type == PhaseType.IMPLEMENT
        assert phase.skills == ["python", "sql"]
        assert phase.depends_on == []

    def test_own_skills_win(self) -> None:
        parent = make_phase("02", skills=["python"])
        sub = SubPhase(
            number="02.1",
            parent_phase="02",
            order=1,
            name="Auth",
            promise="AUTH",
            budget=4,
            skills=["oauth"],
        )
        assert sub.to_phase(parent).skills == ["oauth"]

    def test_status_terminality(self) -> None:
        assert SubPhaseStatus.SKIPPED.is_terminal
        assert not SubPhaseStatus.IN_PROGRESS.is_terminal


# =========================================================================
# Signals
# =========================================================================


class TestIterationSignals:
    def test_empty_signals(self) -> None:
        assert not IterationSignals().has_signals()
        assert IterationSignals(pivot="new plan").has_signals()

    def test_progress_bounds(self) -> None:
        with pytest.raises(ValidationError):
            IterationSignals(progress_percent=120)

    def test_result_defaults(self) -> None:
        result = IterationResult()
        assert result.iterations_used == 1
        assert not result.promise_found
        assert result.spawn_requests == []


def test_phase_equality_ignores_identity() -> None:
    assert make_phase("01") == Phase(
        number="01", name="Phase 01", promise="PHASE 01 COMPLETE", budget=10
    )
