"""Tests for decomposition/detector.py -- when a phase should be split."""

from pydantic import TypeAdapter

from forge.config import DecompositionConfig
from forge.decomposition.detector import (
    BudgetProgressMismatch,
    ComplexitySignal,
    DecompositionDetector,
    DecompositionTrigger,
    ExecutionSignals,
    ExplicitRequest,
    MultipleBlockers,
    NoTrigger,
)
from forge.models.phase import PermissionMode
from forge.models.signals import BlockerSignal, IterationSignals
from tests.conftest import make_phase

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _signals(
    *blockers: str, requested: bool = False, progress: int | None = None
) -> ExecutionSignals:
    return ExecutionSignals(
        blockers=[BlockerSignal(description=text) for text in blockers],
        decomposition_requested=requested,
        latest_progress=progress,
    )


# =========================================================================
# Budget trigger
# =========================================================================


class TestBudgetTrigger:
    """Too much budget spent for too little progress."""

    def test_fires_past_threshold_with_low_progress(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check_budget_trigger(make_phase("03", budget=20), 12, 20)
        assert isinstance(trigger, BudgetProgressMismatch)
        assert trigger.should_decompose
        assert trigger.description == (
            "Budget progress mismatch: 60% budget used (12/20) with only 20% progress"
        )

    def test_enough_progress_does_not_fire(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check_budget_trigger(make_phase("03", budget=20), 12, 50)
        assert isinstance(trigger, NoTrigger)
        assert not trigger.should_decompose

    def test_exactly_at_threshold_does_not_fire(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check_budget_trigger(make_phase("03", budget=20), 10, 0)
        assert isinstance(trigger, NoTrigger)

    def test_custom_thresholds(self) -> None:
        config = DecompositionConfig(budget_threshold_percent=25, progress_threshold_percent=60)
        detector = DecompositionDetector(config)
        trigger = detector.check_budget_trigger(make_phase("03", budget=20), 6, 50)
        assert isinstance(trigger, BudgetProgressMismatch)


# =========================================================================
# Signal triggers
# =========================================================================


class TestSignalsTrigger:
    """Explicit requests, complexity keywords and piled-up blockers."""

    def test_explicit_request_wins(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check_signals_trigger(_signals("This is too complex", requested=True))
        assert isinstance(trigger, ExplicitRequest)
        assert trigger.description == "Explicit decomposition request"

    def test_explicit_request_can_be_disabled(self) -> None:
        detector = DecompositionDetector(DecompositionConfig(allow_explicit_request=False))
        trigger = detector.check_signals_trigger(_signals(requested=True))
        assert isinstance(trigger, NoTrigger)

    def test_complexity_keyword_case_insensitive(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check_signals_trigger(_signals("Needs Decomposition into parts"))
        assert isinstance(trigger, ComplexitySignal)
        assert trigger.message == "Needs Decomposition into parts"
        assert trigger.description.startswith("Complexity signal detected:")

    def test_acknowledged_blockers_are_ignored(self) -> None:
        detector = DecompositionDetector()
        signals = ExecutionSignals(
            blockers=[BlockerSignal(description="too complex", acknowledged=True)]
        )
        assert isinstance(detector.check_signals_trigger(signals), NoTrigger)

    def test_three_open_blockers(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check_signals_trigger(
            _signals("missing env var", "flaky test", "API down")
        )
        assert trigger == MultipleBlockers(count=3)
        assert "Multiple blockers (3)" in trigger.description

    def test_two_blockers_are_not_enough(self) -> None:
        detector = DecompositionDetector()
        assert isinstance(
            detector.check_signals_trigger(_signals("missing env var", "flaky test")),
            NoTrigger,
        )

    def test_keyword_detection_can_be_disabled(self) -> None:
        detector = DecompositionDetector(DecompositionConfig(detect_complexity_signals=False))
        assert isinstance(detector.check_signals_trigger(_signals("too complex")), NoTrigger)


# =========================================================================
# Combined check
# =========================================================================


class TestCheck:
    """check() precedence and switches."""

    def test_signals_take_precedence_over_budget(self) -> None:
        detector = DecompositionDetector()
        trigger = detector.check(make_phase("03", budget=20), _signals(requested=True), 12, 0)
        assert isinstance(trigger, ExplicitRequest)

    def test_progress_defaults_to_latest_reported(self) -> None:
        detector = DecompositionDetector()
        phase = make_phase("03", budget=20)
        assert isinstance(detector.check(phase, _signals(progress=50), 12), NoTrigger)
        assert isinstance(detector.check(phase, _signals(), 12), BudgetProgressMismatch)

    def test_disabled_never_triggers(self) -> None:
        detector = DecompositionDetector(DecompositionConfig(enabled=False))
        trigger = detector.check(make_phase("03", budget=20), _signals(requested=True), 19, 0)
        assert isinstance(trigger, NoTrigger)

    def test_readonly_phase_never_triggers(self) -> None:
        phase = make_phase("03", budget=20, permission_mode=PermissionMode.READONLY)
        detector = DecompositionDetector(DecompositionConfig().for_phase(phase))
        assert isinstance(detector.check(phase, _signals(requested=True), 19, 0), NoTrigger)

    def test_trigger_union_parses_by_kind(self) -> None:
        adapter = TypeAdapter(DecompositionTrigger)
        trigger = adapter.validate_python({"kind": "multiple_blockers", "count": 4})
        assert trigger == MultipleBlockers(count=4)
        assert isinstance(adapter.validate_python({"kind": "none"}), NoTrigger)


# =========================================================================
# Signal accumulation
# =========================================================================


class TestExecutionSignals:
    def test_accumulates_across_iterations(self) -> None:
        signals = ExecutionSignals()
        signals.add_iteration(
            IterationSignals(progress_percent=20, blockers=[BlockerSignal(description="a")])
        )
        signals.add_iteration(IterationSignals(decomposition_request=True))
        assert signals.latest_progress == 20
        assert signals.decomposition_requested
        assert [b.description for b in signals.open_blockers()] == ["a"]

    def test_reset_clears_everything(self) -> None:
        signals = _signals("a", requested=True, progress=40)
        signals.reset()
        assert signals.blockers == []
        assert not signals.decomposition_requested
        assert signals.latest_progress is None
