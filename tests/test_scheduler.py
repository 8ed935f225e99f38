"""Tests for dag/scheduler.py -- wave planning, readiness and status transitions."""

from forge.config import DagConfig
from forge.dag.scheduler import DagScheduler
from forge.dag.status import Completed, Failed, Pending, Ready, Running, Skipped
from tests.conftest import make_phase

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _diamond(config: DagConfig | None = None) -> DagScheduler:
    return DagScheduler.from_phases(
        [
            make_phase("01"),
            make_phase("02", depends_on=["01"]),
            make_phase("03", depends_on=["01"]),
            make_phase("04", depends_on=["02", "03"]),
        ],
        config,
    )


def _chain(config: DagConfig | None = None) -> DagScheduler:
    return DagScheduler.from_phases(
        [
            make_phase("01"),
            make_phase("02", depends_on=["01"]),
            make_phase("03", depends_on=["02"]),
        ],
        config,
    )


def _numbers(nodes: list) -> list[str]:
    return [node.number for node in nodes]


# =========================================================================
# Wave planning
# =========================================================================


class TestComputeWaves:
    """compute_waves groups phases without touching live status."""

    def test_diamond_waves(self) -> None:
        scheduler = _diamond()
        assert scheduler.compute_waves() == [["01"], ["02", "03"], ["04"]]

    def test_independent_phases_share_first_wave(self) -> None:
        scheduler = DagScheduler.from_phases(
            [make_phase("01"), make_phase("02"), make_phase("03", depends_on=["02"])]
        )
        assert scheduler.compute_waves() == [["01", "02"], ["03"]]

    def test_irregular_graph_waves_are_topological(self) -> None:
        # Declared out of dependency order, with edges that skip levels.
        phases = [
            make_phase("07", depends_on=["03", "05"]),
            make_phase("01"),
            make_phase("05", depends_on=["01"]),
            make_phase("03", depends_on=["01", "02"]),
            make_phase("02"),
            make_phase("06", depends_on=["05"]),
            make_phase("04", depends_on=["02"]),
            make_phase("08", depends_on=["07", "04"]),
            make_phase("09", depends_on=["01"]),
        ]

        waves = DagScheduler.from_phases(phases).compute_waves()

        assert waves == [["01", "02"], ["05", "03", "04", "09"], ["07", "06"], ["08"]]
        order = [number for wave in waves for number in wave]
        assert sorted(order) == sorted(phase.number for phase in phases)
        position = {number: i for i, number in enumerate(order)}
        for phase in phases:
            for dep in phase.depends_on:
                assert position[dep] < position[phase.number]

    def test_empty_graph_has_no_waves(self) -> None:
        assert DagScheduler.from_phases([]).compute_waves() == []

    def test_planning_leaves_status_untouched(self) -> None:
        scheduler = _diamond()
        scheduler.compute_waves()
        assert all(isinstance(node.status, Pending) for node in scheduler.nodes)
        assert scheduler.completed == set()


# =========================================================================
# Readiness
# =========================================================================


class TestReadiness:
    """Live readiness follows completed dependencies."""

    def test_only_roots_ready_initially(self) -> None:
        scheduler = _diamond()
        assert _numbers(scheduler.get_ready_phases()) == ["01"]

    def test_completion_unlocks_dependents(self) -> None:
        scheduler = _diamond()
        scheduler.mark_running("01")
        assert scheduler.get_ready_phases() == []
        scheduler.mark_completed("01", iterations=3)
        assert _numbers(scheduler.get_ready_phases()) == ["02", "03"]

    def test_join_waits_for_every_dependency(self) -> None:
        scheduler = _diamond()
        for number in ("01", "02"):
            scheduler.mark_running(number)
            scheduler.mark_completed(number, iterations=1)
        assert _numbers(scheduler.get_ready_phases()) == ["03"]

    def test_promote_ready_moves_pending_to_ready_once(self) -> None:
        scheduler = _diamond()
        assert scheduler.promote_ready() == ["01"]
        assert isinstance(scheduler.get_node("01").status, Ready)
        assert scheduler.promote_ready() == []
        assert _numbers(scheduler.get_ready_phases()) == ["01"]


# =========================================================================
# Transitions
# =========================================================================


class TestTransitions:
    """mark_* methods and their guards."""

    def test_mark_running_sets_start_time(self) -> None:
        scheduler = _diamond()
        assert scheduler.mark_running("01")
        status = scheduler.get_node("01").status
        assert isinstance(status, Running)
        assert status.started_at > 0
        assert scheduler.running_count() == 1

    def test_mark_running_unknown_phase(self) -> None:
        assert not _diamond().mark_running("99")

    def test_mark_running_twice_is_refused(self) -> None:
        scheduler = _diamond()
        scheduler.mark_running("01")
        assert not scheduler.mark_running("01")

    def test_completed_records_iterations(self) -> None:
        scheduler = _diamond()
        scheduler.mark_running("01")
        scheduler.mark_completed("01", iterations=7)
        assert scheduler.get_node("01").status == Completed(iterations=7)
        assert scheduler.completed_count() == 1

    def test_terminal_phase_cannot_change(self) -> None:
        scheduler = _diamond()
        scheduler.mark_running("01")
        scheduler.mark_completed("01", iterations=1)
        assert scheduler.mark_failed("01", "late failure") == []
        assert scheduler.mark_skipped("01") == []
        assert isinstance(scheduler.get_node("01").status, Completed)

    def test_failure_without_fail_fast_keeps_dependents(self) -> None:
        scheduler = _chain()
        scheduler.mark_running("01")
        assert scheduler.mark_failed("01", "boom") == []
        assert scheduler.get_node("01").status == Failed(error="boom")
        assert isinstance(scheduler.get_node("02").status, Pending)
        assert scheduler.blocked_phases() == ["02", "03"]

    def test_failure_with_fail_fast_skips_dependents(self) -> None:
        scheduler = _chain(DagConfig(fail_fast=True))
        scheduler.mark_running("01")
        assert scheduler.mark_failed("01", "boom") == ["02", "03"]
        assert isinstance(scheduler.get_node("02").status, Skipped)
        assert isinstance(scheduler.get_node("03").status, Skipped)
        assert scheduler.all_complete()
        assert not scheduler.all_success()
        assert scheduler.blocked_phases() == []

    def test_mark_skipped_cascades(self) -> None:
        scheduler = _chain()
        assert scheduler.mark_skipped("02") == ["02", "03"]
        assert isinstance(scheduler.get_node("01").status, Pending)


# =========================================================================
# Dependent skipping
# =========================================================================


class TestSkipDependents:
    """skip_dependents visits each transitive dependent exactly once."""

    def test_diamond_skips_join_once(self) -> None:
        scheduler = _diamond()
        skipped = scheduler.skip_dependents(0)
        assert sorted(skipped) == ["02", "03", "04"]
        assert len(skipped) == 3

    def test_terminal_dependents_untouched(self) -> None:
        scheduler = _diamond()
        scheduler.mark_running("01")
        scheduler.mark_completed("01", iterations=1)
        scheduler.mark_running("02")
        scheduler.mark_completed("02", iterations=1)
        assert scheduler.skip_dependents(0) == ["03", "04"]
        assert isinstance(scheduler.get_node("02").status, Completed)

    def test_second_call_skips_nothing(self) -> None:
        scheduler = _diamond()
        scheduler.skip_dependents(0)
        assert scheduler.skip_dependents(0) == []


# =========================================================================
# Aggregates
# =========================================================================


class TestAggregates:
    def test_completion_percentage(self) -> None:
        scheduler = _diamond()
        assert scheduler.completion_percentage() == 0.0
        scheduler.mark_running("01")
        scheduler.mark_completed("01", iterations=1)
        assert scheduler.completion_percentage() == 25.0

    def test_empty_graph_is_fully_complete(self) -> None:
        scheduler = DagScheduler.from_phases([])
        assert scheduler.completion_percentage() == 100.0
        assert scheduler.all_complete()
        assert scheduler.all_success()

    def test_failed_count_includes_skipped(self) -> None:
        scheduler = _chain(DagConfig(fail_fast=True))
        scheduler.mark_running("01")
        scheduler.mark_failed("01", "boom")
        assert scheduler.failed_count() == 3
