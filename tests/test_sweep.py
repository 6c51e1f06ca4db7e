"""
Tests for the sweep orchestrator, scoring and bounded history.
"""

import json
import threading
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from studyvault.core.health import ProbeResult
from studyvault.core.registry import HISTORY_KEY, LAST_SWEEP_KEY
from studyvault.core.schema import Category, RepairAction, Severity, SweepRecord
from studyvault.core.store import MemoryStore
from studyvault.core.sweep import (
    Phase,
    SweepGuard,
    SweepHistory,
    SweepInProgressError,
    SweepState,
    Sweeper,
    build_phases,
    compute_score,
    run_sweep,
    score_label,
)

from conftest import FakeHealthChecker


def _action(severity, n=0):
    return RepairAction(id=f"a{n}", category=Category.INTEGRITY, label="x", detail="y", severity=severity)


def _ticking_clock(start=datetime(2026, 1, 1, 9, 0, 0)):
    ticks = {"n": 0}

    def clock():
        ticks["n"] += 1
        return start + timedelta(minutes=ticks["n"])
    return clock


class TestScore:

    @pytest.mark.parametrize("errors,warnings,expected", [
        (0, 0, 100),
        (1, 0, 85),
        (0, 1, 92),
        (2, 3, 46),
        (7, 0, 0),
        (5, 5, 0),
    ])
    def test_score_formula(self, errors, warnings, expected):
        actions = [_action(Severity.ERROR, i) for i in range(errors)]
        actions += [_action(Severity.WARNING, i) for i in range(warnings)]
        assert compute_score(actions) == expected

    def test_fixed_and_info_do_not_reduce_score(self):
        actions = [_action(Severity.FIXED, i) for i in range(20)] + [_action(Severity.INFO, i) for i in range(20)]
        actions.append(_action(Severity.WARNING))
        assert compute_score(actions) == 92

    @pytest.mark.parametrize("score,label", [(100, "Excellent"), (95, "Excellent"), (80, "Good"), (60, "Fair"), (59, "Critical")])
    def test_score_label(self, score, label):
        assert score_label(score) == label


class TestSweepHistory:

    def test_history_bounded_newest_first(self, store):
        history = SweepHistory(store, limit=5)
        for i in range(6):
            history.append(SweepRecord(timestamp=f"t{i}", fixed=i, warnings=0, score=100))

        records = history.load()
        assert [r.timestamp for r in records] == ["t5", "t4", "t3", "t2", "t1"]
        assert len(json.loads(store.get(HISTORY_KEY))) == 5
        assert history.last_sweep() == "t5"

    def test_browser_records_use_ts(self, store):
        store.set(HISTORY_KEY, json.dumps([{"ts": "19/10/2026, 10:00:00", "fixed": 2, "warnings": 1, "score": 92}]))
        history = SweepHistory(store)

        assert history.load() == [SweepRecord(timestamp="19/10/2026, 10:00:00", fixed=2, warnings=1, score=92)]
        records = history.append(SweepRecord(timestamp="t", fixed=0, warnings=0, score=100))
        assert [r.timestamp for r in records] == ["t", "19/10/2026, 10:00:00"]

    def test_corrupt_history_starts_fresh(self, store):
        store.set(HISTORY_KEY, "{not json")
        history = SweepHistory(store)

        assert history.load() == []
        records = history.append(SweepRecord(timestamp="t", fixed=0, warnings=0, score=100))
        assert len(records) == 1


class TestSweeper:
    """Test orchestration of the full sweep."""

    def test_phase_order(self, online_checker):
        names = [p.name for p in build_phases(online_checker)]
        assert names == [
            "key_migration", "structure_validation", "stale_cleanup", "config_consistency",
            "duplicate_elimination", "service_health", "orphan_removal", "storage_report",
        ]
        assert "service_health" not in [p.name for p in build_phases(None)]

    def test_full_sweep_repairs_store(self, online_checker):
        store = MemoryStore({
            "notebook-entries": json.dumps([{"id": 1}, {"id": 2}]),
            "kanban-tasks": json.dumps("not an array"),
            "agenda-events": "{bad json",
            "flashcards": json.dumps([{"id": "x"}, {"id": "x"}, {"id": "y"}]),
            "provas-enem": "[]",
            "random-unrecognized-key": "1",
        })

        result = Sweeper(store, health_checker=online_checker).run()

        assert json.loads(store.get("study-notes")) == [{"id": 1}, {"id": 2}]
        assert store.get("notebook-entries") is None
        assert json.loads(store.get("kanban-tasks")) == []
        assert json.loads(store.get("agenda-events")) == []
        assert json.loads(store.get("flashcards")) == [{"id": "x"}, {"id": "y"}]
        assert store.get("provas-enem") is None
        assert store.get("random-unrecognized-key") is None

        structure = [a for a in result.actions if a.category is Category.STRUCTURE]
        assert len(structure) == 2
        orphan = [a for a in result.actions if a.id == "orphans-removed"]
        assert "random-unrecognized-key" in orphan[0].detail
        assert result.score == 100
        assert result.record.fixed == result.counts()["fixed"]

    def test_second_sweep_is_clean(self, online_checker):
        store = MemoryStore({
            "study-goals": json.dumps([{"id": 1}]),
            "weekly-goals": json.dumps([{"id": 2}]),
            "dark-mode": "{{",
            "junk": "x",
        })

        first = run_sweep(store, health_checker=online_checker)
        second = run_sweep(store, health_checker=online_checker)

        assert first.counts()["fixed"] > 0
        assert second.counts()["fixed"] == 0
        assert second.counts()["warning"] == 0
        assert second.score >= first.score
        assert second.actions[0].id == "all-clean"
        assert all(a.severity is Severity.INFO for a in second.actions)

    def test_all_clean_prepended_only_when_nothing_found(self):
        store = MemoryStore({"mentor-config": json.dumps({"userName": "A", "voiceSpeed": 1, "voicePersona": "f"})})

        result = run_sweep(store)

        assert result.actions[0].id == "all-clean"
        assert result.actions[-1].id == "storage-health"
        assert result.score == 100

    def test_edge_values_are_repaired_without_phase_errors(self):
        store = MemoryStore({
            "kanban-tasks": "[" * 200000,
            "agenda-events": "{bad json",
            "dark-mode": "NaN",
            "study-notes": '["\ud800"]',
        })

        result = run_sweep(store)

        assert result.counts()["error"] == 0
        assert result.score == 100
        assert json.loads(store.get("kanban-tasks")) == []
        assert json.loads(store.get("agenda-events")) == []
        assert store.get("dark-mode") == "false"

    def test_failing_phase_is_isolated(self, store):
        def exploding(store):
            yield RepairAction(id="partial", category=Category.KEYS, label="p", detail="d", severity=Severity.FIXED)
            raise RuntimeError("boom")

        sweeper = Sweeper(store)
        sweeper.phases = [Phase("exploding", Category.KEYS, "Exploding", exploding)] + sweeper.phases

        result = sweeper.run()

        ids = [a.id for a in result.actions]
        assert ids[:2] == ["partial", "phase-error-exploding"]
        error = result.actions[1]
        assert error.severity is Severity.ERROR
        assert error.category is Category.KEYS
        assert "boom" in error.detail
        assert "storage-health" in ids
        assert result.score == 85
        assert len(SweepHistory(store).load()) == 1

    def test_phase_sees_previous_phase_effects(self, store):
        # Migrated legacy data is deduplicated in the same sweep
        store.set("flashcard-decks", json.dumps([{"id": 1}, {"id": 1}]))

        run_sweep(store)

        assert json.loads(store.get("flashcards")) == [{"id": 1}]

    def test_offline_transition_across_sweeps(self, store):
        degraded = FakeHealthChecker(results={"enem-tutor": ProbeResult(ok=False, status=402)})
        first = run_sweep(store, health_checker=degraded)

        assert store.get("mentor-offline-mode") == "true"
        tutor = [a for a in first.actions if a.id == "ai-enem-tutor"]
        assert tutor[0].severity is Severity.FIXED

        second = run_sweep(store, health_checker=FakeHealthChecker())
        assert store.get("mentor-offline-mode") is None
        tutor = [a for a in second.actions if a.id == "ai-enem-tutor"]
        assert tutor[0].severity is Severity.INFO

    def test_history_after_six_sweeps(self, store):
        clock = _ticking_clock()
        stamps = [run_sweep(store, clock=clock).record.timestamp for _ in range(6)]

        records = SweepHistory(store).load()
        assert len(records) == 5
        assert [r.timestamp for r in records] == list(reversed(stamps[1:]))
        assert stamps[0] not in [r.timestamp for r in records]
        assert json.loads(store.get(LAST_SWEEP_KEY)) == stamps[-1]

    def test_history_survives_orphan_phase(self, store):
        run_sweep(store)
        run_sweep(store)
        assert len(SweepHistory(store).load()) == 2

    def test_state_returns_to_idle(self, store):
        seen = []
        sweeper = Sweeper(store, on_phase=lambda phase, pct: seen.append((phase.name, pct, sweeper.state)))

        sweeper.run()

        assert sweeper.state is SweepState.IDLE
        assert seen[0] == ("key_migration", 0, SweepState.RUNNING)
        assert all(state is SweepState.RUNNING for _, _, state in seen)

    @patch("studyvault.core.sweep.logger")
    def test_completion_is_logged(self, mock_logger, store):
        run_sweep(store)
        mock_logger.log_sweep_completed.assert_called_once()


class TestSweepGuard:
    """Sweeps against one store must be serialized by the caller."""

    def test_overlapping_sweep_rejected(self, store):
        guard = SweepGuard()
        entered = threading.Event()
        release = threading.Event()

        class BlockingChecker(FakeHealthChecker):
            def probe(self, function, payload):
                entered.set()
                release.wait(5)
                return super().probe(function, payload)

        worker = threading.Thread(target=guard.run, args=(Sweeper(store, health_checker=BlockingChecker()),))
        worker.start()
        try:
            assert entered.wait(5)
            assert guard.busy
            with pytest.raises(SweepInProgressError):
                guard.run(Sweeper(store))
        finally:
            release.set()
            worker.join(5)

        assert not guard.busy
        assert len(SweepHistory(store).load()) == 1

    def test_sequential_sweeps_allowed(self, store):
        guard = SweepGuard()
        guard.run(Sweeper(store))
        guard.run(Sweeper(store))
        assert len(SweepHistory(store).load()) == 2
