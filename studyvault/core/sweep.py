"""
Sweep orchestrator - runs every phase in order, scores the report and records it
in the bounded sweep history.

The orchestrator holds no lock. Callers must not run two sweeps against the same
store at once; SweepGuard is the serialization helper host surfaces use.
"""

import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, List, Optional

from .config import SWEEP_HISTORY_LIMIT
from .health import HealthChecker, check_services
from .phases import (
    cleanup_stale_keys,
    migrate_keys,
    remove_duplicates,
    remove_orphans,
    repair_config,
    report_storage,
    validate_structures,
)
from .registry import HISTORY_KEY, LAST_SWEEP_KEY
from .schema import Category, RepairAction, Severity, SweepRecord, SweepResult
from .store import KeyValueStore, StoreError
from util.logging import logger

ERROR_PENALTY = 15
WARNING_PENALTY = 8


class SweepError(Exception):
    """Base exception for sweep orchestration."""
    pass


class SweepInProgressError(SweepError):
    """Raised when a sweep is requested while another one is running."""
    pass


class SweepState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SCORING = "scoring"
    RECORDED = "recorded"


@dataclass(frozen=True)
class Phase:
    name: str
    category: Category
    label: str
    run: Callable[[KeyValueStore], Iterator[RepairAction]]


def build_phases(health_checker: Optional[HealthChecker] = None) -> List[Phase]:
    """Ordered phase list. The service phase is left out without a checker."""
    phases = [
        Phase("key_migration", Category.KEYS, "Migrating legacy keys", migrate_keys),
        Phase("structure_validation", Category.STRUCTURE, "Validating data structures", validate_structures),
        Phase("stale_cleanup", Category.STALE, "Cleaning removed modules", cleanup_stale_keys),
        Phase("config_consistency", Category.CONFIG, "Checking configuration", repair_config),
        Phase("duplicate_elimination", Category.INTEGRITY, "Removing duplicates", remove_duplicates),
    ]
    if health_checker is not None:
        phases.append(Phase(
            "service_health", Category.CONFIG, "Checking AI services",
            lambda store: check_services(store, health_checker),
        ))
    phases.extend([
        Phase("orphan_removal", Category.ORPHAN, "Detecting orphan keys", remove_orphans),
        Phase("storage_report", Category.INTEGRITY, "Measuring storage health", report_storage),
    ])
    return phases


def compute_score(actions: List[RepairAction]) -> int:
    """100 minus 15 per error and 8 per warning, floored at 0."""
    errors = sum(1 for a in actions if a.severity is Severity.ERROR)
    warnings = sum(1 for a in actions if a.severity is Severity.WARNING)
    return max(0, 100 - errors * ERROR_PENALTY - warnings * WARNING_PENALTY)


def score_label(score: int) -> str:
    if score >= 95:
        return "Excellent"
    if score >= 80:
        return "Good"
    if score >= 60:
        return "Fair"
    return "Critical"


class SweepHistory:
    """Bounded, newest-first list of sweep records persisted in the store."""

    def __init__(self, store: KeyValueStore, limit: Optional[int] = None):
        self.store = store
        self.limit = limit or SWEEP_HISTORY_LIMIT

    def load(self) -> List[SweepRecord]:
        raw = self.store.get(HISTORY_KEY)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise ValueError("history is not a list")
            return [SweepRecord.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError, RecursionError) as e:
            logger.warning(f"Discarding unreadable sweep history: {e}")
            return []

    def append(self, record: SweepRecord) -> List[SweepRecord]:
        """Prepend a record, evicting the oldest past the limit."""
        records = [record] + self.load()[:self.limit - 1]
        self.store.set(HISTORY_KEY, json.dumps([r.to_dict() for r in records]))
        self.store.set(LAST_SWEEP_KEY, json.dumps(record.timestamp))
        return records

    def last_sweep(self) -> Optional[str]:
        raw = self.store.get(LAST_SWEEP_KEY)
        if not raw:
            return None
        try:
            return str(json.loads(raw))
        except ValueError:
            return raw


class Sweeper:
    """
    Runs all sweep phases against one store.

    Every phase sees the effects of the phases before it. A phase that raises
    is reported as a single error action and the sweep carries on.
    """

    def __init__(self, store: KeyValueStore, health_checker: Optional[HealthChecker] = None,
                 history_limit: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 on_phase: Optional[Callable[[Phase, int], None]] = None):
        self.store = store
        self.health_checker = health_checker
        self.history = SweepHistory(store, history_limit)
        self.clock = clock or datetime.now
        self.on_phase = on_phase
        self.phases = build_phases(health_checker)
        self.state = SweepState.IDLE
        self.current_phase: Optional[str] = None

    def run(self) -> SweepResult:
        actions: List[RepairAction] = []
        logger.log_sweep_started(len(self.phases), self.health_checker is not None)

        try:
            self.state = SweepState.RUNNING
            for index, phase in enumerate(self.phases):
                self.current_phase = phase.name
                if self.on_phase:
                    self.on_phase(phase, int(index * 100 / len(self.phases)))
                actions.extend(self._run_phase(phase))
            self.current_phase = None

            self.state = SweepState.SCORING
            fixed = sum(1 for a in actions if a.severity is Severity.FIXED)
            warnings = sum(1 for a in actions if a.severity is Severity.WARNING)
            if fixed == 0 and warnings == 0:
                actions.insert(0, RepairAction(
                    id="all-clean",
                    category=Category.INTEGRITY,
                    label="Storage is healthy",
                    detail="No problems found. All keys, structures and settings are correct.",
                    severity=Severity.INFO,
                ))
            score = compute_score(actions)
            record = SweepRecord(
                timestamp=self.clock().isoformat(timespec="seconds"),
                fixed=fixed,
                warnings=warnings,
                score=score,
            )

            try:
                self.history.append(record)
            except StoreError as e:
                logger.error(f"Sweep history could not be saved: {e}")
            self.state = SweepState.RECORDED

            errors = sum(1 for a in actions if a.severity is Severity.ERROR)
            logger.log_sweep_completed(score, fixed, warnings, errors)
            return SweepResult(actions=actions, record=record)
        finally:
            self.current_phase = None
            self.state = SweepState.IDLE

    def _run_phase(self, phase: Phase) -> List[RepairAction]:
        collected: List[RepairAction] = []
        start_time = time.monotonic()
        try:
            for action in phase.run(self.store):
                collected.append(action)
                if action.severity is not Severity.INFO:
                    logger.log_repair_action(action.id, action.category.value, action.severity.value, action.label)
        except Exception as e:
            logger.log_sweep_phase(phase.name, start_time, time.monotonic(), "failed", {"error": str(e)})
            collected.append(RepairAction(
                id=f"phase-error-{phase.name}",
                category=phase.category,
                label=f"{phase.label} failed",
                detail=f"{type(e).__name__}: {e}",
                severity=Severity.ERROR,
            ))
            return collected

        logger.log_sweep_phase(phase.name, start_time, time.monotonic(), details={"actions": len(collected)})
        return collected


def run_sweep(store: KeyValueStore, health_checker: Optional[HealthChecker] = None, **kwargs) -> SweepResult:
    """Run one complete sweep and return its actions and record."""
    return Sweeper(store, health_checker=health_checker, **kwargs).run()


class SweepGuard:
    """Serializes sweeps for a host surface; overlapping requests are rejected, not queued."""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the store for one sweep or one external write; raise if already held."""
        if not self._lock.acquire(blocking=False):
            raise SweepInProgressError("A sweep is already running against this store")
        try:
            yield
        finally:
            self._lock.release()

    def run(self, sweeper: Sweeper) -> SweepResult:
        with self.exclusive():
            return sweeper.run()
