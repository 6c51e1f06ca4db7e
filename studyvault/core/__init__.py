"""
Sweep engine core - store backends, schema registry, phases and orchestration.
"""

from .schema import Category, Severity, RepairAction, SweepRecord, SweepResult
from .store import KeyValueStore, MemoryStore, SQLiteStore, JsonFileStore, StoreError
from .health import HealthChecker, ProbeResult, RequestsHealthChecker
from .sweep import Sweeper, SweepGuard, SweepHistory, run_sweep, compute_score

__all__ = [
    'Category',
    'Severity',
    'RepairAction',
    'SweepRecord',
    'SweepResult',
    'KeyValueStore',
    'MemoryStore',
    'SQLiteStore',
    'JsonFileStore',
    'StoreError',
    'HealthChecker',
    'ProbeResult',
    'RequestsHealthChecker',
    'Sweeper',
    'SweepGuard',
    'SweepHistory',
    'run_sweep',
    'compute_score'
]
