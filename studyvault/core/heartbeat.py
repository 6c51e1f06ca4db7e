"""
Scheduled sweeps - a cooperative loop that sweeps each scheduled store on its own interval.
"""

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import is_schedule_enabled, validate_sweep_config
from .health import HealthChecker
from .store import KeyValueStore
from .sweep import SweepError, SweepGuard, SweepInProgressError, Sweeper
from util.logging import logger


@dataclass
class ScheduledSweep:
    """One store swept every `interval` seconds."""
    name: str
    store: KeyValueStore
    interval: int
    guard: SweepGuard
    health_checker: Optional[HealthChecker] = None
    last_run: Optional[float] = None
    last_score: Optional[int] = None
    runs: int = 0
    skipped: int = 0
    failures: int = 0

    def is_due(self, now: float) -> bool:
        return self.last_run is None or now - self.last_run >= self.interval

    def run(self) -> Optional[int]:
        """
        Sweep the store once and return the score.

        Returns None when another sweep holds the guard. Any other failure is
        raised as SweepError so the loop can log it and move on.
        """
        started = time.monotonic()
        try:
            result = self.guard.run(Sweeper(self.store, health_checker=self.health_checker))
        except SweepInProgressError:
            self.skipped += 1
            logger.warning(f"Scheduled sweep '{self.name}' skipped - another sweep is in progress")
            return None
        except Exception as e:
            self.failures += 1
            raise SweepError(f"Scheduled sweep '{self.name}' failed after "
                             f"{time.monotonic() - started:.2f}s: {e}") from e
        finally:
            self.last_run = time.monotonic()

        self.runs += 1
        self.last_score = result.score
        logger.info(f"Scheduled sweep '{self.name}' finished with score {result.score}")
        return result.score


sweeps: Dict[str, ScheduledSweep] = {}
running = False
shutdown_event: Optional[threading.Event] = None


def schedule_sweep(store: KeyValueStore, interval_sec: int,
                   health_checker: Optional[HealthChecker] = None,
                   guard: Optional[SweepGuard] = None, name: str = "sweep") -> ScheduledSweep:
    """Schedule periodic sweeps of a store. Runs that overlap another sweep are skipped."""
    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    job = ScheduledSweep(
        name=name,
        store=store,
        interval=interval_sec,
        guard=guard or SweepGuard(),
        health_checker=health_checker,
    )
    sweeps[name] = job
    logger.info(f"Scheduled sweep '{name}' every {interval_sec}s")
    return job


def unschedule_sweep(name: str):
    if sweeps.pop(name, None) is not None:
        logger.info(f"Unscheduled sweep '{name}'")


def scheduled_sweeps() -> List[str]:
    return list(sweeps.keys())


def start(max_cycles: Optional[int] = None):
    """
    Start the scheduling loop.

    Runs until stop() is called or, when given, max_cycles iterations have passed.
    """
    global running, shutdown_event

    if not is_schedule_enabled():
        logger.info("Scheduled sweeps disabled (SWEEP_SCHEDULE_ENABLED=false). Skipping start.")
        return

    if running:
        raise RuntimeError("Scheduler already running")

    issues = validate_sweep_config()
    if issues:
        logger.warning(f"Sweep configuration issues: {issues}")

    running = True
    shutdown_event = threading.Event()
    cycles = 0

    logger.info(f"Starting sweep scheduler for: {scheduled_sweeps()}")

    try:
        while running and not shutdown_event.is_set():
            for job in list(sweeps.values()):
                if job.is_due(time.monotonic()):
                    try:
                        job.run()
                    except SweepError as e:
                        logger.error(str(e))

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            shutdown_event.wait(0.5)

    except KeyboardInterrupt:
        logger.info("Scheduler interrupted by user")
    finally:
        running = False
        logger.info("Scheduler loop stopped")


def stop():
    """Stop the scheduling loop gracefully."""
    global running

    if not running:
        logger.info("Scheduler not running")
        return

    running = False
    if shutdown_event:
        shutdown_event.set()


def get_status():
    if not is_schedule_enabled():
        return {"status": "disabled", "reason": "SWEEP_SCHEDULE_ENABLED=false"}

    return {
        "status": "running" if running else "stopped",
        "sweeps": {
            job.name: {
                "interval_sec": job.interval,
                "runs": job.runs,
                "skipped": job.skipped,
                "failures": job.failures,
                "last_score": job.last_score,
                "next_run": job.last_run + job.interval if job.last_run is not None else None,
            }
            for job in sweeps.values()
        }
    }
