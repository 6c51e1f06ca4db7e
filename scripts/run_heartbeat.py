#!/usr/bin/env python3
"""
Scheduled sweep entrypoint - runs the sweep on a fixed interval against the SQLite store.
"""

import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from studyvault.core.heartbeat import schedule_sweep, start, stop
from studyvault.core.config import are_service_checks_enabled, get_schedule_interval, is_schedule_enabled
from studyvault.core.health import RequestsHealthChecker
from studyvault.core.store import SQLiteStore


def main():
    """Main entry point for the sweep scheduler."""
    if not is_schedule_enabled():
        print("Scheduled sweeps require SWEEP_SCHEDULE_ENABLED=true")
        return 1

    checker = RequestsHealthChecker() if are_service_checks_enabled() else None
    interval = get_schedule_interval()
    schedule_sweep(SQLiteStore(), interval, health_checker=checker)

    print(f"Sweeping every {interval} seconds (Ctrl+C to stop)")
    try:
        start()
    except KeyboardInterrupt:
        stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
