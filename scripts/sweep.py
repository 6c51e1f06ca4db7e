#!/usr/bin/env python3
"""
Command-line sweep utility - repairs a StudyVault store and reports what changed.
"""

import argparse
import sys
import json
from pathlib import Path

# Load environment variables from .env file first
import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from studyvault.core.config import are_service_checks_enabled, validate_sweep_config
from studyvault.core.health import RequestsHealthChecker
from studyvault.core.schema import Category, Severity, SweepResult
from studyvault.core.store import JsonFileStore, SQLiteStore, StoreError
from studyvault.core.sweep import SweepHistory, Sweeper, score_label

CATEGORY_LABELS = {
    Category.KEYS: "Data keys",
    Category.STRUCTURE: "Data structure",
    Category.STALE: "Obsolete data",
    Category.ORPHAN: "Orphan data",
    Category.CONFIG: "Settings",
    Category.INTEGRITY: "Integrity",
}

SEVERITY_MARKERS = {
    Severity.INFO: "[info]",
    Severity.FIXED: "[fixed]",
    Severity.WARNING: "[warn]",
    Severity.ERROR: "[error]",
}


def format_result(result: SweepResult) -> str:
    """Format a sweep result for display, grouped by category."""
    lines = []
    counts = result.counts()

    lines.append(f"Score: {result.score}/100 ({score_label(result.score)})")
    lines.append(
        f"Fixed: {counts['fixed']}  Warnings: {counts['warning']}  "
        f"Errors: {counts['error']}  Info: {counts['info']}"
    )

    for category in Category:
        actions = [a for a in result.actions if a.category is category]
        if not actions:
            continue
        lines.append("")
        lines.append(f"{CATEGORY_LABELS[category]}:")
        for action in actions:
            lines.append(f"  {SEVERITY_MARKERS[action.severity]:<8} {action.label}")
            lines.append(f"           {action.detail}")
            if action.before and action.after:
                lines.append(f"           {action.before} -> {action.after}")

    return "\n".join(lines)


def format_history(history: SweepHistory) -> str:
    records = history.load()
    if not records:
        return "No sweeps recorded yet."

    lines = [f"Last sweep: {history.last_sweep() or 'unknown'}"]
    for record in records:
        lines.append(
            f"  {record.timestamp}  score {record.score:>3}  "
            f"fixed {record.fixed:>2}  warnings {record.warnings:>2}"
        )
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Data-integrity sweep for the StudyVault key-value store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Sweep the SQLite store at DB_PATH
  %(prog)s --snapshot storage.json      # Sweep an exported storage snapshot in place
  %(prog)s --skip-services              # Do not probe remote AI services
  %(prog)s --history                    # Show the last recorded sweeps
  %(prog)s --json                       # Output results as JSON

Environment variables:
- DB_PATH=./data/studyvault.db (SQLite store location)
- SWEEP_FUNCTIONS_URL, SWEEP_API_KEY (remote service probes)
- SWEEP_HEALTH_TIMEOUT_SEC=8 (per-probe timeout)
        """
    )

    parser.add_argument(
        "--db",
        help="SQLite store path (defaults to DB_PATH)"
    )

    parser.add_argument(
        "--snapshot", "-s",
        help="Sweep a JSON snapshot file instead of the SQLite store"
    )

    parser.add_argument(
        "--skip-services",
        action="store_true",
        help="Skip remote service health probes"
    )

    parser.add_argument(
        "--history",
        action="store_true",
        help="Show sweep history instead of running a sweep"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress progress output"
    )

    args = parser.parse_args()

    if args.db and args.snapshot:
        parser.error("--db cannot be combined with --snapshot")

    try:
        store = JsonFileStore(args.snapshot) if args.snapshot else SQLiteStore(args.db)
    except StoreError as e:
        print(f"Cannot open store: {e}", file=sys.stderr)
        return 1

    if args.history:
        history = SweepHistory(store)
        if args.json:
            print(json.dumps([r.to_dict() for r in history.load()], indent=2))
        else:
            print(format_history(history))
        return 0

    issues = validate_sweep_config()
    if issues and not args.quiet:
        for issue in issues:
            print(f"Config warning: {issue}", file=sys.stderr)

    checker = None
    if not args.skip_services and are_service_checks_enabled():
        checker = RequestsHealthChecker()
    elif not args.skip_services and not args.quiet:
        print("Service checks disabled (SWEEP_FUNCTIONS_URL not set)", file=sys.stderr)

    def show_phase(phase, pct):
        if not args.quiet and not args.json:
            print(f"[{pct:>3}%] {phase.label}...")

    result = Sweeper(store, health_checker=checker, on_phase=show_phase).run()

    if args.json:
        output = result.to_dict()
        output["score_label"] = score_label(result.score)
        print(json.dumps(output, indent=2, ensure_ascii=False))
    else:
        if not args.quiet:
            print("-" * 60)
        print(format_result(result))

    counts = result.counts()
    return 2 if counts["error"] else 0


if __name__ == "__main__":
    sys.exit(main())
