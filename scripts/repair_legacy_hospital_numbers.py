#!/usr/bin/env python3
"""
Repair Legacy Hospital Numbers

Converts hospital numbers stored in the old 7-character format (PT25001)
to PTYYXXXX (PT250001) and resyncs the year counters.

Usage:
    python scripts/repair_legacy_hospital_numbers.py --dry-run
    python scripts/repair_legacy_hospital_numbers.py
"""

import argparse
import logging

from hn_registry.database import session_scope
from hn_registry.services.maintenance_service import repair_legacy_hospital_numbers


def main():
    parser = argparse.ArgumentParser(description="Repair legacy hospital numbers")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the changes without writing them",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    with session_scope() as db:
        report = repair_legacy_hospital_numbers(db, dry_run=args.dry_run)

    for old_number, new_number in report.repaired.items():
        print(f"  {old_number} -> {new_number}")
    for old_number in report.conflicts:
        print(f"  {old_number} skipped (target already issued)")
    for old_number in report.invalid:
        print(f"  {old_number} skipped (not a valid sequence)")
    for year, last_sequence in report.counters.items():
        print(f"  Counter {year:02d}: last_sequence={last_sequence}")

    print(
        f"\n{len(report.repaired)} repaired, "
        f"{len(report.conflicts) + len(report.invalid)} skipped"
        f"{' (dry run)' if args.dry_run else ''}"
    )


if __name__ == "__main__":
    main()
