#!/usr/bin/env python3
"""
Compute monthly fees from the command line.

Intended for a cron job at the start of each month.
Usage: python scripts/compute_fees.py --month 2024-03 [--class-id UUID] [--include-existing]
"""
import argparse
import logging
import sys
import uuid
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fee_engine.core.config import settings
from fee_engine.core.db import db_manager
from fee_engine.core.exceptions import FeeEngineError
from fee_engine.schemas.fee_schema import ComputeMonthlyFeesRequest
from fee_engine.services.fee_computation import FeeComputationService


def parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a valid UUID")


def main():
    parser = argparse.ArgumentParser(description='Compute monthly student fees and append ledger versions')
    parser.add_argument('--month', required=True, help='Target month as YYYY-MM')
    parser.add_argument('--class-id', type=parse_uuid, help='Only compute for this class (optional)')
    parser.add_argument('--include-existing', action='store_true', help='Append a version even when amounts are unchanged')
    parser.add_argument('--actor-id', type=parse_uuid, help='User UUID recorded on appended versions (optional)')

    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)

    try:
        with db_manager.transaction() as db:
            result = FeeComputationService(db).compute_for_month(ComputeMonthlyFeesRequest(
                month=args.month,
                class_id=args.class_id,
                include_existing=args.include_existing,
                actor_id=args.actor_id,
            ))

        print(f"Month: {args.month}")
        print("=" * 40)
        print(f"Students evaluated:   {result.students_evaluated}")
        print(f"Versions appended:    {result.count}")
        print(f"Unchanged:            {result.unchanged}")
        print(f"Without structure:    {result.skipped_no_structure}")
        print(f"Failed:               {result.failed}")

        if result.failed:
            sys.exit(2)

    except FeeEngineError as e:
        print(f"Error: {e}")
        sys.exit(1)

    finally:
        db_manager.close()


if __name__ == '__main__':
    main()
