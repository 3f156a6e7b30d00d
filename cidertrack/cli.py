"""Management CLI for cellar operations.

Usage:
    python -m cidertrack.cli create-tables
    python -m cidertrack.cli complete-press-run <press_run_id> <vessel_id>=<litres> ... [--mode sugar]
"""

import asyncio
import logging
import sys

from sqlalchemy import create_engine

from cidertrack import models  # noqa: F401
from cidertrack.config import settings
from cidertrack.database import Base, async_session
from cidertrack.middleware.exceptions import PressCompletionError
from cidertrack.services.allocation import AllocationMode, parse_allocation_mode
from cidertrack.services.audit import audit_event_bus, log_audit_event
from cidertrack.services.press_completion import (
    Assignment,
    create_batches_from_press_completion,
)


def create_tables():
    engine = create_engine(settings.database_url_sync)
    Base.metadata.create_all(engine)
    print(f"  OK ({len(Base.metadata.tables)} tables)")


def parse_assignments(args: list[str]) -> list[Assignment]:
    """Parse ``vessel_id=litres`` pairs."""
    assignments = []
    for arg in args:
        vessel_id, sep, volume = arg.partition("=")
        if not sep or not vessel_id:
            raise ValueError(f"Expected <vessel_id>=<litres>, got {arg!r}")
        try:
            litres = float(volume)
        except ValueError:
            raise ValueError(f"Invalid volume for {vessel_id}: {volume!r}") from None
        assignments.append(Assignment(to_vessel_id=vessel_id, volume_l=litres))
    return assignments


async def _complete(press_run_id: str, assignments: list[Assignment], mode: AllocationMode) -> list[str]:
    async with async_session() as db:
        result = await create_batches_from_press_completion(
            db, press_run_id, assignments, mode, changed_by="cli",
        )
    return result.created_batch_ids


def complete_press_run(argv: list[str]) -> int:
    mode = settings.default_allocation_mode
    if "--mode" in argv:
        i = argv.index("--mode")
        if i + 1 >= len(argv):
            print(__doc__)
            return 2
        mode = argv[i + 1]
        argv = argv[:i] + argv[i + 2:]

    if len(argv) < 2:
        print(__doc__)
        return 2

    press_run_id = argv[0]
    try:
        assignments = parse_assignments(argv[1:])
    except ValueError as exc:
        print(f"  {exc}")
        print(__doc__)
        return 2

    try:
        allocation_mode = parse_allocation_mode(mode)
    except PressCompletionError as exc:
        print(f"  FAILED [{exc.error_code}]: {exc.message}")
        return 2

    audit_event_bus.subscribe(log_audit_event)
    try:
        batch_ids = asyncio.run(_complete(press_run_id, assignments, allocation_mode))
    except PressCompletionError as exc:
        print(f"  FAILED [{exc.error_code}]: {exc.message}")
        return 1

    for batch_id in batch_ids:
        print(f"  {batch_id}")
    print(f"\n{len(batch_ids)} batch(es) created")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        create_tables()
    elif cmd == "complete-press-run":
        sys.exit(complete_press_run(sys.argv[2:]))
    else:
        print(__doc__)
