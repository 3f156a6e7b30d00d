"""Press completion — turn a completed press run into batches.

Given a press run and a list of (vessel, volume) assignments this service:
  - Validates the press run, the assignments and the target vessels
  - Computes one allocation fraction per purchase line (by weight or sugar)
  - Creates one active Batch per assignment, named from its composition
  - Writes one immutable BatchComposition row per (batch, purchase line)
  - Checks the conservation invariants for every batch
  - Claims the press run in ``press_run_allocations`` so it is never
    processed twice

Everything happens in one transaction.  Any failure rolls back every batch
created so far in the call.  Audit events are published only after commit.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cidertrack.config import settings
from cidertrack.middleware.exceptions import (
    AllocationValidationError,
    AlreadyProcessed,
    InvariantViolation,
    PressCompletionError,
    PressRunNotFound,
    VesselNotFound,
)
from cidertrack.models.batch import Batch, BatchComposition
from cidertrack.models.press_run import PressItem, PressRun
from cidertrack.models.press_run_allocation import PressRunAllocation
from cidertrack.models.purchase import FruitVariety, Purchase, PurchaseItem, Vendor
from cidertrack.models.vessel import Vessel
from cidertrack.services.allocation import (
    AllocationFraction,
    AllocationMode,
    PurchaseLine,
    compute_allocation_fractions,
    parse_allocation_mode,
)
from cidertrack.services.audit import AuditEventBus, publish_create_event
from cidertrack.utils.locks import press_run_lock
from cidertrack.utils.naming import (
    DEFAULT_SEQUENCE,
    generate_batch_name,
    next_sequence,
    select_primary_variety,
    vessel_code_for,
)

logger = logging.getLogger(__name__)


# ── Data structures ────────────────────────────────────────────


@dataclass(frozen=True)
class Assignment:
    """One portion of the press run's juice directed to one vessel."""
    to_vessel_id: str
    volume_l: float


@dataclass
class LoadedPressRun:
    press_run_id: str
    total_juice_produced_l: float
    vessels: dict[str, Vessel]
    purchase_lines: list[PurchaseLine]


@dataclass
class CreateBatchesResult:
    created_batch_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _VarietyShare:
    variety_name: str
    fraction_of_batch: float


def _row_data(obj) -> dict[str, Any]:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


# ── Loader ─────────────────────────────────────────────────────


async def _already_processed(db: AsyncSession, press_run_id: str) -> bool:
    existing_batch = (
        await db.execute(
            select(Batch.id).where(Batch.origin_press_run_id == press_run_id).limit(1)
        )
    ).scalar_one_or_none()
    if existing_batch is not None:
        return True

    claim = (
        await db.execute(
            select(PressRunAllocation.id)
            .where(PressRunAllocation.press_run_id == press_run_id)
        )
    ).scalar_one_or_none()
    return claim is not None


async def _load_purchase_lines(db: AsyncSession, press_run_id: str) -> list[PurchaseLine]:
    result = await db.execute(
        select(
            PurchaseItem.id,
            Vendor.id,
            FruitVariety.id,
            FruitVariety.name,
            PurchaseItem.lot_code,
            PressItem.quantity_used_kg,
            PurchaseItem.price_per_unit,
            PurchaseItem.total_cost,
            PressItem.brix_measured,
        )
        .select_from(PressItem)
        .join(PurchaseItem, PressItem.purchase_item_id == PurchaseItem.id)
        .join(Purchase, PurchaseItem.purchase_id == Purchase.id)
        .join(Vendor, Purchase.vendor_id == Vendor.id)
        .join(FruitVariety, PurchaseItem.fruit_variety_id == FruitVariety.id)
        .where(PressItem.press_run_id == press_run_id)
        .order_by(PressItem.id)
    )

    return [
        PurchaseLine(
            id=row[0],
            vendor_id=row[1],
            variety_id=row[2],
            variety_name=row[3],
            lot_code=row[4] or None,
            input_weight_kg=float(row[5]),
            unit_cost=float(row[6] or 0),
            total_cost=float(row[7] or 0),
            brix_measured=float(row[8]) if row[8] is not None else None,
        )
        for row in result.all()
    ]


async def load_press_completion(
    db: AsyncSession,
    press_run_id: str,
    assignments: Sequence[Assignment],
) -> LoadedPressRun:
    """Validate inputs and load everything the allocation needs.

    Checks run in a fixed order and nothing is written:
    press run exists → not yet processed → total volume fits →
    each assignment (positive, vessel exists, fits vessel) →
    purchase lines exist.
    """
    tolerance = settings.volume_tolerance_l

    # ── Press run (row-locked where the backend supports it) ──
    press_run = (
        await db.execute(
            select(PressRun).where(PressRun.id == press_run_id).with_for_update()
        )
    ).scalar_one_or_none()
    if press_run is None:
        raise PressRunNotFound(press_run_id)

    # ── Idempotency ───────────────────────────────────────────
    if await _already_processed(db, press_run_id):
        raise AlreadyProcessed(press_run_id)

    if not assignments:
        raise AllocationValidationError(
            "At least one vessel assignment is required",
            details={"press_run_id": press_run_id},
        )

    # ── Total volume ──────────────────────────────────────────
    available = float(press_run.total_juice_produced_l)
    total_assigned = sum(a.volume_l for a in assignments)
    if total_assigned > available + tolerance:
        raise AllocationValidationError(
            f"Total assigned volume ({total_assigned}L) exceeds available juice ({available}L)",
            details={
                "press_run_id": press_run_id,
                "requested_l": total_assigned,
                "available_l": available,
            },
        )

    # ── Per-assignment checks ─────────────────────────────────
    vessels: dict[str, Vessel] = {}
    for index, assignment in enumerate(assignments):
        if not (math.isfinite(assignment.volume_l) and assignment.volume_l > 0):
            raise AllocationValidationError(
                f"Invalid volume assignment: {assignment.volume_l}L",
                details={
                    "assignment_index": index,
                    "vessel_id": assignment.to_vessel_id,
                    "requested_l": assignment.volume_l,
                },
            )

        vessel = vessels.get(assignment.to_vessel_id)
        if vessel is None:
            vessel = (
                await db.execute(select(Vessel).where(Vessel.id == assignment.to_vessel_id))
            ).scalar_one_or_none()
            if vessel is None:
                raise VesselNotFound(assignment.to_vessel_id)
            vessels[vessel.id] = vessel

        capacity = float(vessel.capacity_l)
        if assignment.volume_l > capacity + tolerance:
            raise AllocationValidationError(
                f"Assignment volume ({assignment.volume_l}L) exceeds vessel capacity "
                f"({capacity}L) for vessel {vessel.name or vessel.id}",
                details={
                    "assignment_index": index,
                    "vessel_id": vessel.id,
                    "requested_l": assignment.volume_l,
                    "capacity_l": capacity,
                },
            )

    # ── Purchase lines ────────────────────────────────────────
    purchase_lines = await _load_purchase_lines(db, press_run_id)
    if not purchase_lines:
        raise AllocationValidationError(
            f"No purchase lines found for press run: {press_run_id}",
            details={"press_run_id": press_run_id},
        )

    return LoadedPressRun(
        press_run_id=press_run.id,
        total_juice_produced_l=available,
        vessels=vessels,
        purchase_lines=purchase_lines,
    )


# ── Batch composer ─────────────────────────────────────────────


def check_composition_invariants(
    compositions: Sequence[BatchComposition],
    assignment: Assignment,
    purchase_lines: Sequence[PurchaseLine],
    *,
    enforce_cost: bool | None = None,
) -> None:
    """Fraction, volume and cost conservation for one batch.

    The cost check compares this batch's material cost against the cost of
    every purchase line in the press run.
    """
    if enforce_cost is None:
        enforce_cost = settings.enforce_cost_conservation

    total_fraction = sum(c.fraction_of_batch for c in compositions)
    total_volume = sum(c.juice_volume_l for c in compositions)
    total_cost = sum(c.material_cost for c in compositions)
    expected_cost = sum(line.total_cost for line in purchase_lines)

    failure: str | None = None
    if abs(total_fraction - 1.0) > settings.fraction_tolerance:
        failure = (
            f"Fraction sum ({total_fraction}) must equal 1.0 "
            f"± {settings.fraction_tolerance}"
        )
    elif abs(total_volume - assignment.volume_l) > settings.volume_tolerance_l:
        failure = (
            f"Juice volume sum ({total_volume}L) must equal assignment volume "
            f"({assignment.volume_l}L) ± {settings.volume_tolerance_l}L"
        )
    elif enforce_cost and abs(total_cost - expected_cost) > settings.cost_tolerance:
        failure = (
            f"Material cost sum (${total_cost}) must equal expected total "
            f"(${expected_cost}) ± ${settings.cost_tolerance}"
        )

    if failure is None:
        return

    context = {
        "vessel_id": assignment.to_vessel_id,
        "assignment_volume_l": assignment.volume_l,
        "fractions": [c.fraction_of_batch for c in compositions],
        "juice_volumes_l": [c.juice_volume_l for c in compositions],
        "material_costs": [c.material_cost for c in compositions],
        "line_total_costs": [line.total_cost for line in purchase_lines],
        "fraction_sum": total_fraction,
        "volume_sum_l": total_volume,
        "cost_sum": total_cost,
        "expected_cost": expected_cost,
    }
    logger.error("Allocation invariant failed: %s", failure, extra={"allocation": context})
    raise InvariantViolation(failure, details=context)


async def _name_taken(db: AsyncSession, name: str) -> bool:
    found = (
        await db.execute(select(Batch.id).where(Batch.name == name).limit(1))
    ).scalar_one_or_none()
    return found is not None


async def _unique_batch_name(
    db: AsyncSession,
    now: datetime,
    vessel_code: str,
    primary_variety: str | None,
    taken: set[str],
) -> str:
    sequence = DEFAULT_SEQUENCE
    name = generate_batch_name(now, vessel_code, primary_variety, sequence)
    while name in taken or await _name_taken(db, name):
        sequence = next_sequence(sequence)
        name = generate_batch_name(now, vessel_code, primary_variety, sequence)
    return name


async def compose_batch(
    db: AsyncSession,
    loaded: LoadedPressRun,
    assignment: Assignment,
    fractions: Sequence[AllocationFraction],
    *,
    now: datetime,
    taken_names: set[str],
) -> tuple[Batch, list[BatchComposition]]:
    """Create one batch and its composition rows (flushed, not committed)."""
    lines_by_id = {line.id: line for line in loaded.purchase_lines}
    vessel = loaded.vessels[assignment.to_vessel_id]

    # ── Name ──────────────────────────────────────────────────
    shares = [
        _VarietyShare(lines_by_id[f.purchase_item_id].variety_name, f.fraction)
        for f in fractions
    ]
    primary = select_primary_variety(shares, threshold=settings.dominance_threshold)
    name = await _unique_batch_name(
        db, now, vessel_code_for(vessel.id, vessel.name), primary, taken_names
    )
    taken_names.add(name)

    # ── Batch ─────────────────────────────────────────────────
    batch = Batch(
        vessel_id=vessel.id,
        name=name,
        batch_number=name,
        initial_volume_l=assignment.volume_l,
        current_volume_l=assignment.volume_l,
        status="active",
        start_date=now,
        origin_press_run_id=loaded.press_run_id,
    )
    db.add(batch)
    await db.flush()  # populate batch.id

    # ── Compositions ──────────────────────────────────────────
    compositions: list[BatchComposition] = []
    for fraction in fractions:
        line = lines_by_id[fraction.purchase_item_id]
        compositions.append(
            BatchComposition(
                batch_id=batch.id,
                purchase_item_id=line.id,
                vendor_id=line.vendor_id,
                variety_id=line.variety_id,
                lot_code=line.lot_code,
                input_weight_kg=line.input_weight_kg,
                juice_volume_l=assignment.volume_l * fraction.fraction,
                fraction_of_batch=fraction.fraction,
                material_cost=line.total_cost * fraction.fraction,
                avg_brix=line.brix_measured,
                est_sugar_kg=fraction.sugar_kg,
                created_at=now,
            )
        )

    check_composition_invariants(compositions, assignment, loaded.purchase_lines)

    db.add_all(compositions)
    await db.flush()
    return batch, compositions


# ── Orchestration ──────────────────────────────────────────────


async def create_batches_from_press_completion(
    db: AsyncSession,
    press_run_id: str,
    assignments: Sequence[Assignment],
    allocation_mode: AllocationMode | str | None = None,
    *,
    now: datetime | None = None,
    bus: AuditEventBus | None = None,
    changed_by: str | None = None,
) -> CreateBatchesResult:
    """Create one batch per assignment from a completed press run.

    Returns the new batch ids in assignment order.

    Raises:
        PressRunNotFound / VesselNotFound, AllocationValidationError (also for
        an unknown allocation mode),
        AlreadyProcessed, InvariantViolation.  The session is rolled back
        before any of them propagates.
    """
    mode = parse_allocation_mode(allocation_mode or settings.default_allocation_mode)
    now = now or datetime.utcnow()
    assignments = list(assignments)

    logger.info(
        "Completing press run %s into %d vessel(s) by %s",
        press_run_id, len(assignments), mode.value,
    )

    async with press_run_lock(press_run_id):
        result = CreateBatchesResult()
        events: list[tuple[str, str, dict]] = []
        try:
            loaded = await load_press_completion(db, press_run_id, assignments)
            fractions = compute_allocation_fractions(loaded.purchase_lines, mode)

            taken_names: set[str] = set()
            for assignment in assignments:
                batch, compositions = await compose_batch(
                    db, loaded, assignment, fractions,
                    now=now, taken_names=taken_names,
                )
                result.created_batch_ids.append(batch.id)
                events.append(("batches", batch.id, _row_data(batch)))
                events.extend(
                    ("batch_compositions", c.id, _row_data(c)) for c in compositions
                )

            db.add(
                PressRunAllocation(
                    press_run_id=press_run_id,
                    allocation_mode=mode.value,
                    total_assigned_l=sum(a.volume_l for a in assignments),
                    batch_count=len(assignments),
                    created_at=now,
                )
            )
            await db.flush()
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            if await _already_processed(db, press_run_id):
                logger.warning("Press run %s claimed concurrently", press_run_id)
                raise AlreadyProcessed(press_run_id) from exc
            raise
        except PressCompletionError as exc:
            await db.rollback()
            if exc.status_code < 500:
                logger.warning("Press run %s rejected: %s", press_run_id, exc.message)
            raise
        except (Exception, asyncio.CancelledError):
            await db.rollback()
            raise

    logger.info(
        "Press run %s completed: batches %s",
        press_run_id, ", ".join(result.created_batch_ids),
    )

    # Audit sinks run after commit; failures are logged inside the bus
    for table_name, record_id, data in events:
        try:
            await publish_create_event(
                table_name, record_id, data, changed_by=changed_by, bus=bus,
            )
        except Exception:
            logger.exception("Failed to publish audit event for %s/%s", table_name, record_id)

    return result
