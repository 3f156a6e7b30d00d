"""Allocation engine: splits a press run's output across its purchase lines.

Two weighting policies:

    weight:  f_i = w_i / Σw
    sugar:   s_i = w_i × brix_i / 100     (missing brix counts as 0)
             f_i = s_i / Σs

The fractions are computed once per press completion and applied unchanged
to every vessel assignment.  No I/O.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from cidertrack.middleware.exceptions import AllocationValidationError, InvariantViolation

logger = logging.getLogger(__name__)


class AllocationMode(str, enum.Enum):
    WEIGHT = "weight"
    SUGAR = "sugar"


@dataclass(frozen=True)
class PurchaseLine:
    """A purchase line as consumed by one press run."""
    id: str
    vendor_id: str
    variety_id: str
    variety_name: str
    input_weight_kg: float
    unit_cost: float = 0.0
    total_cost: float = 0.0
    lot_code: str | None = None
    brix_measured: float | None = None


@dataclass(frozen=True)
class AllocationFraction:
    purchase_item_id: str
    fraction: float
    sugar_kg: float | None = None  # sugar mode only


def sugar_mass_kg(line: PurchaseLine) -> float:
    return line.input_weight_kg * ((line.brix_measured or 0.0) / 100.0)


def parse_allocation_mode(mode: AllocationMode | str) -> AllocationMode:
    """Caller-supplied mode → AllocationMode; anything else is a validation error."""
    try:
        return AllocationMode(mode)
    except ValueError:
        raise AllocationValidationError(
            f"Unknown allocation mode: {mode!r}",
            details={
                "allocation_mode": str(mode),
                "allowed": [m.value for m in AllocationMode],
            },
        ) from None


def _zero_denominator(message: str, lines: list[PurchaseLine], mode: AllocationMode, **totals):
    context = {
        "mode": mode.value,
        **totals,
        "lines": [
            {
                "purchase_item_id": line.id,
                "input_weight_kg": line.input_weight_kg,
                "brix_measured": line.brix_measured,
            }
            for line in lines
        ],
    }
    logger.error("Allocation invariant failed: %s", message, extra={"allocation": context})
    return InvariantViolation(message, details=context)


def compute_allocation_fractions(
    lines: list[PurchaseLine],
    mode: AllocationMode | str = AllocationMode.WEIGHT,
) -> list[AllocationFraction]:
    """Return one fraction per line, in input order; fractions sum to 1.

    Raises:
        AllocationValidationError for an unknown mode.
        InvariantViolation if the weighting denominator is not positive.
    """
    mode = parse_allocation_mode(mode)

    if mode is AllocationMode.WEIGHT:
        total_weight = sum(line.input_weight_kg for line in lines)
        if total_weight <= 0:
            raise _zero_denominator(
                "Total input weight must be greater than zero",
                lines, mode, total_weight_kg=total_weight,
            )
        return [
            AllocationFraction(
                purchase_item_id=line.id,
                fraction=line.input_weight_kg / total_weight,
            )
            for line in lines
        ]

    sugar = [sugar_mass_kg(line) for line in lines]
    total_sugar = sum(sugar)
    if total_sugar <= 0:
        raise _zero_denominator(
            "Total sugar weight must be greater than zero for sugar-based allocation",
            lines, mode, total_sugar_kg=total_sugar,
        )
    return [
        AllocationFraction(
            purchase_item_id=line.id,
            fraction=s / total_sugar,
            sugar_kg=s,
        )
        for line, s in zip(lines, sugar)
    ]
