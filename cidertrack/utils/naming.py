"""Deterministic batch naming.

Batch names read as ``{date}_{vessel}_{variety}_{sequence}``:

    2025-09-19_TK03_GRAV_A     single or dominant variety (Gravenstein)
    2025-09-19_FV01_BLEND_A    no variety reaches the dominance threshold

Everything here is a pure function of its arguments: no clock, no database,
no randomness.  Callers pass the date in explicitly.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Protocol

DOMINANCE_THRESHOLD = 0.6
UNKNOWN_VARIETY_CODE = "UNKN"
BLEND_CODE = "BLEND"
DEFAULT_SEQUENCE = "A"


class VarietyShare(Protocol):
    variety_name: str
    fraction_of_batch: float


def select_primary_variety(
    compositions: Iterable[VarietyShare],
    threshold: float = DOMINANCE_THRESHOLD,
) -> str | None:
    """Return the variety that names the batch, or None for a blend.

    A single composition always names the batch.  With several, the largest
    share wins only if it reaches ``threshold``.
    """
    shares = list(compositions)
    if not shares:
        return None
    if len(shares) == 1:
        return shares[0].variety_name

    top = max(shares, key=lambda c: c.fraction_of_batch)
    if top.fraction_of_batch >= threshold:
        return top.variety_name
    return None


def generate_variety_code(name: Any) -> str:
    """Short upper-case code for a variety name.

        Gravenstein            → GRAV
        Northern Spy           → NOSP
        Rhode Island Greening  → RIGR
        Ellis Bitter Red Streak → EBRS
    """
    if not isinstance(name, str):
        return UNKNOWN_VARIETY_CODE

    words = name.strip().upper().split()
    if not words:
        return UNKNOWN_VARIETY_CODE

    if len(words) == 1:
        return words[0][:4]
    if len(words) == 2:
        return words[0][:2] + words[1][:2]
    if len(words) == 3:
        return words[0][:1] + words[1][:1] + words[2][:2]
    return "".join(w[:1] for w in words[:4])


def generate_batch_name(
    on: date | datetime,
    vessel_code: str,
    primary_variety: str | None = None,
    sequence: str = DEFAULT_SEQUENCE,
) -> str:
    """Build ``YYYY-MM-DD_{vessel}_{code|BLEND}_{sequence}``."""
    if isinstance(on, datetime):
        on = on.date()
    variety_code = (
        generate_variety_code(primary_variety) if primary_variety else BLEND_CODE
    )
    return f"{on.isoformat()}_{vessel_code}_{variety_code}_{sequence}"


def generate_batch_name_from_composition(
    on: date | datetime,
    vessel_code: str,
    compositions: Iterable[VarietyShare],
    sequence: str = DEFAULT_SEQUENCE,
    threshold: float = DOMINANCE_THRESHOLD,
) -> str:
    primary = select_primary_variety(compositions, threshold=threshold)
    return generate_batch_name(on, vessel_code, primary, sequence)


def vessel_code_for(vessel_id: str, vessel_name: str | None) -> str:
    """Display code for a vessel; falls back to a short id when unnamed."""
    if vessel_name and vessel_name.strip():
        return vessel_name.strip()
    return vessel_id[:6].upper()


def next_sequence(sequence: str) -> str:
    """A → B → … → Z → AA → AB …"""
    chars = list(sequence)
    i = len(chars) - 1
    while i >= 0:
        if chars[i] != "Z":
            chars[i] = chr(ord(chars[i]) + 1)
            return "".join(chars)
        chars[i] = "A"
        i -= 1
    return "A" + "".join(chars)
