"""Aggregate model imports so Base.metadata sees every table."""

# Procurement (read-only inputs)
from cidertrack.models.purchase import FruitVariety, Purchase, PurchaseItem, Vendor  # noqa: F401

# Pressing and cellar
from cidertrack.models.press_run import PressItem, PressRun  # noqa: F401
from cidertrack.models.vessel import Vessel  # noqa: F401
from cidertrack.models.batch import Batch, BatchComposition  # noqa: F401
from cidertrack.models.press_run_allocation import PressRunAllocation  # noqa: F401

__all__ = [
    "Vendor", "FruitVariety", "Purchase", "PurchaseItem",
    "PressRun", "PressItem", "Vessel",
    "Batch", "BatchComposition", "PressRunAllocation",
]
