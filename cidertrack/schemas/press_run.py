"""Pydantic schemas for press-run completion."""

from datetime import datetime

from pydantic import BaseModel, Field

from cidertrack.services.allocation import AllocationMode


# ── Complete ─────────────────────────────────────────────────

class AssignmentIn(BaseModel):
    to_vessel_id: str
    volume_l: float = Field(..., gt=0)


class PressCompletionRequest(BaseModel):
    """Payload for POST /api/press-runs/{press_run_id}/complete."""
    assignments: list[AssignmentIn] = Field(..., min_length=1)
    allocation_mode: AllocationMode = AllocationMode.WEIGHT


class PressCompletionResponse(BaseModel):
    press_run_id: str
    created_batch_ids: list[str]


# ── Read ─────────────────────────────────────────────────────

class BatchCompositionOut(BaseModel):
    id: str
    purchase_item_id: str
    vendor_id: str
    variety_id: str
    lot_code: str | None = None
    input_weight_kg: float
    juice_volume_l: float
    fraction_of_batch: float
    material_cost: float
    avg_brix: float | None = None
    est_sugar_kg: float | None = None

    model_config = {"from_attributes": True}


class BatchOut(BaseModel):
    id: str
    vessel_id: str
    name: str
    batch_number: str
    initial_volume_l: float
    current_volume_l: float
    status: str
    start_date: datetime
    origin_press_run_id: str | None = None
    compositions: list[BatchCompositionOut] = []

    model_config = {"from_attributes": True}
