"""Press run router — turn completed press runs into batches.

Endpoints:
    POST   /api/press-runs/{press_run_id}/complete   Allocate juice to vessels
    GET    /api/press-runs/{press_run_id}/batches    Batches created from a run
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cidertrack.database import get_db
from cidertrack.middleware.exceptions import PressRunNotFound
from cidertrack.models.batch import Batch
from cidertrack.models.press_run import PressRun
from cidertrack.schemas.press_run import (
    BatchOut,
    PressCompletionRequest,
    PressCompletionResponse,
)
from cidertrack.services.press_completion import (
    Assignment,
    create_batches_from_press_completion,
)

router = APIRouter()


@router.post(
    "/{press_run_id}/complete",
    response_model=PressCompletionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def complete_press_run(
    press_run_id: str,
    body: PressCompletionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create one batch per vessel assignment from a completed press run.

    Errors (see middleware.exceptions):
        404 press run or vessel missing
        409 press run already processed
        422 bad volumes / capacity / nothing to allocate
        500 allocation invariant violated
    """
    result = await create_batches_from_press_completion(
        db,
        press_run_id,
        [Assignment(a.to_vessel_id, a.volume_l) for a in body.assignments],
        body.allocation_mode,
    )
    return PressCompletionResponse(
        press_run_id=press_run_id,
        created_batch_ids=result.created_batch_ids,
    )


@router.get("/{press_run_id}/batches", response_model=list[BatchOut])
async def list_press_run_batches(
    press_run_id: str,
    db: AsyncSession = Depends(get_db),
):
    press_run = await db.get(PressRun, press_run_id)
    if press_run is None:
        raise PressRunNotFound(press_run_id)

    result = await db.execute(
        select(Batch)
        .where(Batch.origin_press_run_id == press_run_id)
        .options(selectinload(Batch.compositions))
        .order_by(Batch.name)
    )
    return result.scalars().all()
