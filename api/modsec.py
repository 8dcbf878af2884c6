from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from api.db import get_db
from api.db_models import ModsecLanding
from api.schemas import (
    LandingOut,
    LandingPage,
    ProcessingStats,
    ProcessRecordRequest,
    ProcessRecordResponse,
    ProcessRequest,
    ProcessResponse,
)
from services.modsec import ModsecCronScheduler, ModsecProcessor

log = logging.getLogger("edgeguard.modsec.api")

router = APIRouter(prefix="/modsec", tags=["modsec"])


def get_processor(request: Request) -> ModsecProcessor:
    return request.app.state.modsec_processor


def get_scheduler(request: Request) -> ModsecCronScheduler:
    return request.app.state.modsec_scheduler


def _run_in_background(
    processor: ModsecProcessor, organization_id: Optional[str], batch_size: int
) -> None:
    try:
        result = processor.process_all(organization_id, batch_size)
    except Exception:
        log.exception("modsec.background_run failed")
        return
    log.info(
        "modsec.background_run done processed=%s failed=%s",
        result.processed,
        result.failed,
    )


@router.post("/process", response_model=ProcessResponse)
def process_all(
    background: BackgroundTasks,
    req: Optional[ProcessRequest] = None,
    processor: ModsecProcessor = Depends(get_processor),
) -> ProcessResponse:
    req = req or ProcessRequest()
    if req.run_async:
        background.add_task(
            _run_in_background, processor, req.organization_id, req.batch_size
        )
        return ProcessResponse(
            success=True,
            message="Processing started in background; poll /modsec/stats for progress",
        )

    result = processor.process_all(req.organization_id, req.batch_size)
    return ProcessResponse(success=True, **result.to_dict())


@router.post("/process/{landing_id}", response_model=ProcessRecordResponse)
def process_one(
    landing_id: str,
    req: Optional[ProcessRecordRequest] = None,
    processor: ModsecProcessor = Depends(get_processor),
):
    req = req or ProcessRecordRequest()
    outcome = processor.process_record(landing_id, req.organization_id)
    body = ProcessRecordResponse(**outcome.to_dict())
    if not outcome.success:
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))
    return body


@router.get("/landing", response_model=LandingPage)
def list_landing(
    db: Session = Depends(get_db),
    processed: Optional[bool] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> LandingPage:
    count_stmt = select(func.count()).select_from(ModsecLanding)
    stmt = select(ModsecLanding)
    if processed is not None:
        count_stmt = count_stmt.where(ModsecLanding.processed.is_(processed))
        stmt = stmt.where(ModsecLanding.processed.is_(processed))

    total = int(db.execute(count_stmt).scalar_one())
    rows = (
        db.execute(
            stmt.order_by(desc(ModsecLanding.time), desc(ModsecLanding.id))
            .limit(limit)
            .offset(offset)
        )
        .scalars()
        .all()
    )
    return LandingPage(
        records=[
            LandingOut(
                id=str(r.id),
                tag=r.tag,
                time=r.time,
                data=r.data,
                processed=bool(r.processed),
            )
            for r in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=ProcessingStats)
def stats(
    processor: ModsecProcessor = Depends(get_processor),
    scheduler: ModsecCronScheduler = Depends(get_scheduler),
) -> ProcessingStats:
    return ProcessingStats(**processor.stats(), cron=scheduler.status())
