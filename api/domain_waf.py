from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.db import get_db
from api.db_models import DomainWafStatus
from api.schemas import (
    DomainWafStatusOut,
    OrganizationWafStatus,
    WafBulkUpdateRequest,
    WafToggleRequest,
    WafToggleResponse,
)
from services.waf_agent import WafAgentClient, WafAgentError

log = logging.getLogger("edgeguard.domain_waf")

router = APIRouter(prefix="/organizations", tags=["domain-waf"])

AGENT_FAILURE_MESSAGE = "Failed to update WAF configuration on server"
AGENT_FAILURE_DETAILS = (
    "The WAF agent could not apply the change. Database was not updated."
)


def get_waf_agent(request: Request) -> WafAgentClient:
    return request.app.state.waf_agent


def normalize_domain(domain: str) -> str:
    return (domain or "").strip().lower()


def _require_domain(raw: str) -> str:
    domain = normalize_domain(raw)
    if not domain:
        raise HTTPException(
            status_code=400,
            detail={"code": "WAF_DOMAIN_REQUIRED", "message": "domain is required"},
        )
    return domain


def _stage_status(
    db: Session, *, organization_id: str, domain: str, enabled: bool
) -> DomainWafStatus:
    row = db.execute(
        select(DomainWafStatus).where(
            DomainWafStatus.organization_id == organization_id,
            DomainWafStatus.domain == domain,
        )
    ).scalar_one_or_none()
    if row is None:
        row = DomainWafStatus(
            organization_id=organization_id, domain=domain, waf_enabled=enabled
        )
        db.add(row)
    else:
        row.waf_enabled = enabled
    return row


def _upsert_statuses(
    db: Session, organization_id: str, changes: Dict[str, bool]
) -> List[DomainWafStatus]:
    """Write every domain -> enabled pair in a single commit."""
    for attempt in (1, 2):
        rows = [
            _stage_status(
                db, organization_id=organization_id, domain=domain, enabled=enabled
            )
            for domain, enabled in changes.items()
        ]
        try:
            db.commit()
        except IntegrityError:
            # lost an insert race against another toggle for the same domain
            db.rollback()
            if attempt == 2:
                raise
            continue
        for row in rows:
            db.refresh(row)
        return rows
    return []


def _organization_status(db: Session, organization_id: str) -> OrganizationWafStatus:
    rows = (
        db.execute(
            select(DomainWafStatus)
            .where(DomainWafStatus.organization_id == organization_id)
            .order_by(DomainWafStatus.domain)
        )
        .scalars()
        .all()
    )
    return OrganizationWafStatus(
        organization_id=organization_id,
        domains=[
            DomainWafStatusOut(
                domain=r.domain, waf_enabled=bool(r.waf_enabled), updated_at=r.updated_at
            )
            for r in rows
        ],
    )


@router.get("/{organization_id}/waf-status", response_model=OrganizationWafStatus)
def get_waf_status(
    organization_id: str, db: Session = Depends(get_db)
) -> OrganizationWafStatus:
    return _organization_status(db, organization_id)


@router.put("/{organization_id}/waf-status", response_model=OrganizationWafStatus)
def update_waf_status(
    organization_id: str,
    req: WafBulkUpdateRequest,
    db: Session = Depends(get_db),
    agent: WafAgentClient = Depends(get_waf_agent),
) -> OrganizationWafStatus:
    """
    Multi-domain form of the toggle. Every domain is sent to the agent; the
    database is written only when all of them were confirmed.
    """
    changes: Dict[str, bool] = {}
    for item in req.domains:
        changes[_require_domain(item.domain)] = item.enabled

    errors = []
    for domain, enabled in changes.items():
        try:
            agent.toggle_enforcement(domain, enabled)
        except WafAgentError as exc:
            errors.append({"domain": domain, "error": exc.message, "code": exc.code})

    if errors:
        log.warning(
            "domain_waf.bulk_failed org=%s failed=%d of %d",
            organization_id,
            len(errors),
            len(changes),
        )
        raise HTTPException(
            status_code=502,
            detail={
                "message": f"{AGENT_FAILURE_MESSAGE} for some domains",
                "errors": errors,
                "details": AGENT_FAILURE_DETAILS,
            },
        )

    _upsert_statuses(db, organization_id, changes)
    log.info("domain_waf.bulk_updated org=%s domains=%d", organization_id, len(changes))
    return _organization_status(db, organization_id)


@router.post(
    "/{organization_id}/waf-status/toggle", response_model=WafToggleResponse
)
def toggle_waf_status(
    organization_id: str,
    req: WafToggleRequest,
    db: Session = Depends(get_db),
    agent: WafAgentClient = Depends(get_waf_agent),
) -> WafToggleResponse:
    domain = _require_domain(req.domain)

    log.info(
        "domain_waf.toggle org=%s domain=%s enabled=%s",
        organization_id,
        domain,
        req.enabled,
    )
    try:
        agent.toggle_enforcement(domain, req.enabled)
    except WafAgentError as exc:
        # fail closed: nothing is written when the agent did not confirm
        raise HTTPException(
            status_code=502,
            detail={
                "message": AGENT_FAILURE_MESSAGE,
                "error": exc.message,
                "code": exc.code,
                "details": AGENT_FAILURE_DETAILS,
            },
        ) from exc

    (row,) = _upsert_statuses(db, organization_id, {domain: req.enabled})
    return WafToggleResponse(
        domain=row.domain,
        waf_enabled=bool(row.waf_enabled),
        message=f"WAF {'enabled' if req.enabled else 'disabled'} for {domain}",
    )
