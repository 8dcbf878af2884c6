# api/schemas.py
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ProcessRequest(BaseModel):
    organization_id: Optional[str] = Field(
        None, description="Organization to attach the created logs to"
    )
    batch_size: int = Field(100, ge=1, le=1000, description="Records per page")
    run_async: bool = Field(
        False, description="Start the run in the background and return immediately"
    )


class ProcessRecordRequest(BaseModel):
    organization_id: Optional[str] = None


class ProcessError(BaseModel):
    id: str
    error: str


class ProcessResponse(BaseModel):
    success: bool = True
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[ProcessError] = []
    message: Optional[str] = None


class ProcessRecordResponse(BaseModel):
    success: bool
    log_id: Optional[str] = None
    error: Optional[str] = None


class LandingOut(BaseModel):
    id: str
    tag: Optional[str] = None
    time: Optional[datetime] = None
    data: Any = None
    processed: bool


class LandingPage(BaseModel):
    records: List[LandingOut] = []
    total: int
    limit: int
    offset: int


class CronStatus(BaseModel):
    enabled: bool
    schedule: str
    timezone: str
    running: bool
    is_processing: bool


class ProcessingStats(BaseModel):
    total: int
    processed: int
    unprocessed: int
    processing_rate: str
    cron: CronStatus


class WafToggleRequest(BaseModel):
    domain: str = Field(..., min_length=1, max_length=255)
    enabled: bool


class WafBulkUpdateRequest(BaseModel):
    domains: List[WafToggleRequest] = Field(..., min_length=1, max_length=500)


class WafToggleResponse(BaseModel):
    domain: str
    waf_enabled: bool
    message: str


class DomainWafStatusOut(BaseModel):
    domain: str
    waf_enabled: bool
    updated_at: Optional[datetime] = None


class OrganizationWafStatus(BaseModel):
    organization_id: str
    domains: List[DomainWafStatusOut] = []
