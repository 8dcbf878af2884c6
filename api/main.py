from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from api.config.env import ProcessingSettings, resolve_env
from api.db import init_db
from api.domain_waf import router as domain_waf_router
from api.modsec import router as modsec_router
from services.modsec import ModsecCronScheduler, ModsecProcessor
from services.waf_agent import WafAgentClient

logger = logging.getLogger("edgeguard")

logging.basicConfig(
    level=os.getenv("EG_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

SERVICE_NAME = "edgeguard-core"


def build_app(
    *,
    processor: Optional[ModsecProcessor] = None,
    scheduler: Optional[ModsecCronScheduler] = None,
    waf_agent: Optional[WafAgentClient] = None,
    settings: Optional[ProcessingSettings] = None,
) -> FastAPI:
    """
    Collaborators are built once here and kept on app.state; routes reach
    them through dependencies instead of module globals.
    """
    settings = settings or ProcessingSettings.from_env()
    processor = processor or ModsecProcessor()
    scheduler = scheduler or ModsecCronScheduler(processor, settings)
    waf_agent = waf_agent or WafAgentClient.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db()
        logger.info("%s db initialized env=%s", SERVICE_NAME, resolve_env())
        app.state.modsec_scheduler.start()
        try:
            yield
        finally:
            app.state.modsec_scheduler.stop()
            logger.info("Shutting down %s", SERVICE_NAME)

    app = FastAPI(
        title="EdgeGuard Core",
        version=os.getenv("EG_VERSION", "0.1.0"),
        description="EdgeGuard Core - ModSecurity telemetry migration and WAF agent control.",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Service health endpoints"},
            {"name": "meta", "description": "Service metadata"},
            {"name": "modsec", "description": "Landing table migration"},
            {"name": "domain-waf", "description": "Per-domain WAF enforcement"},
        ],
    )

    app.state.modsec_processor = processor
    app.state.modsec_scheduler = scheduler
    app.state.waf_agent = waf_agent

    Instrumentator().instrument(app).expose(app)

    app.include_router(modsec_router)
    app.include_router(domain_waf_router)

    @app.get("/health/live", tags=["health"])
    async def health_live() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/ready", tags=["health"])
    async def health_ready() -> dict[str, object]:
        return {
            "status": "ready",
            "cron": app.state.modsec_scheduler.status(),
            "waf_agent_key_loaded": app.state.waf_agent.key_loaded,
        }

    @app.get("/", tags=["meta"])
    async def root() -> dict[str, str]:
        return {"service": SERVICE_NAME, "status": "ok", "version": app.version}

    return app


app = build_app()
