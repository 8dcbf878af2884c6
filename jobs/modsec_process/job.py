from datetime import datetime, timezone
from pathlib import Path
import asyncio
import json

from loguru import logger

from api.config.env import ProcessingSettings
from api.db import init_db
from services.modsec import ModsecProcessor

STATE_DIR = Path(__file__).resolve().parents[2] / "state"
STATE_DIR.mkdir(parents=True, exist_ok=True)
MODSEC_STATE_FILE = STATE_DIR / "modsec_process_status.json"


async def job() -> None:
    """
    One-shot landing migration for external schedulers (crontab, systemd
    timers, k8s CronJob). Writes the run summary next to the other job
    status files.
    """
    settings = ProcessingSettings.from_env()
    started = datetime.now(timezone.utc)
    init_db()
    processor = ModsecProcessor()

    unprocessed = await asyncio.to_thread(processor.count_unprocessed)
    if unprocessed == 0:
        logger.info("modsec_process.job: no records to process")
        result_counts = {"processed": 0, "failed": 0, "skipped": 0, "errors": []}
    else:
        logger.info(
            "modsec_process.job: found {} unprocessed records, batch size {}",
            unprocessed,
            settings.batch_size,
        )
        try:
            result = await asyncio.to_thread(
                processor.process_all,
                settings.default_organization_id,
                settings.batch_size,
            )
        except Exception as exc:
            logger.error(
                "modsec_process.job: run failed",
                extra={"error": str(exc)},
            )
            raise
        result_counts = result.to_dict()

    payload = {
        "status": "ok",
        "started_at": started.isoformat(),
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "processed": result_counts["processed"],
        "failed": result_counts["failed"],
        "skipped": result_counts["skipped"],
        "errors": result_counts["errors"][:10],
    }
    MODSEC_STATE_FILE.write_text(json.dumps(payload))
    logger.info(
        "modsec_process.job: processed={} failed={} skipped={}",
        payload["processed"],
        payload["failed"],
        payload["skipped"],
    )


if __name__ == "__main__":
    asyncio.run(job())
