#!/usr/bin/env python3
from __future__ import annotations

# ruff: noqa: E402

import logging
import os
import signal
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.config.env import ProcessingSettings
from api.db import init_db
from services.modsec import ModsecProcessor, ModsecWorker

logging.basicConfig(
    level=os.getenv("EG_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("edgeguard.modsec.worker")


def main() -> int:
    init_db()
    worker = ModsecWorker.from_settings(ModsecProcessor(), ProcessingSettings.from_env())

    def _shutdown(signum, frame):
        log.info("modsec.worker signal=%s, shutting down", signum)
        worker.stop(timeout=0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    worker.run_forever()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
