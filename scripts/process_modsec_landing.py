#!/usr/bin/env python3
from __future__ import annotations

# ruff: noqa: E402

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.config.env import ProcessingSettings
from api.db import init_db
from services.modsec import ModsecProcessor


def main(argv: list[str] | None = None) -> int:
    settings = ProcessingSettings.from_env()
    parser = argparse.ArgumentParser(
        description="Migrate unprocessed modsec_landing rows into logs"
    )
    parser.add_argument("--id", dest="landing_id", help="Process a single landing record")
    parser.add_argument("--org", default=settings.default_organization_id, help="Organization id for created logs")
    parser.add_argument("--batch-size", type=int, default=settings.batch_size)
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    args = parser.parse_args(argv)

    init_db()
    processor = ModsecProcessor()

    if args.landing_id:
        outcome = processor.process_record(args.landing_id, args.org)
        if args.json:
            print(json.dumps(outcome.to_dict(), sort_keys=True))
        elif outcome.success:
            print(f"OK log_id={outcome.log_id}")
        else:
            print(f"FAIL {outcome.error}")
        return 0 if outcome.success else 1

    result = processor.process_all(args.org, max(1, args.batch_size))
    if args.json:
        print(json.dumps(result.to_dict(), sort_keys=True))
    else:
        print(f"processed={result.processed} failed={result.failed} skipped={result.skipped}")
        for err in result.errors[:10]:
            print(f"  id={err['id']} error={err['error'][:100]}")
        if len(result.errors) > 10:
            print(f"  ... {len(result.errors) - 10} more")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
