#!/usr/bin/env python3
from __future__ import annotations

# ruff: noqa: E402

import argparse
import json
import sys
from pathlib import Path

from sqlalchemy import desc, select

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.db import get_sessionmaker, init_db
from api.db_models import ModsecLanding
from services.modsec import ModsecProcessor, normalize_payload
from services.modsec.errors import TransactionParseError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Inspect the modsec_landing backlog")
    parser.add_argument("--sample", type=int, default=5, help="Unprocessed rows to dry-run parse")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    args = parser.parse_args(argv)

    init_db()
    stats = ModsecProcessor().stats()

    samples = []
    with get_sessionmaker()() as db:
        rows = (
            db.execute(
                select(ModsecLanding)
                .where(ModsecLanding.processed.is_(False))
                .order_by(desc(ModsecLanding.time))
                .limit(max(0, args.sample))
            )
            .scalars()
            .all()
        )
        for row in rows:
            try:
                normalize_payload(row.data)
                samples.append({"id": str(row.id), "tag": row.tag, "parse": "ok"})
            except TransactionParseError as exc:
                samples.append({"id": str(row.id), "tag": row.tag, "parse": str(exc)})

    if args.json:
        print(json.dumps({"stats": stats, "samples": samples}, sort_keys=True))
        return 0

    print(
        f"total={stats['total']} processed={stats['processed']} "
        f"unprocessed={stats['unprocessed']} rate={stats['processing_rate']}%"
    )
    for s in samples:
        print(f"  id={s['id']} tag={s['tag']} parse={s['parse']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
