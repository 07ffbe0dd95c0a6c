#!/usr/bin/env python3
"""Reset provider syncs stuck in `running`.

A worker that crashes mid-run leaves its sync_runs row `running`, which blocks
every later run of that provider. This job moves such rows to `error` with
"Sync was stuck in progress - manually reset". Catalog data is not touched.

Run (local / Railway):
  python -m scripts.reset_stuck_syncs          # only runs older than SYNC_MAX_RUN_SECONDS
  python -m scripts.reset_stuck_syncs --all    # every running row

Optional env vars:
  SYNC_MAX_RUN_SECONDS=3600
"""

import asyncio
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from catalog_sync.models import SyncStatus  # noqa: E402
from catalog_sync.services.sync_tracker import get_sync_tracker  # noqa: E402
from catalog_sync.stores.postgres import close_db, init_db, ping_db  # noqa: E402


async def main(reset_all: bool = False) -> None:
    await init_db()
    await ping_db()

    try:
        tracker = get_sync_tracker()
        if reset_all:
            candidates = [s for s in await tracker.list_states() if s.status == SyncStatus.RUNNING.value]
        else:
            candidates = await tracker.find_stuck()

        reset: list[str] = []
        for state in candidates:
            if await tracker.reset(state.provider_slug):
                reset.append(state.provider_slug)

        print(
            {
                "ok": True,
                "mode": "all" if reset_all else "stuck",
                "found": [s.provider_slug for s in candidates],
                "reset": reset,
            }
        )
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main(reset_all="--all" in sys.argv[1:]))
