from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone

from tenantdb.core.config import get_settings
from tenantdb.domain.states import IN_PROGRESS_STATES
from tenantdb.persistence.db import SessionLocal
from tenantdb.persistence.repos.databases import list_stale_databases


async def list_stuck(stale_after_s: int) -> None:
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_s)
    async with SessionLocal() as session:
        databases = await list_stale_databases(session, statuses=IN_PROGRESS_STATES, updated_before=cutoff)
    for database in databases:
        print(
            f"database_id={database.id} client_id={database.client_id} "
            f"instance_identifier={database.instance_identifier} "
            f"provisioning_status={database.provisioning_status} updated_at={database.updated_at}"
        )
    print(f"stuck_databases={len(databases)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="List databases stuck in an in-progress state")
    parser.add_argument("--stale-after-s", type=int, default=get_settings().stale_after_s)
    args = parser.parse_args()
    asyncio.run(list_stuck(args.stale_after_s))
