"""
Database initializer.

- Creates the MessageBox, subscription and configuration tables that do not exist yet

Supports a best-effort mode via ``--best-effort`` or ``INIT_DB_BEST_EFFORT=1``
which skips errors when the database is not reachable (useful in CI jobs that
run without Postgres).

Examples:
    python -m scripts.init_db
    python -m scripts.init_db --best-effort
"""

import argparse
import asyncio

from eai_broker.config import env_flag
from eai_broker.db import create_all, dispose_engine, is_database_configured


async def main(best_effort: bool) -> None:
    """Create all tables. With ``best_effort`` errors are printed and ignored."""
    if not is_database_configured():
        if best_effort:
            print("[init_db] Skipping: DATABASE_URL not configured")
            return
        raise SystemExit("DATABASE_URL is not configured")
    try:
        await create_all()
        print("[init_db] Tables created")
    except Exception as exc:  # noqa: BLE001
        if best_effort:
            print(f"[init_db] Skipping: database not reachable ({exc})")
            return
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create MessageBox and configuration tables")
    parser.add_argument("--best-effort", action="store_true", help="Do not fail if the database is unreachable")
    args = parser.parse_args()

    asyncio.run(main(bool(args.best_effort or env_flag("INIT_DB_BEST_EFFORT"))))
