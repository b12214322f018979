"""Purge expired and spent tokens from the global and regional databases.

Usage:
    python -m portal_auth.workers.sweeper [--once]

Without --once the sweep repeats every SWEEP_INTERVAL_SECONDS until the
process is stopped.
"""

import argparse
import logging
import time

from portal_auth.adapters.repository.pools import DatabasePools
from portal_auth.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def sweep(pools: DatabasePools) -> dict[str, int]:
    """
    Run one purge pass over every database.

    A failing database is logged and skipped so the others are still swept.

    Returns:
        Rows deleted per database ("global" or the region code)
    """
    targets = [("global", pools.directory())]
    targets += [(region.value, store) for region, store in pools.regional_stores().items()]

    deleted: dict[str, int] = {}
    for name, store in targets:
        try:
            deleted[name] = store.purge_expired()
        except Exception:
            logger.exception("Sweep failed for %s database", name)
            continue
        logger.info("Swept %s database: %d row(s) deleted", name, deleted[name])
    return deleted


def run(settings: Settings, once: bool = False) -> None:
    pools = DatabasePools.open(settings)
    try:
        while True:
            sweep(pools)
            if once:
                break
            time.sleep(settings.sweep_interval_seconds)
    finally:
        pools.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        run(settings, once=args.once)
    except KeyboardInterrupt:
        logger.info("Sweeper stopped")


if __name__ == "__main__":
    main()
