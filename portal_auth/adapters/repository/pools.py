"""
Connection pool lifecycle for the global and regional databases.

Pools are constructed once at process start, handed to whoever needs a
store, and closed at shutdown. Nothing here is module-level state.
"""

import logging
from dataclasses import dataclass, field

from psycopg_pool import ConnectionPool

from portal_auth.config.settings import Settings
from portal_auth.domain.ports import Region
from portal_auth.domain.regions import RegionRouter

from .postgres import PostgresRegionalStore, PostgresUserDirectory, run_migrations

logger = logging.getLogger(__name__)


@dataclass
class DatabasePools:
    """Open pools for the global DB and every configured region."""

    global_pool: ConnectionPool
    regional_pools: dict[Region, ConnectionPool] = field(default_factory=dict)

    @classmethod
    def open(cls, settings: Settings) -> "DatabasePools":
        """Create a pool per database with explicit sizing."""
        logger.info("Connecting to global database...")
        global_pool = ConnectionPool(
            conninfo=settings.global_database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            open=True,
        )
        regional_pools = {}
        for region, url in settings.regional_database_urls.items():
            logger.info("Connecting to %s database...", region.value)
            regional_pools[region] = ConnectionPool(
                conninfo=url,
                min_size=settings.pool_min_size,
                max_size=settings.pool_max_size,
                open=True,
            )
        return cls(global_pool=global_pool, regional_pools=regional_pools)

    def migrate(self) -> None:
        run_migrations(self.global_pool, "global")
        for pool in self.regional_pools.values():
            run_migrations(pool, "regional")

    def directory(self) -> PostgresUserDirectory:
        return PostgresUserDirectory(self.global_pool)

    def regional_stores(self) -> dict[Region, PostgresRegionalStore]:
        return {
            region: PostgresRegionalStore(pool, region)
            for region, pool in self.regional_pools.items()
        }

    def router(self) -> RegionRouter:
        return RegionRouter(self.regional_stores())

    def close(self) -> None:
        for region, pool in self.regional_pools.items():
            pool.close()
            logger.info("%s connection pool closed", region.value)
        self.global_pool.close()
        logger.info("Global connection pool closed")
