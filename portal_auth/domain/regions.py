"""
Region router - maps a home region to the store that owns its state.

A token decoded with region X is only ever looked up in region X's store.
A supported region that this deployment has no store for is treated as a
region mismatch rather than a malformed token.
"""

from collections.abc import Mapping

from .exceptions import RegionMismatch
from .ports import Region, RegionalStore


class RegionRouter:
    """Routes token and session operations to regional stores."""

    def __init__(self, stores: Mapping[Region, RegionalStore]) -> None:
        self._stores = dict(stores)

    @property
    def regions(self) -> list[Region]:
        """Regions served by this deployment, in declaration order."""
        return [region for region in Region if region in self._stores]

    def serves(self, region: Region) -> bool:
        return region in self._stores

    def store_for(self, region: Region) -> RegionalStore:
        """
        Return the store for a region.

        Raises:
            RegionMismatch: If the region is supported but not served here
        """
        try:
            return self._stores[region]
        except KeyError:
            raise RegionMismatch(f"region {region.value} is not served") from None

    def require_home(self, token_region: Region, home_region: Region) -> None:
        """
        Check that a token resolved in token_region belongs to a user homed there.

        Raises:
            RegionMismatch: If the regions differ
        """
        if token_region is not home_region:
            raise RegionMismatch(
                f"token region {token_region.value} != home region {home_region.value}"
            )
