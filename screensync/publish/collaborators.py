"""
Collaborators consumed by the publish pipeline.

Placement (which screens an advertiser targets) and asset approval are
interfaces so a different placement source or approval workflow can be
plugged in; the defaults read the local database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from screensync.common.logger import get_logger
from screensync.models import ApprovalStatus
from screensync.playback.inventory import AdInventory
from screensync.playback.store import PlaylistStateStore
from screensync.targeting.matcher import TargetingMatcher, TargetRule

logger = get_logger(__name__)


@dataclass(frozen=True)
class Placement:
    """A screen an advertiser's video should air on."""

    screen_id: int
    player_id: str | None
    location_id: int | None = None
    city: str | None = None
    match_reason: str | None = None


@dataclass(frozen=True)
class ApprovedAsset:
    """The canonical approved video of an advertiser."""

    asset_id: int
    advertiser_id: int
    canonical_media_id: int | None = None


class PlacementResolver(ABC):
    """Resolves the target screens of an advertiser."""

    @abstractmethod
    async def resolve(self, advertiser_id: int) -> list[Placement]:
        """
        Screens targeted by the advertiser.

        Args:
            advertiser_id: Advertiser identifier

        Returns:
            Placements ordered by screen id
        """
        pass


class AssetApprovalService(ABC):
    """Supplies the approved asset of an advertiser."""

    @abstractmethod
    async def get_approved_asset(self, advertiser_id: int) -> ApprovedAsset | None:
        pass


class TargetingPlacementResolver(PlacementResolver):
    """Matches the advertiser's targeting against every linked active screen."""

    def __init__(
        self,
        store: PlaylistStateStore,
        inventory: AdInventory,
        matcher: TargetingMatcher | None = None,
    ):
        self.store = store
        self.inventory = inventory
        self.matcher = matcher or TargetingMatcher()

    async def resolve(self, advertiser_id: int) -> list[Placement]:
        advertiser = await self.inventory.get_advertiser(advertiser_id)
        if advertiser is None:
            return []

        rule = TargetRule.from_advertiser(advertiser)
        placements = []
        for screen in await self.store.list_screens():
            result = self.matcher.match_screen(screen, rule)
            if not result.match:
                continue
            placements.append(
                Placement(
                    screen_id=screen.id,
                    player_id=screen.player_id,
                    location_id=screen.location_id,
                    city=screen.effective_city,
                    match_reason=result.reason,
                )
            )

        logger.info(
            "Placements resolved",
            advertiser_id=advertiser_id,
            screens=[p.screen_id for p in placements],
        )
        return placements


class DatabaseAssetApprovalService(AssetApprovalService):
    """Newest APPROVED asset; the advertiser's canonical media wins over the asset's."""

    def __init__(self, inventory: AdInventory):
        self.inventory = inventory

    async def get_approved_asset(self, advertiser_id: int) -> ApprovedAsset | None:
        asset = await self.inventory.approved_asset(advertiser_id)
        if asset is None or asset.approval_status != ApprovalStatus.APPROVED.value:
            return None

        advertiser = await self.inventory.get_advertiser(advertiser_id)
        canonical = advertiser.canonical_media_id if advertiser else None
        return ApprovedAsset(
            asset_id=asset.id,
            advertiser_id=advertiser_id,
            canonical_media_id=canonical or asset.remote_media_id,
        )
