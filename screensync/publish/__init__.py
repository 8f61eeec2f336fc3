"""
Per-advertiser publishing.
"""

from screensync.publish.collaborators import (
    ApprovedAsset,
    AssetApprovalService,
    DatabaseAssetApprovalService,
    Placement,
    PlacementResolver,
    TargetingPlacementResolver,
)
from screensync.publish.pipeline import PublishPipeline, create_pipeline

__all__ = [
    "PublishPipeline",
    "create_pipeline",
    "Placement",
    "ApprovedAsset",
    "PlacementResolver",
    "AssetApprovalService",
    "TargetingPlacementResolver",
    "DatabaseAssetApprovalService",
]
