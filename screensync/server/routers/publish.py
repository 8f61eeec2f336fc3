"""
Publish and bulk reconciliation endpoints.

Endpoints:
    POST /api/v1/publish/{advertiser_id}            – Publish an advertiser's approved video
    POST /api/v1/reconcile?location_id=&push=       – Reconcile (or plan) linked screens
"""

from fastapi import APIRouter, Depends, Query

from screensync.common.logger import get_logger
from screensync.publish.pipeline import PublishPipeline
from screensync.schemas.response import PublishResponse, ReconcileResponse
from screensync.server.deps import get_pipeline

logger = get_logger(__name__)
router = APIRouter()


@router.post("/publish/{advertiser_id}", response_model=PublishResponse)
async def publish_advertiser(
    advertiser_id: int,
    pipeline: PublishPipeline = Depends(get_pipeline),
) -> PublishResponse:
    """
    Publish the advertiser to every targeted screen.

    A concurrent call for the same asset does not start a second run; it
    verifies the screens once the running publish finishes.
    """
    result = await pipeline.publish(advertiser_id)
    return PublishResponse(**result.to_dict())


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_screens(
    location_id: int | None = Query(None, description="Limit to one location"),
    push: bool = Query(True, description="False returns a dry-run plan per screen"),
    pipeline: PublishPipeline = Depends(get_pipeline),
) -> ReconcileResponse:
    reports = await pipeline.reconcile_location(location_id, push=push)
    return ReconcileResponse(
        ok=all(r.ok for r in reports),
        push=push,
        location_id=location_id,
        count=len(reports),
        reports=[r.to_dict() for r in reports],
    )
