"""
Per-screen endpoints.

Endpoints:
    POST /api/v1/screens/{id}/reconcile       – Reconcile one screen
    POST /api/v1/screens/{id}/health-check    – Out-of-band check, self-heals layout mode
    GET  /api/v1/screens/{id}/playback-state  – Expected vs actual media
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from screensync.publish.pipeline import PublishPipeline
from screensync.schemas.response import PlaybackStateResponse
from screensync.server.deps import get_pipeline

router = APIRouter()


@router.post("/{screen_id}/reconcile")
async def reconcile_screen(
    screen_id: int,
    pipeline: PublishPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    report = await pipeline.reconcile_screen(screen_id)
    return report.to_dict()


@router.post("/{screen_id}/health-check")
async def check_screen_health(
    screen_id: int,
    pipeline: PublishPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    report = await pipeline.check_screen_health(screen_id)
    return report.to_dict()


@router.get("/{screen_id}/playback-state", response_model=PlaybackStateResponse)
async def get_playback_state(
    screen_id: int,
    use_cache: bool = Query(True, description="Serve a recent cached result"),
    pipeline: PublishPipeline = Depends(get_pipeline),
) -> PlaybackStateResponse:
    state = await pipeline.get_screen_playback_state(screen_id, use_cache=use_cache)
    return PlaybackStateResponse(**state.to_dict())
