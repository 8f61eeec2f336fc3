"""
FastAPI dependencies.

The platform client, object storage and clock are created once in the
application lifespan and live on ``app.state``; the pipeline is built per
request around the request's database session.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.clock import Clock
from screensync.common.database import get_session
from screensync.platform.client import PlatformClient
from screensync.publish.pipeline import PublishPipeline, create_pipeline
from screensync.upload.storage import ObjectStorage
from screensync.upload.worker import UploadJobWorker


async def get_platform_client(request: Request) -> PlatformClient:
    return request.app.state.platform_client


async def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


async def get_clock(request: Request) -> Clock:
    return request.app.state.clock


async def get_pipeline(
    session: AsyncSession = Depends(get_session),
    client: PlatformClient = Depends(get_platform_client),
    storage: ObjectStorage = Depends(get_storage),
    clock: Clock = Depends(get_clock),
) -> PublishPipeline:
    return create_pipeline(session, client, storage=storage, clock=clock)


async def get_upload_worker(
    pipeline: PublishPipeline = Depends(get_pipeline),
) -> UploadJobWorker:
    return pipeline.uploader
