"""
Upload worker endpoints.

Endpoints:
    POST /api/v1/uploads/run        – Process due upload jobs
    GET  /api/v1/uploads/{job_id}   – Upload job status
"""

from fastapi import APIRouter, Depends, Query

from screensync.schemas.response import UploadJobResponse, UploadRunResponse
from screensync.server.deps import get_upload_worker
from screensync.upload.worker import UploadJobWorker

router = APIRouter()


@router.post("/run", response_model=UploadRunResponse)
async def run_due_jobs(
    limit: int = Query(10, ge=1, le=100),
    worker: UploadJobWorker = Depends(get_upload_worker),
) -> UploadRunResponse:
    stats = await worker.run_due_jobs(limit)
    return UploadRunResponse(**stats)


@router.get("/{job_id}", response_model=UploadJobResponse)
async def get_upload_job(
    job_id: int,
    worker: UploadJobWorker = Depends(get_upload_worker),
) -> UploadJobResponse:
    job = await worker.get_job(job_id)
    return UploadJobResponse.model_validate(job)
