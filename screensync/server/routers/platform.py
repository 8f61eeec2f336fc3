"""
Remote platform diagnostics.
"""

from fastapi import APIRouter, Depends

from screensync.platform.client import PlatformClient
from screensync.schemas.response import PlatformAuthResponse
from screensync.server.deps import get_platform_client

router = APIRouter()


@router.get("/auth", response_model=PlatformAuthResponse)
async def check_platform_auth(
    client: PlatformClient = Depends(get_platform_client),
) -> PlatformAuthResponse:
    """Probe the configured token with one cheap authenticated call."""
    result = await client.check_auth()
    if result.ok:
        return PlatformAuthResponse(ok=True, label=result.data["label"])
    return PlatformAuthResponse(
        ok=False,
        code=result.code.value if result.code else None,
        message=result.error.message if result.error else None,
    )
