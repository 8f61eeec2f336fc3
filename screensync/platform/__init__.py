"""
Remote signage-platform API client and response decoders.
"""

from screensync.platform.client import PlatformClient, PlatformToken
from screensync.platform.decoders import Decoded, DecodeError

__all__ = [
    "PlatformClient",
    "PlatformToken",
    "Decoded",
    "DecodeError",
]
