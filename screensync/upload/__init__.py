"""
Getting advertiser videos into the remote platform.
"""

from screensync.upload.storage import FilesystemObjectStorage, ObjectStorage
from screensync.upload.validation import validate_upload
from screensync.upload.worker import TRANSITIONS, UploadJobWorker

__all__ = [
    "ObjectStorage",
    "FilesystemObjectStorage",
    "validate_upload",
    "UploadJobWorker",
    "TRANSITIONS",
]
