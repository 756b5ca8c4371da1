"""Transfer pipelines for dicomsync.

This module provides the two directions of synchronisation:
- Export service (queued, pooled STOW-RS uploads)
- Import service (polled, pooled WADO-RS downloads)
- The multipart codec both of them use
"""

from dicomsync.transfer.constants import (
    DEFAULT_CHUNK_SIZE,
    DICOM_CONTENT_TYPE,
    DICOM_JSON_CONTENT_TYPE,
    WADO_ACCEPT,
)
from dicomsync.transfer.exporter import ExportService
from dicomsync.transfer.importer import ImportService
from dicomsync.transfer.multipart import (
    MultipartDecoder,
    MultipartEncoder,
    MultipartMessage,
    MultipartPart,
    decode,
)

__all__ = [
    # Constants
    "DEFAULT_CHUNK_SIZE",
    "DICOM_CONTENT_TYPE",
    "DICOM_JSON_CONTENT_TYPE",
    "WADO_ACCEPT",
    # Pipelines
    "ExportService",
    "ImportService",
    # Codec
    "MultipartEncoder",
    "MultipartDecoder",
    "MultipartMessage",
    "MultipartPart",
    "decode",
]
