"""Shared constants for the transfer pipelines.

Worker counts and the poll interval default through the profile settings in
``dicomsync.core.config``; these are the DICOMweb wire constants.
"""

# =============================================================================
# DICOMweb Media Types
# =============================================================================

DICOM_CONTENT_TYPE = "application/dicom"
DICOM_JSON_CONTENT_TYPE = "application/dicom+json"

# Accept header for WADO-RS study retrieval
WADO_ACCEPT = 'multipart/related; type="application/dicom"; transfer-syntax=*'

# =============================================================================
# Streaming
# =============================================================================

# Read size for upload payloads and download bodies
DEFAULT_CHUNK_SIZE = 64 * 1024

# =============================================================================
# Shutdown
# =============================================================================

# Seconds to wait for a dispatcher/poller thread to exit on shutdown
SHUTDOWN_JOIN_TIMEOUT = 5.0
