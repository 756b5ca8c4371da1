"""dicomsync - Two-way DICOM synchronisation with a Cloud Healthcare DICOM store.

This package moves DICOM files between a local directory and a Google Cloud
Healthcare API DICOM store:
- Export local files with concurrent STOW-RS uploads
- Poll the store and import studies with concurrent WADO-RS downloads
- Share one OAuth session between both pipelines
"""

__version__ = "0.1.0"

from dicomsync.core.client import HealthcareClient
from dicomsync.core.config import Config, Profile
from dicomsync.core.exceptions import (
    AuthError,
    AuthorizationDenied,
    ConfigurationError,
    DicomSyncError,
    ProtocolError,
    TransportError,
)
from dicomsync.core.session import SessionManager
from dicomsync.core.status import TransferStatusSink
from dicomsync.transfer import ExportService, ImportService

__all__ = [
    "__version__",
    "HealthcareClient",
    "Config",
    "Profile",
    "SessionManager",
    "TransferStatusSink",
    "ExportService",
    "ImportService",
    "DicomSyncError",
    "AuthError",
    "AuthorizationDenied",
    "ConfigurationError",
    "ProtocolError",
    "TransportError",
]
