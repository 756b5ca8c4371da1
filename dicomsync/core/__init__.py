"""Core modules for dicomsync."""

from dicomsync.core.exceptions import (
    AuthError,
    AuthorizationDenied,
    ConfigurationError,
    DicomSyncError,
    ProfileNotFoundError,
    ProtocolError,
    RemoteOperationError,
    RetryExhaustedError,
    TransportError,
)
from dicomsync.core.logging import LogContext, get_audit_logger, get_logger, setup_logging
from dicomsync.core.config import CONFIG_DIR, CONFIG_FILE, Config, Profile
from dicomsync.core.auth import AccessGrant, CredentialCache, GoogleAuthorizer
from dicomsync.core.session import Session, SessionManager
from dicomsync.core.status import TransferStatusSink
from dicomsync.core.client import HealthcareClient
from dicomsync.core.output import (
    OutputFormat,
    console,
    print_error,
    print_json,
    print_output,
    print_success,
    print_table,
    print_warning,
)

__all__ = [
    # Exceptions
    "DicomSyncError",
    "AuthError",
    "AuthorizationDenied",
    "ConfigurationError",
    "ProfileNotFoundError",
    "ProtocolError",
    "RemoteOperationError",
    "RetryExhaustedError",
    "TransportError",
    # Config
    "Config",
    "Profile",
    "CONFIG_DIR",
    "CONFIG_FILE",
    # Auth and session
    "AccessGrant",
    "CredentialCache",
    "GoogleAuthorizer",
    "Session",
    "SessionManager",
    # Status
    "TransferStatusSink",
    # Client
    "HealthcareClient",
    # Output
    "OutputFormat",
    "print_output",
    "print_table",
    "print_json",
    "print_error",
    "print_warning",
    "print_success",
    "console",
    # Logging
    "get_logger",
    "get_audit_logger",
    "setup_logging",
    "LogContext",
]
