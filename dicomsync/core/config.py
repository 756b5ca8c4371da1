"""Configuration management for dicomsync.

Supports YAML profiles and environment variable overrides. A profile names
one DICOM store plus the transfer settings used against it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from dicomsync.core.exceptions import ConfigurationError, ProfileNotFoundError
from dicomsync.models.store import StoreDescriptor

# =============================================================================
# Constants
# =============================================================================

CONFIG_DIR = Path.home() / ".config" / "dicomsync"
CONFIG_FILE = CONFIG_DIR / "config.yaml"
CREDENTIALS_FILE = CONFIG_DIR / "credentials" / "token.json"
DEFAULT_CLIENT_SECRETS = "client_secrets.json"

DEFAULT_BASE_URL = "https://healthcare.googleapis.com/v1"
DEFAULT_POLL_INTERVAL_MS = 20_000
DEFAULT_EXPORT_WORKERS = 5
DEFAULT_IMPORT_WORKERS = 5
DEFAULT_CONNECT_TIMEOUT = 20.0
DEFAULT_READ_TIMEOUT = 120.0

# Environment variable names
ENV_PROFILE = "DICOMSYNC_PROFILE"
ENV_PROJECT = "DICOMSYNC_PROJECT"
ENV_LOCATION = "DICOMSYNC_LOCATION"
ENV_DATASET = "DICOMSYNC_DATASET"
ENV_STORE = "DICOMSYNC_STORE"
ENV_CLIENT_SECRETS = "DICOMSYNC_CLIENT_SECRETS"

STORE_FIELDS = ("project_id", "location_id", "dataset_name", "store_name")


# =============================================================================
# Profile
# =============================================================================


@dataclass
class Profile:
    """Configuration profile for one DICOM store."""

    project_id: str = ""
    location_id: str = ""
    dataset_name: str = ""
    store_name: str = ""
    import_directory: Optional[str] = None
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    max_export_workers: int = DEFAULT_EXPORT_WORKERS
    max_import_workers: int = DEFAULT_IMPORT_WORKERS
    include_content_disposition: bool = False
    client_secrets: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000

    def store_descriptor(self) -> StoreDescriptor:
        """Build the store descriptor, failing on missing or invalid identifiers.

        Raises:
            ConfigurationError: If any identifier is missing or malformed.
        """
        for name in STORE_FIELDS:
            if not getattr(self, name):
                raise ConfigurationError(f"Missing required setting: {name}", field=name)
        try:
            return StoreDescriptor(
                project_id=self.project_id,
                location_id=self.location_id,
                dataset_name=self.dataset_name,
                store_name=self.store_name,
            )
        except ValidationError as e:
            error = e.errors()[0]
            name = str(error["loc"][0]) if error.get("loc") else None
            raise ConfigurationError(
                f"Invalid store identifier: {error['msg']}",
                field=name,
                value=getattr(self, name, None) if name else None,
            ) from e

    def validate(self, *, require_import_directory: bool = False) -> None:
        """Validate the profile.

        Args:
            require_import_directory: Also require an existing import directory.

        Raises:
            ConfigurationError: On the first invalid setting.
        """
        self.store_descriptor()
        if self.poll_interval_ms <= 0:
            raise ConfigurationError(
                "poll_interval_ms must be positive", field="poll_interval_ms",
                value=self.poll_interval_ms,
            )
        for name in ("max_export_workers", "max_import_workers"):
            if getattr(self, name) < 1:
                raise ConfigurationError(
                    f"{name} must be at least 1", field=name, value=getattr(self, name)
                )
        if require_import_directory:
            if not self.import_directory:
                raise ConfigurationError(
                    "The import directory was not specified", field="import_directory"
                )
            if not Path(self.import_directory).expanduser().is_dir():
                raise ConfigurationError(
                    "The import directory does not exist",
                    field="import_directory",
                    value=self.import_directory,
                )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "project_id": self.project_id,
            "location_id": self.location_id,
            "dataset_name": self.dataset_name,
            "store_name": self.store_name,
            "import_directory": self.import_directory,
            "poll_interval_ms": self.poll_interval_ms,
            "max_export_workers": self.max_export_workers,
            "max_import_workers": self.max_import_workers,
            "include_content_disposition": self.include_content_disposition,
            "client_secrets": self.client_secrets,
            "base_url": self.base_url,
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        """Create from dictionary."""
        return cls(
            project_id=str(data.get("project_id", "")),
            location_id=str(data.get("location_id", "")),
            dataset_name=str(data.get("dataset_name", "")),
            store_name=str(data.get("store_name", "")),
            import_directory=data.get("import_directory"),
            poll_interval_ms=int(data.get("poll_interval_ms", DEFAULT_POLL_INTERVAL_MS)),
            max_export_workers=int(data.get("max_export_workers", DEFAULT_EXPORT_WORKERS)),
            max_import_workers=int(data.get("max_import_workers", DEFAULT_IMPORT_WORKERS)),
            include_content_disposition=bool(data.get("include_content_disposition", False)),
            client_secrets=data.get("client_secrets"),
            base_url=data.get("base_url", DEFAULT_BASE_URL),
            connect_timeout=float(data.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)),
            read_timeout=float(data.get("read_timeout", DEFAULT_READ_TIMEOUT)),
        )


# =============================================================================
# Config
# =============================================================================


@dataclass
class Config:
    """Application configuration."""

    default_profile: str = "default"
    output_format: str = "table"
    profiles: dict[str, Profile] = field(default_factory=dict)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load config from file with environment variable overrides.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file
        3. Defaults

        Args:
            config_path: Optional path to config file.

        Returns:
            Loaded configuration.
        """
        path = config_path or CONFIG_FILE
        config = cls()

        if path.exists():
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

                config.default_profile = data.get("default_profile", "default")
                config.output_format = data.get("output_format", "table")

                for name, pdata in (data.get("profiles") or {}).items():
                    config.profiles[name] = Profile.from_dict(pdata or {})
            except Exception as e:
                raise ConfigurationError(f"Failed to load config: {e}") from e

        if profile := os.getenv(ENV_PROFILE):
            config.default_profile = profile

        # Environment variable overrides apply to the active profile
        overrides = {
            "project_id": os.getenv(ENV_PROJECT),
            "location_id": os.getenv(ENV_LOCATION),
            "dataset_name": os.getenv(ENV_DATASET),
            "store_name": os.getenv(ENV_STORE),
            "client_secrets": os.getenv(ENV_CLIENT_SECRETS),
        }
        overrides = {k: v for k, v in overrides.items() if v}
        if overrides:
            active = config.profiles.setdefault(config.default_profile, Profile())
            for key, value in overrides.items():
                setattr(active, key, value)

        return config

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save config to file.

        Args:
            config_path: Optional path to config file.
        """
        path = config_path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "default_profile": self.default_profile,
            "output_format": self.output_format,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def get_profile(self, name: Optional[str] = None) -> Profile:
        """Get profile by name or default.

        Raises:
            ProfileNotFoundError: If profile doesn't exist.
        """
        name = name or self.default_profile
        if name not in self.profiles:
            raise ProfileNotFoundError(name)
        return self.profiles[name]

    def has_profile(self, name: str) -> bool:
        """Check if profile exists."""
        return name in self.profiles

    def add_profile(self, name: str, profile: Profile) -> Profile:
        """Add or replace a profile."""
        self.profiles[name] = profile
        return profile

    def remove_profile(self, name: str) -> bool:
        """Remove a profile.

        Returns:
            True if removed, False if didn't exist.
        """
        if name in self.profiles:
            del self.profiles[name]
            return True
        return False

    def set_default_profile(self, name: str) -> None:
        """Set the default profile.

        Raises:
            ProfileNotFoundError: If profile doesn't exist.
        """
        if name not in self.profiles:
            raise ProfileNotFoundError(name)
        self.default_profile = name
