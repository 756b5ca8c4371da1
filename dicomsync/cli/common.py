"""Common CLI utilities, decorators, and helpers."""

from __future__ import annotations

import sys
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import click

from dicomsync.core.auth import CredentialCache, GoogleAuthorizer
from dicomsync.core.client import HealthcareClient
from dicomsync.core.config import Config, Profile
from dicomsync.core.exceptions import (
    AuthError,
    ConfigurationError,
    DicomSyncError,
    ProfileNotFoundError,
)
from dicomsync.core.logging import setup_logging
from dicomsync.core.output import OutputFormat, print_error
from dicomsync.core.session import SessionManager

F = TypeVar("F", bound=Callable[..., Any])


# =============================================================================
# Context Object
# =============================================================================


class Context:
    """CLI context object passed to commands."""

    def __init__(self) -> None:
        self.config: Optional[Config] = None
        self.profile_name: Optional[str] = None
        self.output_format: OutputFormat = OutputFormat.TABLE
        self.quiet: bool = False
        self.verbose: bool = False
        self.session_manager: Optional[SessionManager] = None
        self.client: Optional[HealthcareClient] = None

    def get_profile(self) -> Profile:
        """Get the active profile.

        Raises:
            ConfigurationError: If the profile does not exist.
        """
        if self.config is None:
            self.config = Config.load()
        try:
            return self.config.get_profile(self.profile_name)
        except ProfileNotFoundError as e:
            raise ConfigurationError(
                f"Profile '{e.profile}' not found. Run 'dicomsync config init' to create one."
            ) from e

    def get_session_manager(self) -> SessionManager:
        """Get or create the process-wide session manager."""
        if self.session_manager is None:
            profile = self.get_profile()
            cache = CredentialCache()
            authorizer = GoogleAuthorizer(profile.client_secrets, cache)
            self.session_manager = SessionManager(authorizer, cache)
        return self.session_manager

    def get_client(self) -> HealthcareClient:
        """Get or create the Healthcare API client."""
        if self.client is None:
            profile = self.get_profile()
            self.client = HealthcareClient(
                session=self.get_session_manager(),
                base_url=profile.base_url,
                connect_timeout=profile.connect_timeout,
                read_timeout=profile.read_timeout,
            )
        return self.client

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None


pass_context = click.make_pass_decorator(Context, ensure=True)


# =============================================================================
# Global Options
# =============================================================================


def global_options(f: F) -> F:
    """Add global options to a command."""

    @click.option(
        "--profile",
        "-p",
        envvar="DICOMSYNC_PROFILE",
        help="Config profile to use",
    )
    @click.option(
        "--output",
        "-o",
        "output_format",
        type=click.Choice(["json", "table"]),
        default="table",
        help="Output format",
    )
    @click.option(
        "--quiet",
        "-q",
        is_flag=True,
        help="Minimal output",
    )
    @click.option(
        "--verbose",
        "-v",
        is_flag=True,
        help="Enable verbose output",
    )
    @pass_context
    @wraps(f)
    def wrapper(
        ctx: Context,
        profile: Optional[str],
        output_format: str,
        quiet: bool,
        verbose: bool,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        ctx.profile_name = profile
        ctx.output_format = OutputFormat.from_string(output_format)
        ctx.quiet = quiet
        ctx.verbose = verbose

        setup_logging(quiet=quiet, verbose=verbose)
        ctx.config = Config.load()

        try:
            return f(ctx, *args, **kwargs)
        finally:
            ctx.close()

    return wrapper  # type: ignore


# =============================================================================
# Error Handling
# =============================================================================


def handle_errors(f: F) -> F:
    """Handle common errors and convert them to exit codes."""

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return f(*args, **kwargs)
        except AuthError as e:
            print_error(str(e))
            sys.exit(ExitCode.AUTH_ERROR)
        except DicomSyncError as e:
            print_error(str(e))
            sys.exit(ExitCode.GENERAL_ERROR)
        except click.ClickException:
            raise
        except Exception as e:
            print_error(f"Unexpected error: {e}")
            sys.exit(ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore


def expand_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


# =============================================================================
# Exit Codes
# =============================================================================


class ExitCode:
    """Standard exit codes."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    AUTH_ERROR = 2
    TRANSFER_FAILED = 3
