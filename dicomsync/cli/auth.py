"""Authentication commands for dicomsync."""

from __future__ import annotations

import click

from dicomsync.cli.common import Context, global_options, handle_errors
from dicomsync.core.auth import CredentialCache
from dicomsync.core.config import DEFAULT_CLIENT_SECRETS
from dicomsync.core.exceptions import ConfigurationError
from dicomsync.core.output import (
    OutputFormat,
    print_json,
    print_key_value,
    print_success,
    print_warning,
)


@click.group()
def auth() -> None:
    """Manage Google account authorization."""
    pass


@auth.command("login")
@global_options
@handle_errors
def auth_login(ctx: Context) -> None:
    """Sign in and cache the authorized credentials.

    Opens a browser for the Google consent screen unless cached credentials
    can be reused or refreshed.

    Example:
        dicomsync auth login
    """
    session = ctx.get_session_manager().ensure_signed_in()

    if ctx.output_format == OutputFormat.JSON:
        print_json(
            {
                "status": "authenticated",
                "retries": session.retry_count,
                "expires_at": session.expires_at.isoformat() if session.expires_at else None,
            }
        )
    else:
        print_success("Signed in")
        if session.expires_at:
            click.echo(f"Access token valid until {session.expires_at:%Y-%m-%d %H:%M:%S %Z}")


@auth.command("logout")
@global_options
@handle_errors
def auth_logout(ctx: Context) -> None:
    """Forget cached credentials.

    Example:
        dicomsync auth logout
    """
    if ctx.get_session_manager().reset():
        print_success("Cached credentials removed")
    else:
        print_warning("No cached credentials found")


@auth.command("status")
@global_options
@handle_errors
def auth_status(ctx: Context) -> None:
    """Show where credentials come from and whether they are cached.

    Example:
        dicomsync auth status
    """
    profile = ctx.get_profile()
    cache = CredentialCache()
    authorizer = ctx.get_session_manager().authorizer

    try:
        client_id = authorizer.client_id
    except ConfigurationError as e:
        client_id = None
        print_warning(str(e))

    status = {
        "profile": ctx.profile_name or (ctx.config.default_profile if ctx.config else None),
        "client_secrets": profile.client_secrets or DEFAULT_CLIENT_SECRETS,
        "client_id": client_id,
        "credentials_cached": cache.exists(),
        "cache_file": str(cache.cache_file),
    }

    if ctx.output_format == OutputFormat.JSON:
        print_json(status)
    else:
        print_key_value(status, title="Auth Status")
