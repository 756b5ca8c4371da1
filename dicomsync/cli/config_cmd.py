"""Config commands for dicomsync."""

from __future__ import annotations

from typing import Optional

import click

from dicomsync.core.config import CONFIG_FILE, Config, Profile
from dicomsync.core.exceptions import ConfigurationError
from dicomsync.core.output import (
    OutputFormat,
    print_error,
    print_key_value,
    print_output,
    print_success,
)


@click.group()
def config() -> None:
    """Manage dicomsync configuration."""
    pass


@config.command("init")
@click.option("--project", "project_id", prompt="Cloud project ID", help="Cloud project ID")
@click.option("--location", "location_id", prompt="Location", help="Healthcare API location")
@click.option("--dataset", "dataset_name", prompt="Dataset", help="Healthcare dataset name")
@click.option("--store", "store_name", prompt="DICOM store", help="DICOM store name")
@click.option("--import-dir", default=None, help="Directory receiving imported files")
@click.option("--client-secrets", default=None, help="OAuth client secrets JSON file")
@click.option("--profile", default="default", help="Profile name")
@click.option("--force", is_flag=True, help="Overwrite an existing profile")
def config_init(
    project_id: str,
    location_id: str,
    dataset_name: str,
    store_name: str,
    import_dir: Optional[str],
    client_secrets: Optional[str],
    profile: str,
    force: bool,
) -> None:
    """Create or update a profile for one DICOM store.

    Example:
        dicomsync config init --project my-proj --location us-central1 \\
            --dataset imaging --store incoming
    """
    new_profile = Profile(
        project_id=project_id,
        location_id=location_id,
        dataset_name=dataset_name,
        store_name=store_name,
        import_directory=import_dir,
        client_secrets=client_secrets,
    )
    try:
        new_profile.store_descriptor()
    except ConfigurationError as e:
        print_error(str(e))
        raise SystemExit(1) from e

    cfg = Config.load() if CONFIG_FILE.exists() else Config()
    if cfg.has_profile(profile) and not force:
        print_error(f"Profile '{profile}' already exists. Use --force to overwrite.")
        raise SystemExit(1)

    cfg.add_profile(profile, new_profile)
    if len(cfg.profiles) == 1:
        cfg.default_profile = profile
    cfg.save()

    print_success(f"Configuration saved to {CONFIG_FILE}")
    print_key_value(
        {
            "profile": profile,
            "store": str(new_profile.store_descriptor()),
            "import_directory": import_dir or "-",
        }
    )


@config.command("show")
@click.option("--output", "-o", type=click.Choice(["json", "table"]), default="table")
def config_show(output: str) -> None:
    """Show current configuration."""
    try:
        cfg = Config.load()
    except ConfigurationError as e:
        print_error(str(e))
        raise SystemExit(1) from e

    if not cfg.profiles:
        print_error("No configuration found. Run 'dicomsync config init' first.")
        raise SystemExit(1)

    if output == "json":
        print_output(
            {
                "config_file": str(CONFIG_FILE),
                "default_profile": cfg.default_profile,
                "profiles": {name: p.to_dict() for name, p in cfg.profiles.items()},
            },
            format=OutputFormat.JSON,
        )
        return

    print_key_value(
        {
            "config_file": str(CONFIG_FILE),
            "default_profile": cfg.default_profile,
        },
        title="Configuration",
    )
    for name, profile in cfg.profiles.items():
        marker = " (default)" if name == cfg.default_profile else ""
        click.echo()
        click.echo(f"Profile: {name}{marker}")
        print_key_value(
            {
                "project_id": profile.project_id,
                "location_id": profile.location_id,
                "dataset_name": profile.dataset_name,
                "store_name": profile.store_name,
                "import_directory": profile.import_directory,
                "poll_interval": f"{profile.poll_interval:g}s",
                "export_workers": profile.max_export_workers,
                "import_workers": profile.max_import_workers,
            }
        )


@config.command("use-context")
@click.argument("profile")
def config_use_context(profile: str) -> None:
    """Switch the active profile.

    Example:
        dicomsync config use-context research
    """
    cfg = Config.load()

    if not cfg.has_profile(profile):
        print_error(f"Profile '{profile}' not found.")
        click.echo(f"Available profiles: {', '.join(cfg.profiles.keys())}")
        raise SystemExit(1)

    cfg.set_default_profile(profile)
    cfg.save()

    print_success(f"Switched to profile '{profile}'")
