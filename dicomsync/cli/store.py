"""DICOM store discovery commands for dicomsync."""

from __future__ import annotations

import click

from dicomsync.cli.common import Context, global_options, handle_errors
from dicomsync.core.output import print_output, print_success


@click.group()
def store() -> None:
    """Discover and create DICOM stores."""
    pass


@store.command("list")
@click.option(
    "--level",
    type=click.Choice(["projects", "locations", "datasets", "stores"]),
    default="stores",
    help="What to list, scoped by the active profile",
)
@global_options
@handle_errors
def store_list(ctx: Context, level: str) -> None:
    """List Cloud resources down to the DICOM stores of the profile's dataset.

    Example:
        dicomsync store list
        dicomsync store list --level datasets
    """
    profile = ctx.get_profile()
    client = ctx.get_client()

    if level == "projects":
        columns = ["project_id", "name", "lifecycle_state"]
        rows = [p.to_row(columns) for p in client.list_projects()]
    elif level == "locations":
        columns = ["location_id", "name"]
        rows = [loc.to_row(columns) for loc in client.list_locations(profile.project_id)]
    elif level == "datasets":
        columns = ["id", "time_zone", "name"]
        rows = [
            {**d.to_row(columns), "id": d.short_name}
            for d in client.list_datasets(profile.project_id, profile.location_id)
        ]
    else:
        descriptor = profile.store_descriptor()
        columns = ["id", "active", "name"]
        rows = [
            {
                **s.to_row(columns),
                "id": s.short_name,
                "active": s.short_name == descriptor.store_name,
            }
            for s in client.list_dicom_stores(descriptor)
        ]

    print_output(
        rows,
        format=ctx.output_format,
        columns=columns,
        quiet=ctx.quiet,
        id_field=columns[0],
    )


@store.command("ensure")
@global_options
@handle_errors
def store_ensure(ctx: Context) -> None:
    """Create the profile's DICOM store if it does not exist.

    Example:
        dicomsync store ensure
    """
    descriptor = ctx.get_profile().store_descriptor()
    if ctx.get_client().ensure_dicom_store(descriptor):
        print_success(f"Created DICOM store {descriptor}")
    else:
        print_success(f"DICOM store {descriptor} already exists")
