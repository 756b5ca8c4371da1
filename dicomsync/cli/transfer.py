"""Export and import commands for dicomsync."""

from __future__ import annotations

import tempfile
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Optional

import click

from dicomsync.cli.common import Context, ExitCode, expand_path, global_options, handle_errors
from dicomsync.core.config import Profile
from dicomsync.core.output import (
    OutputFormat,
    create_spinner,
    print_json,
    print_output,
    print_success,
    print_warning,
)
from dicomsync.core.status import TransferStatusSink
from dicomsync.models.transfer import Direction
from dicomsync.transfer.exporter import ExportService
from dicomsync.transfer.files import collect_dicom_files
from dicomsync.transfer.importer import ImportService


def _print_report(ctx: Context, sink: TransferStatusSink, direction: Direction) -> int:
    """Print outcomes and totals; return the number of failures."""
    counts = sink.counts(direction)
    rows = [o.to_dict() for o in sink.outcomes(direction)]

    if ctx.output_format == OutputFormat.JSON:
        print_json({"outcomes": rows, "summary": sink.summary()[direction.value]})
        return counts.failed

    if not ctx.quiet:
        print_output(
            rows,
            format=ctx.output_format,
            columns=["subject", "result", "detail"],
            title=f"{direction.value.title()} results",
        )
    message = (
        f"{counts.succeeded}/{counts.total} {direction.value}(s) succeeded "
        f"({counts.success_rate:.0f}%)"
    )
    if counts.failed:
        print_warning(message)
    else:
        print_success(message)
    return counts.failed


# =============================================================================
# Export
# =============================================================================


@click.command("export")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--move",
    is_flag=True,
    help="Upload the files in place and delete them on success (default uploads copies)",
)
@click.option("--workers", type=int, default=None, help="Concurrent uploads (default from profile)")
@click.option("--timeout", type=float, default=None, help="Give up waiting after this many seconds")
@global_options
@handle_errors
def export(
    ctx: Context,
    paths: tuple[Path, ...],
    move: bool,
    workers: Optional[int],
    timeout: Optional[float],
) -> None:
    """Upload DICOM files to the profile's DICOM store.

    Directories are searched recursively. Successfully uploaded files are
    deleted; with the default staging only the staged copies are.

    Example:
        dicomsync export ./outgoing
        dicomsync export --move scan1.dcm scan2.dcm
    """
    profile = ctx.get_profile()
    profile.validate()
    files = collect_dicom_files(paths)
    if not files:
        print_warning("No DICOM files found")
        return

    sink = TransferStatusSink()
    with ExitStack() as stack:
        staging_dir = None
        if not move:
            staging = tempfile.TemporaryDirectory(prefix="dicomsync-")
            staging_dir = Path(stack.enter_context(staging))

        service = ExportService(
            ctx.get_client(),
            ctx.get_session_manager(),
            profile.store_descriptor(),
            sink,
            workers=workers or profile.max_export_workers,
            include_content_disposition=profile.include_content_disposition,
            staging_dir=staging_dir,
        )
        service.start()
        stack.callback(service.shutdown)

        for path in files:
            service.submit(path)

        with create_spinner() as progress:
            progress.add_task(f"Uploading {len(files)} file(s)...", total=None)
            drained = service.wait_idle(timeout)

        if not drained:
            print_warning(f"{service.queue_size} file(s) still queued at timeout")

    if _print_report(ctx, sink, Direction.UPLOAD):
        raise SystemExit(ExitCode.TRANSFER_FAILED)


# =============================================================================
# Import
# =============================================================================


def _import_directory(profile: Profile, override: Optional[str]) -> Path:
    directory = expand_path(override)
    if directory is None:
        profile.validate(require_import_directory=True)
        directory = expand_path(profile.import_directory)
    else:
        profile.validate()
    assert directory is not None
    return directory


@click.command("import")
@click.option("--import-dir", default=None, help="Target directory (default from profile)")
@click.option("--once", is_flag=True, help="Run a single poll and exit when its downloads finish")
@click.option(
    "--workers", type=int, default=None, help="Concurrent downloads (default from profile)"
)
@global_options
@handle_errors
def import_(
    ctx: Context,
    import_dir: Optional[str],
    once: bool,
    workers: Optional[int],
) -> None:
    """Download studies from the profile's DICOM store.

    Polls the store every poll interval until interrupted.

    Example:
        dicomsync import
        dicomsync import --once --import-dir ./incoming
    """
    profile = ctx.get_profile()
    directory = _import_directory(profile, import_dir)
    sink = TransferStatusSink()

    def on_file_received(path: Path) -> None:
        if not ctx.quiet and ctx.output_format != OutputFormat.JSON:
            click.echo(f"Received {path}")

    service = ImportService(
        ctx.get_client(),
        ctx.get_session_manager(),
        profile.store_descriptor(),
        sink,
        directory,
        on_file_received=on_file_received,
        workers=workers or profile.max_import_workers,
        interval=profile.poll_interval,
    )

    try:
        if once:
            service.poll_once()
            with create_spinner() as progress:
                progress.add_task("Downloading studies...", total=None)
                service.wait_idle()
        else:
            service.start()
            click.echo(
                f"Polling {profile.store_descriptor()} every {profile.poll_interval:g}s, "
                "Ctrl-C to stop",
                err=True,
            )
            while service.is_running:
                time.sleep(1)
    except KeyboardInterrupt:
        click.echo("Stopping...", err=True)
    finally:
        service.shutdown()

    _print_report(ctx, sink, Direction.DOWNLOAD)
