"""Local file discovery for exports."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

# File extensions recognized as DICOM
DICOM_EXTENSIONS = {".dcm", ".ima", ".img", ".dicom"}


def is_dicom_candidate(path: Path, *, include_extensionless: bool = True) -> bool:
    """Check whether a file looks like a DICOM instance by name."""
    if path.name.startswith("."):
        return False
    suffix = path.suffix.lower()
    return suffix in DICOM_EXTENSIONS or (include_extensionless and suffix == "")


def collect_dicom_files(
    paths: Iterable[Path],
    *,
    include_extensionless: bool = True,
) -> list[Path]:
    """Expand files and directories into the DICOM files to export.

    Directories are searched recursively; hidden files and directories
    are skipped. Files named explicitly are always included.

    Args:
        paths: Files and directories given by the user.
        include_extensionless: Include files without an extension (common for
            raw scanner output).

    Returns:
        Sorted, de-duplicated list of file paths.

    Raises:
        FileNotFoundError: If a given path does not exist.
    """
    found: set[Path] = set()
    for root in paths:
        root = Path(root)
        if not root.exists():
            raise FileNotFoundError(f"No such file or directory: {root}")

        if root.is_file():
            found.add(root)
            continue

        for path in root.rglob("*"):
            if not path.is_file():
                continue
            if any(part.startswith(".") for part in path.relative_to(root).parts[:-1]):
                continue
            if is_dicom_candidate(path, include_extensionless=include_extensionless):
                found.add(path)

    logger.debug("Collected %d file(s) for export", len(found))
    return sorted(found)
