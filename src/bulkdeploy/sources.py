"""Turn deployment entries into in-memory bundles.

Two sources are supported:
  - remote export from the source system (fail-fast over the whole batch)
  - local solution archives, located by exact name or by pattern, whose
    identity is read from the embedded ``solution.xml`` manifest
"""

from __future__ import annotations

import logging
import re
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional

from lxml import etree

from bulkdeploy.connectors.base import SolutionService
from bulkdeploy.exception import NotFoundError, SpecError
from bulkdeploy.spec import ArchiveRequest, Bundle, ExportRequest, SolutionManifest

log = logging.getLogger("bulkdeploy.sources")

MANIFEST_ENTRY = "solution.xml"
_MANIFEST_ROOT = "/ImportExportXml/SolutionManifest"


def resolve_from_remote(service: SolutionService, requests: Iterable[ExportRequest]) -> List[Bundle]:
    """Export each requested solution from the source system.

    Any failure aborts the batch: it is logged with the solution name and re-raised.
    """
    bundles: List[Bundle] = []
    for req in requests:
        try:
            bundles.append(_export_one(service, req))
        except Exception:
            log.error(f"Failed to export solution: '{req.name}'.")
            raise
    return bundles


def _export_one(service: SolutionService, req: ExportRequest) -> Bundle:
    log.info(f"Retrieving solution version for solution '{req.name}'...")
    lookup = service.get_solution_version(req.name)
    if not lookup.found:
        raise NotFoundError(f"Couldn't retrieve solution version of solution '{req.name}'.")
    log.info(f"Version: {lookup.version}.")

    log.info(f"Exporting solution '{req.name}'...")
    payload = service.export_solution(req.name, managed=req.is_managed)
    log.info("Exported!")
    return Bundle(name=req.name, version=str(lookup.version), is_managed=req.is_managed, payload=payload)


def locate_solution_file(folder: Optional[str], file_name: str, *, is_regex: bool = False) -> Optional[Path]:
    """Return the archive path for a deployment entry, or None when nothing matches.

    With `is_regex`, the first file (by name) in `folder` whose name contains a match
    for `file_name` is returned.
    """
    base = Path(folder) if (folder or "").strip() else Path(".")
    if not is_regex:
        return base / file_name

    pattern = re.compile(file_name)
    if not base.is_dir():
        return None
    for p in sorted(base.iterdir(), key=lambda x: x.name):
        if p.is_file() and pattern.search(p.name):
            return p
    return None


def read_manifest(archive_path: str | Path) -> SolutionManifest:
    """Read the solution identity from the archive's `solution.xml` entry."""
    with zipfile.ZipFile(str(archive_path), "r") as zf:
        if MANIFEST_ENTRY not in zf.namelist():
            raise NotFoundError(f"Cannot find '{MANIFEST_ENTRY}' in solution archive '{archive_path}'.")
        raw = zf.read(MANIFEST_ENTRY)

    root = etree.fromstring(raw)
    doc = root.getroottree()

    def _text(field: str) -> Optional[str]:
        nodes = doc.xpath(f"{_MANIFEST_ROOT}/{field}")
        if not nodes:
            return None
        return (nodes[0].text or "").strip()

    return SolutionManifest(
        unique_name=_text("UniqueName"),
        version=_text("Version"),
        is_managed=_text("Managed") == "1",
    )


def resolve_from_archive(requests: Iterable[ArchiveRequest]) -> List[Bundle]:
    """Load one bundle per archive request, preserving input order."""
    bundles: List[Bundle] = []
    for req in requests:
        if not (req.file or "").strip():
            raise SpecError("File name is empty in config.")

        path = locate_solution_file(req.folder, req.file, is_regex=req.is_regex)
        if path is None or not path.is_file():
            raise NotFoundError(f"Solution file '{req.file}' could not be found.")

        log.info(f"Loading solution file '{path}' ...")
        manifest = read_manifest(path)
        if not manifest.unique_name:
            raise NotFoundError(f"Solution archive '{path}' does not declare a UniqueName.")
        bundles.append(
            Bundle(
                name=manifest.unique_name,
                version=manifest.version or "",
                is_managed=manifest.is_managed,
                payload=path.read_bytes(),
            )
        )
        log.info(f"Loaded solution '{manifest.unique_name}' version {manifest.version}.")
    return bundles
