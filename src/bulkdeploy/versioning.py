"""Solution version parsing and the "is the candidate newer" check.

Versions are dot-separated non-negative integers with 2 to 4 components
(``major.minor[.build[.revision]]``). Comparison is component-wise; a version
with fewer components sorts below an otherwise equal longer one
(``1.0 < 1.0.0``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Tuple

from bulkdeploy.connectors.base import SolutionService
from bulkdeploy.exception import InvalidVersionError
from bulkdeploy.spec import Bundle

log = logging.getLogger("bulkdeploy.versioning")

_VERSION_RE = re.compile(r"^\d+(?:\.\d+){1,3}$")


@dataclass(frozen=True, order=True)
class Version:
    parts: Tuple[int, ...]

    @classmethod
    def parse(cls, text: str) -> "Version":
        raw = (text or "").strip()
        if not _VERSION_RE.match(raw):
            raise InvalidVersionError(text)
        return cls(tuple(int(p) for p in raw.split(".")))

    def __str__(self) -> str:
        return ".".join(str(p) for p in self.parts)


def is_newer(candidate: Bundle, service: SolutionService) -> bool:
    """True when `candidate` should be imported into the system behind `service`.

    No installed solution of the same name counts as newer. Equal versions are not.
    Malformed versions raise InvalidVersionError.
    """
    lookup = service.get_solution_version(candidate.name)
    if not lookup.found:
        log.info(f"Solution '{candidate.name}' is not installed on the destination.")
        return True

    installed = Version.parse(lookup.version or "")
    given = Version.parse(candidate.version)
    newer = given > installed
    if newer:
        log.info(f"Solution '{candidate.name}' updated: {installed} -> {given}.")
    return newer
