from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

# ---------------------------------------------------------------------------
# Deployment / connection files
# ---------------------------------------------------------------------------


class _CamelSpec(BaseModel):
    # Deployment files use camelCase keys; snake_case is accepted as well.
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class SolutionConfigSpec(_CamelSpec):
    """One `solutionConfigs` entry.

    An entry with `solution_name` is exported from the source system and an entry
    with `solution_file` is loaded from a local archive. An entry with both does both.
    """

    solution_name: Optional[str] = None
    is_managed: bool = False
    solution_folder: Optional[str] = None
    solution_file: Optional[str] = None
    is_regex: bool = False

    @property
    def is_archive(self) -> bool:
        return bool((self.solution_file or "").strip())

    @property
    def is_export(self) -> bool:
        return bool((self.solution_name or "").strip())


class DeploymentSpec(_CamelSpec):
    """Deployment file schema (also used for the shared connection file)."""

    source_connection_string: Optional[str] = None
    destination_connection_strings: List[str] = Field(default_factory=list)
    solution_configs: List[SolutionConfigSpec] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunConfig:
    """Immutable run configuration, built once from parsed CLI arguments."""

    config_files: tuple[str, ...]
    connection_file: Optional[str] = None
    auto_retry: bool = False
    retry_count: int = 0
    pause_on_exit: bool = True


# ---------------------------------------------------------------------------
# Bundles / remote outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Bundle:
    """A solution package ready to import. Never mutated after creation."""

    name: str
    version: str
    is_managed: bool
    payload: bytes

    def __repr__(self) -> str:
        return (
            f"Bundle(name={self.name!r}, version={self.version!r}, "
            f"is_managed={self.is_managed}, payload=<{len(self.payload)} bytes>)"
        )


@dataclass(frozen=True)
class ExportRequest:
    name: str
    is_managed: bool = False


@dataclass(frozen=True)
class ArchiveRequest:
    file: str
    folder: Optional[str] = None
    is_regex: bool = False


@dataclass(frozen=True)
class SolutionManifest:
    """Identity read from `solution.xml` inside a solution archive."""

    unique_name: Optional[str]
    version: Optional[str]
    is_managed: bool


@dataclass(frozen=True)
class VersionLookup:
    """Outcome of an installed-version lookup: found with a version, or not found."""

    version: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool((self.version or "").strip())

    @classmethod
    def not_found(cls) -> "VersionLookup":
        return cls(None)


@dataclass(frozen=True)
class ImportJobStatus:
    """Snapshot of a server-side import job.

    `completed_on` is absent while the job runs; its value is not otherwise interpreted.
    """

    job_id: str
    progress: int = 0
    completed_on: Optional[str] = None
    result_log: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.completed_on is not None


@dataclass(frozen=True)
class FailureOutcome:
    failed: bool
    error_text: Optional[str] = None
    log_path: Optional[str] = None


# Destination connection string -> bundles that failed against it in the latest cycle.
FailureMap = Dict[str, List[Bundle]]


__all__ = [
    # files
    "SolutionConfigSpec",
    "DeploymentSpec",
    # run
    "RunConfig",
    # bundles
    "Bundle",
    "ExportRequest",
    "ArchiveRequest",
    "SolutionManifest",
    # remote outcomes
    "VersionLookup",
    "ImportJobStatus",
    "FailureOutcome",
    "FailureMap",
]
