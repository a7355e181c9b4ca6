from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol, runtime_checkable

from bulkdeploy.spec import ImportJobStatus, VersionLookup


@runtime_checkable
class SolutionService(Protocol):
    """
    Remote solution-management contract.

    A connector wraps one authenticated session against one system (source or
    destination). The orchestration engine only uses the primitives below.

    Connectors should:
      - raise ConnectorError (or the transport's own errors) on remote failures
      - report a missing solution as VersionLookup.not_found(), not as an exception
      - expose a best-effort lifecycle via close() / context manager
    """

    name: str
    driver: str

    def get_solution_version(self, solution_name: str) -> VersionLookup: ...

    def export_solution(self, solution_name: str, *, managed: bool) -> bytes: ...

    def submit_import(self, payload: bytes, *, managed: bool, job_id: str) -> str: ...

    def get_import_job(self, job_id: str) -> ImportJobStatus: ...

    def publish_all(self) -> None: ...

    def close(self) -> None: ...

    def __enter__(self): ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


@dataclass
class ConnectorInit:
    name: str
    driver: str
    config: Dict[str, str] = field(default_factory=dict)
    options: Dict[str, object] = field(default_factory=dict)
