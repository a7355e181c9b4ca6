import sys
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

# Allow running tests without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from bulkdeploy.exception import ConnectorError
from bulkdeploy.runtime.settings import Settings
from bulkdeploy.spec import Bundle, ImportJobStatus, VersionLookup

FAILURE_LOG = (
    '<importexportxml><solutionManifests><solutionManifest>'
    '<result result="failure" errorcode="0x80048033" errortext="Missing dependency: Account.form"/>'
    '</solutionManifest></solutionManifests></importexportxml>'
)
SUCCESS_LOG = (
    '<importexportxml><solutionManifests><solutionManifest>'
    '<result result="success" errorcode="0" errortext=""/>'
    '</solutionManifest></solutionManifests></importexportxml>'
)


def make_bundle(name: str, version: str, *, managed: bool = False) -> Bundle:
    return Bundle(name=name, version=version, is_managed=managed, payload=f"{name}@{version}".encode())


def write_solution_zip(path: Path, *, name: str, version: str, managed: str = "0", manifest: bool = True) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    xml = (
        '<?xml version="1.0" encoding="utf-8"?>'
        "<ImportExportXml><SolutionManifest>"
        f"<UniqueName>{name}</UniqueName><Version>{version}</Version><Managed>{managed}</Managed>"
        "</SolutionManifest></ImportExportXml>"
    )
    with zipfile.ZipFile(path, "w") as zf:
        if manifest:
            zf.writestr("solution.xml", xml)
        zf.writestr("customizations.xml", "<ImportExportXml/>")
    return path


class FakeSolutionService:
    """In-memory solution service used across the engine tests.

    Payloads follow the `make_bundle` convention (`name@version`). A completed import
    whose result log has no failure installs that version.
    """

    def __init__(
        self,
        name: str = "fake",
        *,
        installed: Optional[Dict[str, str]] = None,
        exports: Optional[Dict[str, bytes]] = None,
        result_logs: Optional[Dict[str, str]] = None,
        submit_errors: Iterable[str] = (),
        export_errors: Iterable[str] = (),
        progress: Iterable[int] = (100,),
        poll_errors: int = 0,
        publish_errors: int = 0,
    ):
        self.name = name
        self.driver = "fake"
        self.installed = dict(installed or {})
        self.exports = dict(exports or {})
        self.result_logs = dict(result_logs or {})
        self.submit_errors = set(submit_errors)
        self.export_errors = set(export_errors)
        self.progress = list(progress)
        self.poll_errors = poll_errors
        self.publish_errors = publish_errors

        self.imports: List[str] = []
        self.exported: List[str] = []
        self.publish_calls = 0
        self.polls = 0
        self.closed = False
        self._jobs: Dict[str, dict] = {}

    # ---- SolutionService ----

    def get_solution_version(self, solution_name: str) -> VersionLookup:
        return VersionLookup(self.installed.get(solution_name))

    def export_solution(self, solution_name: str, *, managed: bool) -> bytes:
        if solution_name in self.export_errors:
            raise ConnectorError(f"export failed: {solution_name}")
        self.exported.append(solution_name)
        return self.exports[solution_name]

    def submit_import(self, payload: bytes, *, managed: bool, job_id: str) -> str:
        name, _, version = payload.decode().partition("@")
        if name in self.submit_errors:
            raise ConnectorError(f"submit failed: {name}")
        self.imports.append(name)
        self._jobs[job_id] = {"name": name, "version": version, "tick": 0}
        return job_id

    def get_import_job(self, job_id: str) -> ImportJobStatus:
        self.polls += 1
        if self.poll_errors > 0:
            self.poll_errors -= 1
            raise ConnectorError("transient polling failure")
        job = self._jobs[job_id]
        idx = min(job["tick"], len(self.progress) - 1)
        job["tick"] += 1
        done = idx == len(self.progress) - 1
        result_log = self.result_logs.get(job["name"])
        if done and "failure" not in (result_log or ""):
            self.installed[job["name"]] = job["version"]
        return ImportJobStatus(
            job_id=job_id,
            progress=self.progress[idx],
            completed_on="2026-10-19T10:00:00Z" if done else None,
            result_log=result_log,
        )

    def publish_all(self) -> None:
        self.publish_calls += 1
        if self.publish_errors > 0:
            self.publish_errors -= 1
            raise ConnectorError("publish failed")

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class FakeConnector:
    """`connect(connection_string)` over a fixed map of fake services."""

    def __init__(self, services: Dict[str, FakeSolutionService], *, unreachable: Iterable[str] = ()):
        self.services = services
        self.unreachable = set(unreachable)
        self.connects: List[str] = []

    def __call__(self, connection_string: str) -> FakeSolutionService:
        self.connects.append(connection_string)
        if connection_string in self.unreachable:
            raise ConnectorError("destination unreachable")
        return self.services[connection_string]


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        poll_interval=0,
        publish_delay=0,
        import_log_dir=str(tmp_path),
        log_level="INFO",
    )
