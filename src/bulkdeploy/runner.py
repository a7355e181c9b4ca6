from __future__ import annotations

import logging
from typing import List, Optional

from bulkdeploy.config import apply_connection_defaults, load_connections, load_deployment
from bulkdeploy.connectors import ConnectFn, connector_factory
from bulkdeploy.controller import AskFn, RetryPolicy, deploy
from bulkdeploy.exception import SpecError
from bulkdeploy.observability import mask_connection_string
from bulkdeploy.runtime.settings import Settings, load_settings
from bulkdeploy.sources import resolve_from_archive, resolve_from_remote
from bulkdeploy.spec import ArchiveRequest, Bundle, DeploymentSpec, ExportRequest, RunConfig

log = logging.getLogger("bulkdeploy.runner")


def collect_bundles(spec: DeploymentSpec, *, connect: ConnectFn) -> List[Bundle]:
    """Exported bundles first (from the source system), then archive bundles."""
    bundles: List[Bundle] = []

    exports = [
        ExportRequest(name=str(c.solution_name).strip(), is_managed=c.is_managed)
        for c in spec.solution_configs
        if c.is_export
    ]
    if exports:
        source = (spec.source_connection_string or "").strip()
        if not source:
            raise SpecError("sourceConnectionString is required to export solutions")
        log.info(f"Exporting {len(exports)} solution(s) from '{mask_connection_string(source)}' ...")
        with connect(source) as service:
            bundles.extend(resolve_from_remote(service, exports))

    archives = [
        ArchiveRequest(file=str(c.solution_file), folder=c.solution_folder, is_regex=c.is_regex)
        for c in spec.solution_configs
        if c.is_archive
    ]
    if archives:
        bundles.extend(resolve_from_archive(archives))

    return bundles


def run_deployment(
    config_file: str,
    run_config: RunConfig,
    *,
    settings: Optional[Settings] = None,
    connect: Optional[ConnectFn] = None,
    ask: Optional[AskFn] = None,
) -> int:
    """Process one deployment file. Returns the process exit code (0 success, 1 failure)."""
    settings = settings or load_settings()
    connect = connect or connector_factory(settings)

    spec = load_deployment(config_file)
    if run_config.connection_file:
        spec = apply_connection_defaults(spec, load_connections(run_config.connection_file))

    if not spec.destination_connection_strings:
        raise SpecError(f"No destinationConnectionStrings configured for {config_file}")

    bundles = collect_bundles(spec, connect=connect)
    policy = RetryPolicy(auto_retry=run_config.auto_retry, budget=run_config.retry_count)
    ok = deploy(
        spec.destination_connection_strings,
        bundles,
        policy=policy,
        connect=connect,
        settings=settings,
        ask=ask,
    )
    return 0 if ok else 1
