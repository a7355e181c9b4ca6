from __future__ import annotations

import logging
from typing import Callable, Dict

from bulkdeploy.connectors.base import ConnectorInit, SolutionService
from bulkdeploy.exception import ConnectorError
from bulkdeploy.observability import mask_connection_string
from bulkdeploy.registry.connectors import REGISTRY
from bulkdeploy.runtime.settings import Settings

# Ensure built-in connectors are registered.
from bulkdeploy.builtins import connectors as _builtins  # noqa: F401

log = logging.getLogger("bulkdeploy.connectors")

DEFAULT_DRIVER = "dataverse"

ConnectFn = Callable[[str], SolutionService]


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """Parse `Key=Value;Key2=Value2` into a dict with lower-cased keys.

    Values may contain '='; empty segments are ignored.
    """
    out: Dict[str, str] = {}
    for segment in (connection_string or "").split(";"):
        if not segment.strip():
            continue
        if "=" not in segment:
            raise ConnectorError(f"Invalid connection string segment: {segment.strip()!r}")
        k, v = segment.split("=", 1)
        out[k.strip().lower()] = v.strip()
    return out


def connect(connection_string: str, *, settings: Settings | None = None, options: dict | None = None) -> SolutionService:
    """Create and open a connector for one system.

    The driver is chosen by the `Driver=` key (default: dataverse).
    """
    if not (connection_string or "").strip():
        raise ConnectorError("Connection string is empty")
    settings = settings or Settings()
    config = parse_connection_string(connection_string)
    driver = config.pop("driver", DEFAULT_DRIVER)
    opts = {"timeout": settings.http_timeout, "api_version": settings.api_version}
    opts.update(options or {})

    masked = mask_connection_string(connection_string)
    log.info(f"Connecting to '{masked}' ...")
    svc = REGISTRY.create(name=masked, driver=driver, config=config, options=opts)
    opener = getattr(svc, "connect", None)
    if callable(opener):
        try:
            opener()
        except Exception:
            svc.close()
            raise
    log.info("Connected!")
    return svc


def connector_factory(settings: Settings, **options) -> ConnectFn:
    """Bind settings/options into the `connect(connection_string)` shape used by the engine."""

    def _connect(connection_string: str) -> SolutionService:
        return connect(connection_string, settings=settings, options=options)

    return _connect


__all__ = [
    "ConnectFn",
    "ConnectorInit",
    "SolutionService",
    "connect",
    "connector_factory",
    "parse_connection_string",
]
