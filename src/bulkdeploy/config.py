from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from bulkdeploy.exception import SpecError
from bulkdeploy.spec import DeploymentSpec

log = logging.getLogger("bulkdeploy.config")


def _read_mapping(path: str, *, what: str) -> dict:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Couldn't find {what} file: {path}")
    text = p.read_text(encoding="utf-8-sig")
    try:
        # YAML double-quoted escapes differ from JSON ones (e.g. "\." in regexes).
        raw = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise SpecError(f"Invalid {what} file {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SpecError(f"{what.capitalize()} file {path} must contain an object")
    return raw


def _validate(raw: dict, *, path: str, what: str) -> DeploymentSpec:
    try:
        return DeploymentSpec.model_validate(raw)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            loc = ".".join(str(x) for x in err.get("loc", ()))
            problems.append(f"{loc}: {err.get('msg')}")
        raise SpecError(f"Invalid {what} file {path}: " + "; ".join(problems)) from exc


def load_deployment(path: str) -> DeploymentSpec:
    return _validate(_read_mapping(path, what="settings"), path=path, what="settings")


def load_connections(path: str) -> DeploymentSpec:
    return _validate(_read_mapping(path, what="connection"), path=path, what="connection")


def apply_connection_defaults(spec: DeploymentSpec, connections: Optional[DeploymentSpec]) -> DeploymentSpec:
    """Fill missing source/destination connection strings from the connection file."""
    if connections is None:
        return spec
    update = {}
    if not (spec.source_connection_string or "").strip():
        log.info("Using default source connection string from file.")
        update["source_connection_string"] = connections.source_connection_string
    if not spec.destination_connection_strings:
        log.info("Using default destination connection strings from file.")
        update["destination_connection_strings"] = list(connections.destination_connection_strings)
    return spec.model_copy(update=update) if update else spec
