from __future__ import annotations

import os
from importlib import import_module
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    # Defaults are static. Use load_settings(env=...) to read from an env snapshot.
    log_level: str = "INFO"

    # Observability
    # - log_format: "text" (default) or "json". When json, bulkdeploy events are emitted as a
    #   single JSON object per line, suitable for log aggregation.
    log_format: str = "text"
    log_file: Optional[str] = None

    # Import job monitoring
    # - poll_interval: seconds slept before every progress read
    # - progress_step: minimum progress increase (percent points) before a progress line is logged
    # - monitor_max_wait: None means wait for completion without limit
    poll_interval: float = 5.0
    progress_step: int = 5
    monitor_max_wait: Optional[float] = None

    # Publish all customizations after a successful import
    publish_attempts: int = 3
    publish_delay: float = 5.0

    # Directory receiving import.log / import-<n>.log on failed imports
    import_log_dir: str = "."

    # Remote connector
    http_timeout: float = 120.0
    api_version: str = "9.2"

    @classmethod
    def from_env(cls, env: dict[str, str], overrides: dict | None = None) -> "Settings":
        """Build Settings from an explicit env snapshot (does not read os.environ)."""
        def g(key: str, default: str | None = None) -> str | None:
            return env.get(key, default)  # type: ignore[return-value]

        data = {
            "log_level": g("BULKDEPLOY_LOG_LEVEL", "INFO"),
            "log_format": g("BULKDEPLOY_LOG_FORMAT", "text"),
            "log_file": g("BULKDEPLOY_LOG_FILE") or None,
            "poll_interval": g("BULKDEPLOY_POLL_INTERVAL", "5"),
            "progress_step": g("BULKDEPLOY_PROGRESS_STEP", "5"),
            "monitor_max_wait": g("BULKDEPLOY_MONITOR_MAX_WAIT") or None,
            "publish_attempts": g("BULKDEPLOY_PUBLISH_ATTEMPTS", "3"),
            "publish_delay": g("BULKDEPLOY_PUBLISH_DELAY", "5"),
            "import_log_dir": g("BULKDEPLOY_IMPORT_LOG_DIR", "."),
            "http_timeout": g("BULKDEPLOY_HTTP_TIMEOUT", "120"),
            "api_version": g("BULKDEPLOY_API_VERSION", "9.2"),
        }
        if overrides:
            data.update(overrides)
        return cls(**data)


def load_settings(overrides: dict | None = None, *, env: dict[str, str] | None = None) -> Settings:
    """Load settings from (1) env snapshot, (2) optional settings module, (3) explicit overrides.

    If env is not provided, we build a snapshot from os.environ.
    """
    env2 = {k: str(v) for k, v in os.environ.items()} if env is None else env
    s = Settings.from_env(env2)
    mod = env2.get("BULKDEPLOY_SETTINGS_MODULE")
    if mod:
        m = import_module(mod)
        data = getattr(m, "SETTINGS", {})
        if not isinstance(data, dict):
            raise TypeError("BULKDEPLOY_SETTINGS_MODULE must expose SETTINGS: dict")
        s = s.model_copy(update=data)
    if overrides:
        s = s.model_copy(update=overrides)
    return s
