from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from bulkdeploy.runtime.settings import Settings

_SECRET_RE = re.compile(r"((?:password|pwd|clientsecret|secret|token|accesstoken)\s*=)[^;]*;", re.IGNORECASE)

_TEXT_FORMAT = "%(asctime)s - (%(threadName)-10s) - %(name)s - %(levelname)s - %(message)s"


def mask_connection_string(connection_string: str) -> str:
    """Replace credential values in a `Key=Value;` connection string with asterisks."""
    s = (connection_string or "").strip().strip(";") + ";"
    return _SECRET_RE.sub(r"\1******;", s)


def configure_logging(settings: Settings) -> None:
    fmt = _TEXT_FORMAT
    if (settings.log_format or "text").lower() == "json":
        # JSON payload already includes timestamp; keep formatter minimal.
        fmt = "%(message)s"
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=fmt,
        handlers=handlers,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dur_ms(t0: float, t1: float) -> int:
    return int((t1 - t0) * 1000)


def log_event(logger: logging.Logger, *, settings: Settings, level: int, event: str, **fields: Any) -> None:
    """Emit an event log.

    - text format: one-liner `event key=value ...`
    - json format: one JSON object per line
    """
    if settings.log_format.lower() == "json":
        payload = {"ts_ms": _now_ms(), "event": event, **fields}
        logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
        return

    parts = [event]
    for k, v in fields.items():
        parts.append(f"{k}={v}")
    logger.log(level, " ".join(parts))


@dataclass
class CycleSummary:
    cycle: int
    destinations: int
    failed_destinations: int
    failed_bundles: int
    duration_ms: int


@dataclass
class DeploySummary:
    """Collects per-cycle outcomes and emits the end-of-deployment summary."""

    settings: Settings
    logger: logging.Logger
    cycles: List[CycleSummary] = field(default_factory=list)
    _t0: float = field(default_factory=time.perf_counter)
    _cycle_t0: float | None = None

    def cycle_start(self) -> None:
        self._cycle_t0 = time.perf_counter()

    def cycle_end(self, *, destinations: int, failures: Dict[str, list]) -> CycleSummary:
        t0 = self._cycle_t0 if self._cycle_t0 is not None else time.perf_counter()
        cs = CycleSummary(
            cycle=len(self.cycles) + 1,
            destinations=destinations,
            failed_destinations=len(failures),
            failed_bundles=sum(len(v) for v in failures.values()),
            duration_ms=_dur_ms(t0, time.perf_counter()),
        )
        self.cycles.append(cs)
        self._cycle_t0 = None
        log_event(self.logger, settings=self.settings, level=logging.INFO, event="cycle_end", **cs.__dict__)
        return cs

    def as_dict(self, *, ok: bool) -> dict:
        return {
            "ok": ok,
            "cycles": len(self.cycles),
            "duration_ms": _dur_ms(self._t0, time.perf_counter()),
            "failed_bundles": [c.failed_bundles for c in self.cycles],
        }

    def finish(self, *, ok: bool) -> dict:
        out = self.as_dict(ok=ok)
        log_event(self.logger, settings=self.settings, level=logging.INFO, event="deploy_summary", **out)
        return out
