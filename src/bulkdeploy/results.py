from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from lxml import etree

from bulkdeploy.spec import FailureOutcome

log = logging.getLogger("bulkdeploy.results")

_LOG_NAME_RE = re.compile(r"^import(?:-(\d+))?\.log$")
_FAILURE_XPATH = "//result[@result='failure']/@errortext"


def next_import_log_path(log_dir: str | Path = ".") -> Path:
    """Next unused failure-log path: import.log, then import-2.log, import-3.log, ...

    `import.log` counts as number 1. Existing files are never reused.
    """
    d = Path(log_dir)
    highest = 0
    if d.is_dir():
        for p in d.iterdir():
            m = _LOG_NAME_RE.match(p.name)
            if not m:
                continue
            highest = max(highest, int(m.group(1)) if m.group(1) else 1)
    if highest == 0:
        return d / "import.log"
    return d / f"import-{highest + 1}.log"


def _write_import_log(result_log: str, log_dir: str | Path) -> Optional[Path]:
    try:
        path = next_import_log_path(log_dir)
        # "x" mode: never overwrite an existing log.
        with open(path, "x", encoding="utf-8") as f:
            f.write(result_log)
        return path
    except Exception:
        log.warning("Failed to write the import failure log; continuing", exc_info=True)
        return None


def inspect_result_log(result_log: Optional[str], *, log_dir: str | Path = ".") -> FailureOutcome:
    """Detect a failed import from the job's XML result log.

    Empty logs count as success. When a `result` node marked `failure` exists, its
    `errortext` is logged and the raw log is persisted to the next numbered log file.
    """
    if not (result_log or "").strip():
        return FailureOutcome(failed=False)

    root = etree.fromstring(result_log.encode("utf-8"))
    errors = root.xpath(_FAILURE_XPATH)
    if not errors:
        return FailureOutcome(failed=False)

    error_text = str(errors[0])
    path = _write_import_log(result_log, log_dir)
    where = str(path) if path is not None else "<not written>"
    log.error(f"Import failed with the following error (full log written to {where}):\n{error_text}.")
    return FailureOutcome(failed=True, error_text=error_text, log_path=str(path) if path is not None else None)
