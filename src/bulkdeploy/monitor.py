from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from bulkdeploy.connectors.base import SolutionService
from bulkdeploy.exception import ImportJobTimeoutError
from bulkdeploy.spec import ImportJobStatus

log = logging.getLogger("bulkdeploy.monitor")


def monitor_import_job(
    service: SolutionService,
    job_id: str,
    *,
    interval: float = 5.0,
    progress_step: int = 5,
    max_wait: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ImportJobStatus:
    """Block until the import job reports a completion marker.

    Each tick sleeps `interval` seconds and then reads the job. Read failures are
    treated as "no update this tick". A progress line is logged whenever progress
    grows by more than `progress_step` points since the last logged value.

    With `max_wait=None` (default) there is no time limit. Otherwise
    ImportJobTimeoutError is raised once `max_wait` seconds have elapsed without
    completion.
    """
    reported = 0
    started = clock()

    while True:
        sleep(interval)

        try:
            job = service.get_import_job(job_id)
        except Exception:
            log.debug(f"Polling import job {job_id} failed; retrying next tick.", exc_info=True)
            job = None

        if job is not None:
            if job.progress - reported > progress_step:
                reported = job.progress
                log.info(f"... imported {reported}% ...")
            if job.completed:
                return job

        if max_wait is not None and clock() - started >= max_wait:
            raise ImportJobTimeoutError(job_id=job_id, max_wait=max_wait, progress=reported)
