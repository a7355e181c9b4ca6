"""Import a list of bundles into one destination system.

Per destination:
  1. connect (failure marks every candidate failed)
  2. per bundle, isolated: version check -> skip | import -> monitor -> inspect result log
  3. if anything was imported: publish all customizations (bounded retry, best effort)
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Sequence

from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_fixed

from bulkdeploy.connectors import ConnectFn
from bulkdeploy.connectors.base import SolutionService
from bulkdeploy.monitor import monitor_import_job
from bulkdeploy.observability import log_event, mask_connection_string
from bulkdeploy.results import inspect_result_log
from bulkdeploy.runtime.settings import Settings
from bulkdeploy.spec import Bundle
from bulkdeploy.versioning import is_newer

log = logging.getLogger("bulkdeploy.orchestrator")


def import_bundle(service: SolutionService, bundle: Bundle, *, settings: Settings) -> bool:
    """Submit one import, wait for the job and inspect its result log. True on success."""
    job_id = str(uuid.uuid4())
    log.info(f"Importing solution '{bundle.name}' ...")
    job_id = service.submit_import(bundle.payload, managed=bundle.is_managed, job_id=job_id)

    job = monitor_import_job(
        service,
        job_id,
        interval=settings.poll_interval,
        progress_step=settings.progress_step,
        max_wait=settings.monitor_max_wait,
    )

    outcome = inspect_result_log(job.result_log, log_dir=settings.import_log_dir)
    if outcome.failed:
        return False

    log.info("Imported!")
    return True


def _log_publish_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(f"Publishing customisations failed (attempt {state.attempt_number}): {exc}. Retrying publish ...")


def publish_customizations(service: SolutionService, *, settings: Settings) -> bool:
    """Publish all customizations with a fixed pause between attempts. Never raises."""
    log.info("Publishing customisations ...")
    try:
        for attempt in Retrying(
            stop=stop_after_attempt(max(1, settings.publish_attempts)),
            wait=wait_fixed(settings.publish_delay),
            before_sleep=_log_publish_retry,
            reraise=True,
        ):
            with attempt:
                service.publish_all()
    except Exception:
        log.error("Failed to publish customisations; giving up.", exc_info=True)
        return False
    log.info("Finished publishing customisations.")
    return True


def import_to_destination(
    target: str,
    candidates: Sequence[Bundle],
    *,
    connect: ConnectFn,
    settings: Settings,
) -> List[Bundle]:
    """Import `candidates` into the system behind `target`; return the bundles that failed."""
    if not candidates:
        log.warning("No solution to import.")
        return []

    masked = mask_connection_string(target)
    log_event(log, settings=settings, level=logging.INFO, event="destination_start", destination=masked, bundles=len(candidates))

    try:
        service = connect(target)
    except Exception:
        log.exception(f"Failed to connect to '{masked}'.")
        return list(candidates)

    failed: List[Bundle] = []
    imported = 0
    with service:
        for bundle in candidates:
            log.info(f"Processing solution '{bundle.name}' ...")
            try:
                if not is_newer(bundle, service):
                    log.info("Identical solution versions. Skipping ...")
                    log_event(log, settings=settings, level=logging.INFO, event="bundle_skipped", destination=masked, bundle=bundle.name, version=bundle.version)
                    continue
                if import_bundle(service, bundle, settings=settings):
                    imported += 1
                else:
                    failed.append(bundle)
                    log_event(log, settings=settings, level=logging.WARNING, event="bundle_failed", destination=masked, bundle=bundle.name, reason="result_log")
            except Exception as e:
                log.exception(f"Failed to import solution '{bundle.name}' into '{masked}'.")
                failed.append(bundle)
                log_event(log, settings=settings, level=logging.WARNING, event="bundle_failed", destination=masked, bundle=bundle.name, reason=type(e).__name__)
            finally:
                log.info(f"Finished processing solution '{bundle.name}'.")

        if imported:
            publish_customizations(service, settings=settings)

    return failed
