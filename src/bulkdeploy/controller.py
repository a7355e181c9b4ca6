from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from bulkdeploy.connectors import ConnectFn
from bulkdeploy.observability import DeploySummary, log_event
from bulkdeploy.orchestrator import import_to_destination
from bulkdeploy.runtime.settings import Settings
from bulkdeploy.spec import Bundle, FailureMap

log = logging.getLogger("bulkdeploy.controller")

AskFn = Callable[[str], str]


@dataclass(frozen=True)
class RetryPolicy:
    """Automatic retry with a bounded budget, or interactive confirmation per cycle."""

    auto_retry: bool = False
    budget: int = 0

    def __post_init__(self) -> None:
        if self.budget < 0:
            raise ValueError(f"Retry budget must be >= 0, got {self.budget}")


def run_cycle(
    work: Iterable[Tuple[str, Sequence[Bundle]]],
    *,
    connect: ConnectFn,
    settings: Settings,
) -> FailureMap:
    """Run one import cycle and return a fresh failure map (only non-empty entries)."""
    failures: FailureMap = {}
    for target, candidates in work:
        failed = import_to_destination(target, candidates, connect=connect, settings=settings)
        if failed:
            failures[target] = list(failed)
    return failures


def total_failures(failures: FailureMap) -> int:
    return sum(len(v) for v in failures.values())


def _default_ask(prompt: str) -> str:
    print()
    return input(prompt)


def deploy(
    targets: Sequence[str],
    candidates: Sequence[Bundle],
    *,
    policy: RetryPolicy,
    connect: ConnectFn,
    settings: Settings,
    ask: Optional[AskFn] = None,
) -> bool:
    """Import `candidates` into every target, retrying failed pairs per `policy`.

    Returns True once a cycle ends without failures; False when the retry budget is
    exhausted or the operator declines to retry.
    """
    ask = ask or _default_ask
    summary = DeploySummary(settings=settings, logger=log)
    remaining = policy.budget

    log_event(log, settings=settings, level=logging.INFO, event="deploy_start", destinations=len(targets), bundles=len(candidates), auto_retry=policy.auto_retry, retries=policy.budget)

    summary.cycle_start()
    failures = run_cycle(((t, candidates) for t in targets), connect=connect, settings=settings)
    summary.cycle_end(destinations=len(targets), failures=failures)

    while failures:
        count = total_failures(failures)
        log.warning(f"Some solutions failed to import ({count} total failures).")

        if policy.auto_retry:
            log.info(f"Remaining retries: {remaining}.")
            if remaining <= 0:
                log.warning("Retry count has expired.")
                summary.finish(ok=False)
                return False
            remaining -= 1
            log.info("Automatically retrying to import ...")
        else:
            answer = (ask(f"{count} total failures. Try again [y/n]? ") or "").strip()
            if answer[:1] != "y":
                summary.finish(ok=False)
                return False

        previous: List[Tuple[str, List[Bundle]]] = list(failures.items())
        summary.cycle_start()
        failures = run_cycle(previous, connect=connect, settings=settings)
        summary.cycle_end(destinations=len(previous), failures=failures)

    summary.finish(ok=True)
    return True
