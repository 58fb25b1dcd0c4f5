"""Bounded-concurrency scan dispatch."""

from __future__ import annotations

import asyncio

import structlog

from depsentinel.engines.pipeline.models import Manifest, ScanOutcome
from depsentinel.engines.pipeline.scanners import Scanner
from depsentinel.exceptions import PipelineError, ScanError

log = structlog.get_logger("depsentinel.engine")


async def scan_one(scanner: Scanner, manifest: Manifest) -> ScanOutcome:
    """Scan a single manifest, folding any per-target failure into the
    scanner's error outcome.

    Only :class:`PipelineError` propagates; everything else stays with the
    target it happened on.
    """
    target = manifest.target
    log.info("dispatch.scan_started", project=target.project, platform=target.platform)
    try:
        outcome = await scanner.scan(manifest)
    except PipelineError:
        raise
    except ScanError as exc:
        log.error(
            "dispatch.scan_failed",
            project=target.project,
            platform=target.platform,
            returncode=exc.returncode,
            error=str(exc),
        )
        return scanner.on_error(target, exc)
    except Exception as exc:
        log.error(
            "dispatch.scan_crashed",
            project=target.project,
            platform=target.platform,
            error=str(exc),
            exc_info=True,
        )
        error = ScanError(target, f"unexpected {type(exc).__name__}: {exc}")
        return scanner.on_error(target, error)
    log.info("dispatch.scan_finished", project=target.project, platform=target.platform)
    return outcome


async def dispatch_all(
    manifests: list[Manifest],
    scanner: Scanner,
    concurrency_limit: int,
) -> list[ScanOutcome]:
    """Scan every manifest with at most *concurrency_limit* scans in flight.

    A fixed pool of ``min(concurrency_limit, len(manifests))`` workers pulls
    manifests off a queue, so a slot is held exactly while one scan runs.
    Outcomes are returned in completion order.
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
    if not manifests:
        return []

    queue: asyncio.Queue[Manifest] = asyncio.Queue()
    for manifest in manifests:
        queue.put_nowait(manifest)

    outcomes: list[ScanOutcome] = []

    async def _worker() -> None:
        while True:
            try:
                manifest = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcomes.append(await scan_one(scanner, manifest))

    workers = min(concurrency_limit, len(manifests))
    log.debug("dispatch.started", manifests=len(manifests), workers=workers)
    await asyncio.gather(*(_worker() for _ in range(workers)))
    return outcomes
