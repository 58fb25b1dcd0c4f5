"""PipelineRunner: build all manifests, then scan them, then aggregate."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from depsentinel.engines.pipeline.aggregator import aggregate
from depsentinel.engines.pipeline.dispatcher import dispatch_all
from depsentinel.engines.pipeline.manifest import ManifestBuilder
from depsentinel.engines.pipeline.models import (
    AggregateReport,
    DependencySet,
    Manifest,
    Target,
)
from depsentinel.engines.pipeline.scanners import Scanner
from depsentinel.exceptions import BuildError, PipelineError
from depsentinel.progress import RunProgress

log = structlog.get_logger("depsentinel.engine")

Resolver = Callable[[Target], Awaitable[DependencySet]]


class PipelineRunner:
    """Two-phase pipeline over a list of targets.

    Stage 1 resolves and builds every target's manifest. Builds are not
    capped; dependency resolution is, by *resolve_limit* when given. Stage 2
    starts only once stage 1 has finished for all targets and scans the
    successful manifests through the bounded dispatcher.

    Per-target failures are folded into the report. Only a
    :class:`~depsentinel.exceptions.PipelineError` raised by a collaborator
    escapes :meth:`run`.
    """

    def __init__(
        self,
        builder: ManifestBuilder,
        scanner: Scanner,
        resolve_limit: int | None = None,
    ) -> None:
        if resolve_limit is not None and resolve_limit < 1:
            raise ValueError(f"resolve_limit must be >= 1, got {resolve_limit}")
        self.builder = builder
        self.scanner = scanner
        self.resolve_limit = resolve_limit
        self.progress = RunProgress()

    async def _build_one(
        self,
        target: Target,
        resolve: Resolver,
        resolve_sem: asyncio.Semaphore | None,
    ) -> Manifest | None:
        try:
            if resolve_sem is None:
                deps = await resolve(target)
            else:
                async with resolve_sem:
                    deps = await resolve(target)
            return await self.builder.build(target, deps)
        except PipelineError:
            raise
        except BuildError as exc:
            log.error(
                "pipeline.build_failed",
                project=target.project,
                platform=target.platform,
                error=str(exc),
            )
            self.progress.drop(target, str(exc))
            return None
        except Exception as exc:
            log.error(
                "pipeline.build_crashed",
                project=target.project,
                platform=target.platform,
                error=str(exc),
                exc_info=True,
            )
            self.progress.drop(target, f"unexpected {type(exc).__name__}: {exc}")
            return None

    async def build_all(self, targets: list[Target], resolve: Resolver) -> list[Manifest]:
        """Stage 1: one task per target; returns the manifests that built."""
        resolve_sem = asyncio.Semaphore(self.resolve_limit) if self.resolve_limit else None
        results = await asyncio.gather(
            *(self._build_one(t, resolve, resolve_sem) for t in targets)
        )
        return [m for m in results if m is not None]

    async def run(
        self,
        targets: list[Target],
        resolve: Resolver,
        concurrency_limit: int,
    ) -> AggregateReport:
        self.progress = RunProgress(targets=len(targets))

        self.progress.begin("build")
        try:
            manifests = await self.build_all(targets, resolve)
        except Exception as exc:
            self.progress.abort("build", str(exc))
            raise
        self.progress.builds_done(len(manifests))
        log.info(
            "pipeline.build_done",
            built=len(manifests),
            dropped=len(self.progress.dropped),
        )

        if manifests:
            self.progress.begin("scan")
            try:
                outcomes = await dispatch_all(manifests, self.scanner, concurrency_limit)
            except Exception as exc:
                self.progress.abort("scan", str(exc))
                raise
            self.progress.scans_done(len(outcomes), concurrency_limit)
        else:
            self.progress.skip("scan", "no manifests")
            outcomes = []

        self.progress.begin("aggregate")
        report = aggregate(outcomes)
        self.progress.report_done(report)
        log.info(
            "pipeline.done",
            mode=self.scanner.mode,
            findings=len(report.findings),
            failed_targets=len(report.failed_targets),
        )
        return report
