"""Merge per-target scan outcomes into one deduplicated report."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from depsentinel.engines.pipeline.models import (
    AggregateReport,
    FindingsOutcome,
    ScanOutcome,
    VerdictOutcome,
)

log = structlog.get_logger("depsentinel.engine")


def aggregate(outcomes: Iterable[ScanOutcome]) -> AggregateReport:
    """Fold *outcomes* (in received order) into an :class:`AggregateReport`.

    The first finding seen for a ``(package_name, version)`` key is kept;
    later duplicates are dropped whole. A failed verdict marks the report
    failed but does not stop aggregation.
    """
    report = AggregateReport()
    seen: set[tuple[str, str]] = set()

    for outcome in outcomes:
        report.scanned += 1
        if isinstance(outcome, FindingsOutcome):
            for finding in outcome.findings:
                if finding.key in seen:
                    continue
                seen.add(finding.key)
                report.findings.append(finding)
        elif isinstance(outcome, VerdictOutcome):
            if outcome.failed:
                report.failed = True
                report.failed_targets.append(outcome.target)
                log.warning(
                    "aggregate.target_failed",
                    project=outcome.target.project,
                    platform=outcome.target.platform,
                    reason=outcome.reason,
                )
            else:
                log.debug(
                    "aggregate.target_passed",
                    project=outcome.target.project,
                    platform=outcome.target.platform,
                )

    return report
