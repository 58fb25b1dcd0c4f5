"""Per-run accounting of what each pipeline stage did with the targets."""

from __future__ import annotations

import time
from dataclasses import dataclass

from depsentinel.engines.pipeline.models import AggregateReport, Target

STAGES = ("build", "scan", "aggregate")

_ICONS = {"done": "+", "failed": "!", "skipped": "-", "running": "~", "pending": " "}


@dataclass
class StageRecord:
    name: str
    status: str = "pending"  # running | done | failed | skipped
    started: float | None = None
    finished: float | None = None
    note: str = ""

    @property
    def elapsed(self) -> float | None:
        if self.started is None or self.finished is None:
            return None
        return round(self.finished - self.started, 2)


@dataclass
class DroppedTarget:
    target: Target
    reason: str


class RunProgress:
    """Target counts per stage, plus which targets fell out and why.

    The runner feeds it as the stages advance; the CLI renders
    :meth:`summary_lines` under ``--verbose``.
    """

    def __init__(self, targets: int = 0) -> None:
        self.targets = targets
        self.stages: dict[str, StageRecord] = {name: StageRecord(name) for name in STAGES}
        self.dropped: list[DroppedTarget] = []
        self.built = 0
        self.scanned = 0
        self.scan_limit: int | None = None
        self.findings = 0
        self.failed_targets: list[Target] = []

    def get(self, stage: str) -> StageRecord:
        return self.stages[stage]

    def begin(self, stage: str) -> None:
        record = self.stages[stage]
        record.status = "running"
        record.started = time.monotonic()

    def _finish(self, stage: str, status: str, note: str) -> None:
        record = self.stages[stage]
        record.status = status
        record.finished = time.monotonic()
        record.note = note

    def abort(self, stage: str, error: str) -> None:
        self._finish(stage, "failed", error)

    def skip(self, stage: str, reason: str) -> None:
        self.stages[stage].status = "skipped"
        self.stages[stage].note = reason

    def drop(self, target: Target, reason: str) -> None:
        self.dropped.append(DroppedTarget(target, reason))

    def builds_done(self, built: int) -> None:
        self.built = built
        self._finish(
            "build", "done", f"{built} of {self.targets} built, {len(self.dropped)} dropped"
        )

    def scans_done(self, scanned: int, limit: int) -> None:
        self.scanned = scanned
        self.scan_limit = limit
        self._finish("scan", "done", f"{scanned} scanned, at most {limit} at once")

    def report_done(self, report: AggregateReport) -> None:
        self.findings = len(report.findings)
        self.failed_targets = list(report.failed_targets)
        self._finish(
            "aggregate",
            "done",
            f"{self.findings} unique findings, {len(self.failed_targets)} failed targets",
        )

    def summary_lines(self) -> list[str]:
        lines = [f"Pipeline summary ({self.targets} targets):"]
        for record in self.stages.values():
            elapsed = f" ({record.elapsed}s)" if record.elapsed else ""
            note = f" - {record.note}" if record.note else ""
            icon = _ICONS.get(record.status, "?")
            lines.append(f"  [{icon}] {record.name}{elapsed}{note}")
        for dropped in self.dropped:
            lines.append(f"      dropped {dropped.target}: {dropped.reason}")
        for target in self.failed_targets:
            lines.append(f"      failed {target}")
        return lines
