"""Emit an AggregateReport to the calling GitHub Actions step."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TextIO

from depsentinel.engines.pipeline.models import AggregateReport, ScanMode
from depsentinel.exceptions import PipelineError

OUTPUT_NAME = "vulns"


def format_vulns(report: AggregateReport) -> str:
    """Comma-separated finding identities, or a single blank when there are none."""
    if not report.findings:
        return " "
    return ",".join(str(f) for f in report.findings)


def emit_report(
    report: AggregateReport,
    github_output: Path | None = None,
    stream: TextIO | None = None,
) -> str:
    """Publish the ``vulns`` step output and return the value written.

    Appends to the ``$GITHUB_OUTPUT`` file when given, otherwise prints the
    legacy ``::set-output`` workflow command. Raises :class:`PipelineError`
    when the output file cannot be written.
    """
    value = format_vulns(report)
    if github_output is not None:
        try:
            with open(github_output, "a", encoding="utf-8") as fh:
                fh.write(f"{OUTPUT_NAME}={value}\n")
        except OSError as exc:
            raise PipelineError(f"couldn't write step output to {github_output}: {exc}") from exc
    else:
        out = stream or sys.stdout
        out.write(f"::set-output name={OUTPUT_NAME}::{value}\n")
        out.flush()
    return value


def exit_code(report: AggregateReport, mode: ScanMode) -> int:
    """Process exit status for *mode*.

    Monitor-and-test always succeeds; policy-check fails if any target failed.
    """
    if mode == "policy-check" and report.failed:
        return 1
    return 0
