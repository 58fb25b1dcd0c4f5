"""Async subprocess helper shared by the resolver, scanners and vanagon."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


async def run_process(
    cmd: list[str],
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
) -> ProcessResult:
    """Run *cmd* to completion and capture its output.

    A non-zero exit is not an error here: scanners use exit codes to
    report findings, so callers decide.

    Raises ``FileNotFoundError`` when the executable does not exist.
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(cwd) if cwd is not None else None,
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
