"""Shared fixtures for depsentinel tests.

No test launches a real resolver or scanner: subprocess seams are patched
and scanners are replaced by :class:`FakeScanner`.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from depsentinel.core.process import ProcessResult
from depsentinel.engines.pipeline.models import (
    FindingsOutcome,
    Manifest,
    ScanMode,
    ScanOutcome,
    Target,
    VerdictOutcome,
    VulnerabilityFinding,
)
from depsentinel.exceptions import ScanError


def finding(name: str, version: str, **meta) -> VulnerabilityFinding:
    return VulnerabilityFinding(
        package_name=name,
        version=version,
        severity=meta.pop("severity", "high"),
        identifier=meta.pop("identifier", f"SNYK-RUBY-{name.upper()}"),
        metadata=meta,
    )


def make_manifest(tmp_path: Path, target: Target) -> Manifest:
    out = tmp_path / target.slug
    out.mkdir(parents=True, exist_ok=True)
    (out / "Gemfile").write_text("")
    (out / "Gemfile.lock").write_text("")
    return Manifest(
        target=target,
        path=out,
        declaration_path=out / "Gemfile",
        lockfile_path=out / "Gemfile.lock",
        dependency_count=0,
    )


async def fake_bundle_lock(cmd, cwd=None, env=None) -> ProcessResult:
    """Stand-in for ``bundle lock``: writes a lock file next to the Gemfile."""
    Path(cwd, "Gemfile.lock").write_text("GEM\n  specs:\n")
    return ProcessResult(returncode=0, stdout="", stderr="")


class FakeScanner:
    """Scripted scanner that also records how many scans overlap."""

    def __init__(
        self,
        findings: dict[Target, list[VulnerabilityFinding]] | None = None,
        fail: set[Target] | None = None,
        delay: float = 0.01,
        mode: ScanMode = "monitor-and-test",
    ) -> None:
        self.mode = mode
        self.findings = findings or {}
        self.fail = fail or set()
        self.delay = delay
        self.running = 0
        self.max_running = 0
        self.scanned: list[Target] = []
        self.prepared = False

    async def prepare(self) -> None:
        self.prepared = True

    async def scan(self, manifest: Manifest) -> ScanOutcome:
        target = manifest.target
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delay)
            self.scanned.append(target)
            if target in self.fail:
                raise ScanError(target, "scanner blew up", returncode=2)
            if self.mode == "policy-check":
                return VerdictOutcome(target=target, failed=False)
            return FindingsOutcome(target=target, findings=tuple(self.findings.get(target, [])))
        finally:
            self.running -= 1

    def on_error(self, target: Target, error: ScanError) -> ScanOutcome:
        if self.mode == "policy-check":
            return VerdictOutcome(target=target, failed=True, reason=str(error))
        return FindingsOutcome(target=target)


@pytest.fixture
def linux():
    return Target(project="agent", platform="linux")


@pytest.fixture
def windows():
    return Target(project="agent", platform="windows")


@pytest.fixture
def make_finding():
    return finding


@pytest.fixture
def bundle_lock():
    return fake_bundle_lock


@pytest.fixture
def scanner_cls():
    return FakeScanner


@pytest.fixture
def manifest_for(tmp_path):
    def _make(target: Target) -> Manifest:
        return make_manifest(tmp_path, target)

    return _make
