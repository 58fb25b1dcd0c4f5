"""Scanner variants: snyk (monitor-and-test) and Mend (policy-check).

Both satisfy :class:`Scanner`; the dispatcher only sees the protocol and
the tagged :data:`ScanOutcome` each variant returns.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from depsentinel.core.config import MendSettings, ScanConfig, SnykSettings
from depsentinel.core.process import ProcessResult, run_process
from depsentinel.engines.pipeline.models import (
    FindingsOutcome,
    Manifest,
    ScanMode,
    ScanOutcome,
    Target,
    VerdictOutcome,
    VulnerabilityFinding,
)
from depsentinel.exceptions import PipelineError, ScanError

log = structlog.get_logger("depsentinel.engine")


@runtime_checkable
class Scanner(Protocol):
    """Interface that every scanner variant must satisfy."""

    mode: ScanMode

    async def prepare(self) -> None: ...

    async def scan(self, manifest: Manifest) -> ScanOutcome: ...

    def on_error(self, target: Target, error: ScanError) -> ScanOutcome: ...


def target_reference(project: str, branch: str | None) -> str:
    """``<branch>_<project>`` when a branch override is set, else ``<project>``."""
    if branch:
        return f"{branch}_{project}"
    return project


# ── snyk ─────────────────────────────────────────────────────────────────


class SnykVulnerability(BaseModel):
    """One entry of the ``vulnerabilities`` array in ``snyk test --json``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    title: str | None = None
    severity: str | None = None
    package_name: str = Field(alias="packageName")
    version: str
    identifiers: dict[str, list[str]] = Field(default_factory=dict)
    from_path: list[str] = Field(default_factory=list, alias="from")
    url: str | None = None

    def to_finding(self, target: Target) -> VulnerabilityFinding:
        metadata: dict[str, Any] = {
            "title": self.title,
            "cves": self.identifiers.get("CVE", []),
            "from": self.from_path,
            "project": target.project,
            "platform": target.platform,
        }
        if self.url:
            metadata["url"] = self.url
        return VulnerabilityFinding(
            package_name=self.package_name,
            version=self.version,
            severity=self.severity,
            identifier=self.id,
            metadata=metadata,
        )


class SnykTestReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    vulnerabilities: list[SnykVulnerability] = Field(default_factory=list)


def parse_snyk_report(target: Target, body: str) -> list[VulnerabilityFinding]:
    """Extract findings from a ``snyk test --json`` response body."""
    try:
        report = SnykTestReport.model_validate_json(body)
    except ValidationError as exc:
        raise ScanError(target, f"unreadable snyk test output: {exc}") from exc
    return [v.to_finding(target) for v in report.vulnerabilities]


class SnykScanner:
    """Monitor-and-test mode: optional ``snyk monitor``, then ``snyk test``."""

    mode: ScanMode = "monitor-and-test"

    # snyk test: 0 = no vulns, 1 = vulns found, anything else = failure
    CLEAN_EXIT = 0
    FINDINGS_EXIT = 1

    def __init__(self, settings: SnykSettings, branch: str | None = None) -> None:
        self.settings = settings
        self.branch = branch

    async def prepare(self) -> None:
        """Authenticate the snyk CLI once per run."""
        try:
            result = await run_process(["snyk", "auth", self.settings.token])
        except FileNotFoundError as exc:
            raise PipelineError("snyk CLI not found on PATH") from exc
        except OSError as exc:
            raise PipelineError(f"couldn't run snyk: {exc}") from exc
        if result.returncode != 0:
            raise PipelineError(f"couldn't auth snyk (exit {result.returncode})")

    def monitor_command(self, manifest: Manifest) -> list[str]:
        target = manifest.target
        cmd = [
            "snyk",
            "monitor",
            f"--target-reference={target_reference(target.project, self.branch)}",
        ]
        if self.settings.repository:
            cmd.append(
                f"--remote-repo-url=https://github.com/{self.settings.repository}.git"
            )
        cmd += [
            f"--org={self.settings.org}",
            f"--project-name={target.platform}",
            f"--file={manifest.lockfile_path.resolve()}",
        ]
        return cmd

    def test_command(self, manifest: Manifest) -> list[str]:
        return [
            "snyk",
            "test",
            f"--severity-threshold={self.settings.severity_threshold}",
            "--json",
            f"--file={manifest.lockfile_path.resolve()}",
        ]

    async def scan(self, manifest: Manifest) -> ScanOutcome:
        target = manifest.target

        if not self.settings.no_monitor:
            cmd = self.monitor_command(manifest)
            log.debug("snyk.monitor", project=target.project, platform=target.platform)
            result = await self._run(target, cmd)
            if result.returncode != 0:
                raise ScanError(
                    target,
                    f"snyk monitor failed: {result.stderr.strip()}",
                    returncode=result.returncode,
                )

        result = await self._run(target, self.test_command(manifest))
        if result.returncode not in (self.CLEAN_EXIT, self.FINDINGS_EXIT):
            raise ScanError(
                target,
                f"snyk test failed: {result.stderr.strip() or result.stdout.strip()}",
                returncode=result.returncode,
            )

        findings = parse_snyk_report(target, result.stdout)
        return FindingsOutcome(target=target, findings=tuple(findings))

    def on_error(self, target: Target, error: ScanError) -> ScanOutcome:
        # findings mode does not track failures: the target contributes nothing
        return FindingsOutcome(target=target)

    @staticmethod
    async def _run(target: Target, cmd: list[str]) -> ProcessResult:
        try:
            return await run_process(cmd)
        except FileNotFoundError as exc:
            raise ScanError(target, f"{cmd[0]} not found") from exc
        except OSError as exc:
            raise ScanError(target, f"could not run {cmd[0]}: {exc}") from exc


# ── Mend ─────────────────────────────────────────────────────────────────


class MendScanner:
    """Policy-check mode: one unified-agent run per target, pass/fail only."""

    mode: ScanMode = "policy-check"

    PASS_EXIT = 0
    # The agent reports POLICY_VIOLATION as -2, seen by the shell as 254
    POLICY_VIOLATION_EXITS = (254, -2)

    def __init__(self, settings: MendSettings) -> None:
        self.settings = settings

    async def prepare(self) -> None:
        if not Path(self.settings.agent_jar).is_file():
            raise PipelineError(f"mend unified agent not found: {self.settings.agent_jar}")

    def project_name(self, target: Target) -> str:
        return f"{self.settings.project_name}-{target.project}-{target.platform}"

    def command(self, manifest: Manifest) -> list[str]:
        return [
            "java",
            "-jar",
            self.settings.agent_jar,
            "-apiKey",
            self.settings.api_key,
            "-userKey",
            self.settings.user_key,
            "-wss.url",
            self.settings.url,
            "-product",
            self.settings.product_name,
            "-project",
            self.project_name(manifest.target),
            "-d",
            str(manifest.path.resolve()),
            "-checkPolicies",
            "true",
        ]

    async def scan(self, manifest: Manifest) -> ScanOutcome:
        target = manifest.target
        try:
            result = await run_process(self.command(manifest))
        except FileNotFoundError as exc:
            raise ScanError(target, "java not found") from exc
        except OSError as exc:
            raise ScanError(target, f"could not run java: {exc}") from exc

        if result.returncode == self.PASS_EXIT:
            return VerdictOutcome(target=target, failed=False)
        if result.returncode in self.POLICY_VIOLATION_EXITS:
            return VerdictOutcome(target=target, failed=True, reason="policy violation")
        raise ScanError(
            target,
            f"mend unified agent failed: {result.stderr.strip() or result.stdout.strip()}",
            returncode=result.returncode,
        )

    def on_error(self, target: Target, error: ScanError) -> ScanOutcome:
        return VerdictOutcome(target=target, failed=True, reason=str(error))


def create_scanner(config: ScanConfig) -> Scanner:
    """Build the scanner variant selected by *config*."""
    if config.scanner == "mend" and config.mend is not None:
        return MendScanner(config.mend)
    if config.scanner == "snyk" and config.snyk is not None:
        return SnykScanner(config.snyk, branch=config.branch)
    raise PipelineError(f"no settings for scanner {config.scanner!r}")
