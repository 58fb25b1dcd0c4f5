"""Data models for the scan pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Union

ScanMode = Literal["monitor-and-test", "policy-check"]


@dataclass(frozen=True)
class Target:
    """One project/platform combination to be scanned."""

    project: str
    platform: str

    @property
    def slug(self) -> str:
        return f"{self.project}_{self.platform}"

    def __str__(self) -> str:
        return f"{self.project} {self.platform}"


@dataclass(frozen=True)
class Dependency:
    """A single gem declaration reported by the dependency extractor."""

    name: str
    version_constraint: str | None = None


DependencySet = list[Dependency]


@dataclass(frozen=True)
class Manifest:
    """Gemfile + Gemfile.lock built for one target.

    Read-only once built; the directory is left in place for the caller.
    """

    target: Target
    path: Path
    declaration_path: Path
    lockfile_path: Path
    dependency_count: int


@dataclass(frozen=True)
class VulnerabilityFinding:
    """One reported vulnerability. Dedup identity is ``(package_name, version)``."""

    package_name: str
    version: str
    severity: str | None = None
    identifier: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.package_name, self.version)

    def __str__(self) -> str:
        return f"{self.package_name}@{self.version}"


@dataclass(frozen=True)
class FindingsOutcome:
    """Monitor-and-test result: the findings reported for one target."""

    target: Target
    findings: tuple[VulnerabilityFinding, ...] = ()

    kind: Literal["findings"] = "findings"


@dataclass(frozen=True)
class VerdictOutcome:
    """Policy-check result: pass/fail for one target, no findings."""

    target: Target
    failed: bool
    reason: str | None = None

    kind: Literal["verdict"] = "verdict"


ScanOutcome = Union[FindingsOutcome, VerdictOutcome]


@dataclass
class AggregateReport:
    """Deduplicated findings across all scanned targets."""

    findings: list[VulnerabilityFinding] = field(default_factory=list)
    failed: bool = False
    failed_targets: list[Target] = field(default_factory=list)
    scanned: int = 0

    @property
    def keys(self) -> set[tuple[str, str]]:
        return {f.key for f in self.findings}
