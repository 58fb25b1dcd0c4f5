"""Targets and gem dependencies from a vanagon project checkout."""

from __future__ import annotations

import itertools
import json
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from depsentinel.core.process import run_process
from depsentinel.engines.pipeline.models import Dependency, DependencySet, Target
from depsentinel.exceptions import BuildError, PipelineError

log = structlog.get_logger("depsentinel.engine")

PROJECTS_DIR = Path("configs/projects")
PLATFORMS_DIR = Path("configs/platforms")


def _config_names(directory: Path) -> list[str]:
    if not directory.is_dir():
        raise PipelineError(f"vanagon config directory not found: {directory}")
    return sorted(p.stem for p in directory.glob("*.rb") if p.is_file())


def enumerate_targets(
    workspace: Path,
    skip_projects: list[str] | None = None,
    skip_platforms: list[str] | None = None,
) -> list[Target]:
    """Every project x platform pair defined under *workspace*, minus skip lists."""
    skip_projects = set(skip_projects or [])
    skip_platforms = set(skip_platforms or [])

    projects = [p for p in _config_names(workspace / PROJECTS_DIR) if p not in skip_projects]
    platforms = [p for p in _config_names(workspace / PLATFORMS_DIR) if p not in skip_platforms]

    targets = [Target(project=a, platform=b) for a, b in itertools.product(projects, platforms)]
    log.info(
        "vanagon.targets",
        projects=len(projects),
        platforms=len(platforms),
        targets=len(targets),
    )
    return targets


class GemSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    version: str | None = None


class DependencyReport(BaseModel):
    """Shape of ``<project>-<platform>-dependencies.json``."""

    model_config = ConfigDict(extra="ignore")

    gems: list[GemSpec] = Field(default_factory=list)


class VanagonSource:
    """Run ``vanagon dependencies`` per target inside *workspace*."""

    def __init__(self, workspace: Path, command: list[str] | None = None) -> None:
        self.workspace = Path(workspace)
        self._command = command or ["vanagon", "dependencies"]

    def output_path(self, target: Target) -> Path:
        return self.workspace / f"{target.project}-{target.platform}-dependencies.json"

    async def resolve_dependencies(self, target: Target) -> DependencySet:
        """Extract *target*'s gems.

        Raises :class:`BuildError` when vanagon fails for this target and
        :class:`PipelineError` when vanagon cannot be run at all.
        """
        cmd = [*self._command, target.project, target.platform]
        try:
            result = await run_process(cmd, cwd=self.workspace)
        except FileNotFoundError as exc:
            raise PipelineError(f"dependency extractor not found: {cmd[0]}") from exc
        except OSError as exc:
            raise BuildError(target, f"could not run {cmd[0]}: {exc}") from exc

        if result.returncode != 0:
            raise BuildError(
                target,
                f"vanagon dependencies failed (exit {result.returncode}): "
                f"{result.stderr.strip()}",
            )

        out = self.output_path(target)
        try:
            report = DependencyReport.model_validate(json.loads(out.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as exc:
            raise BuildError(target, f"unreadable dependency output {out.name}: {exc}") from exc

        deps = [Dependency(name=g.name, version_constraint=g.version) for g in report.gems]
        log.debug(
            "vanagon.dependencies",
            project=target.project,
            platform=target.platform,
            gems=len(deps),
        )
        return deps
