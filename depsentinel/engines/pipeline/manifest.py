"""ManifestBuilder: render a Gemfile per target and resolve its lock file."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from depsentinel.core.process import run_process
from depsentinel.engines.pipeline.models import DependencySet, Manifest, Target
from depsentinel.exceptions import BuildError

log = structlog.get_logger("depsentinel.engine")

GEMFILE = "Gemfile"
GEMFILE_LOCK = "Gemfile.lock"

_GEMFILE_HEADER = "source ENV['GEM_SOURCE'] || \"https://rubygems.org\"\n"

RESOLVER_CMD = ["bundle", "lock"]


def constraint_literal(constraint: str) -> str:
    """Ruby argument text for a version constraint.

    vanagon may report a bare version (``1.2.3``, ``~> 1.2``), which gets
    quoted, or ready-made Ruby string arguments (``'>= 1.0', '< 2'``), which
    are passed through unchanged.
    """
    constraint = constraint.strip()
    if constraint[:1] in ("'", '"'):
        return constraint
    return f'"{constraint}"'


def render_gemfile(deps: DependencySet) -> str:
    """Render a Gemfile declaring *deps* in input order."""
    lines = [_GEMFILE_HEADER]
    for dep in deps:
        if dep.version_constraint and dep.version_constraint.strip():
            lines.append(f'gem "{dep.name}", {constraint_literal(dep.version_constraint)}\n')
        else:
            lines.append(f'gem "{dep.name}"\n')
    return "".join(lines)


class ManifestBuilder:
    """Build a scannable Gemfile + Gemfile.lock for one target at a time.

    Safe to call concurrently for different targets: the only shared state
    is the one-time creation of *output_root*, serialized by a lock.
    """

    def __init__(self, output_root: Path, resolver_cmd: list[str] | None = None) -> None:
        self.output_root = Path(output_root)
        self._resolver_cmd = resolver_cmd or RESOLVER_CMD
        self._root_lock = asyncio.Lock()
        self._root_ready = False

    async def ensure_root(self) -> None:
        """Create the output root once; redundant calls are no-ops."""
        async with self._root_lock:
            if self._root_ready:
                return
            self.output_root.mkdir(parents=True, exist_ok=True)
            self._root_ready = True

    def manifest_dir(self, target: Target) -> Path:
        return self.output_root / target.slug

    async def build(self, target: Target, deps: DependencySet) -> Manifest:
        """Write the Gemfile for *target* and run the resolver against it.

        An empty *deps* is valid and yields a header-only Gemfile.
        Raises :class:`BuildError` if any step fails.
        """
        if not deps:
            log.info("manifest.no_gems", project=target.project, platform=target.platform)

        try:
            await self.ensure_root()
            out_dir = self.manifest_dir(target)
            out_dir.mkdir(parents=True, exist_ok=True)
            declaration = out_dir / GEMFILE
            declaration.write_text(render_gemfile(deps), encoding="utf-8")
        except OSError as exc:
            raise BuildError(target, f"could not write {GEMFILE}: {exc}") from exc

        try:
            result = await run_process(self._resolver_cmd, cwd=out_dir)
        except FileNotFoundError as exc:
            raise BuildError(target, f"resolver not found: {self._resolver_cmd[0]}") from exc
        except OSError as exc:
            raise BuildError(target, f"could not run resolver: {exc}") from exc

        if result.returncode != 0:
            raise BuildError(
                target,
                f"resolver failed (exit {result.returncode}): {result.stderr.strip()}",
            )

        lockfile = out_dir / GEMFILE_LOCK
        if not lockfile.is_file():
            raise BuildError(target, f"resolver produced no {GEMFILE_LOCK}")

        log.debug(
            "manifest.built",
            project=target.project,
            platform=target.platform,
            gems=len(deps),
            path=str(out_dir),
        )
        return Manifest(
            target=target,
            path=out_dir,
            declaration_path=declaration,
            lockfile_path=lockfile,
            dependency_count=len(deps),
        )
