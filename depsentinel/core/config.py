"""CI environment configuration.

Settings arrive as GitHub Actions inputs (``INPUT_*``) plus the standard
``GITHUB_*`` variables and are validated into a :class:`ScanConfig`.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from depsentinel.exceptions import ConfigError

_BRANCH_MAX_LEN = 10
_BRANCH_DISALLOWED_RE = re.compile(r"[^a-zA-Z0-9-]+")

DEFAULT_CONCURRENCY = 20
DEFAULT_RESOLVE_CONCURRENCY = 20
DEFAULT_OUTPUT_DIR = "gen_lockfile"
DEFAULT_MEND_AGENT_JAR = "wss-unified-agent.jar"

_REQUIRED_BY_SCANNER: dict[str, list[tuple[str, str]]] = {
    "snyk": [
        ("INPUT_SNYKTOKEN", "no snyk token set"),
        ("INPUT_SNYKORG", "no snyk org set"),
    ],
    "mend": [
        ("INPUT_MENDAPIKEY", "no mend API key set"),
        ("INPUT_MENDTOKEN", "no mend user token set"),
        ("INPUT_MENDURL", "no mend URL set"),
        ("INPUT_PRODUCTNAME", "no product name set"),
        ("INPUT_PROJECTNAME", "no base project name set"),
    ],
}


def sanitize_branch(branch: str) -> str:
    """Truncate *branch* to 10 characters, then drop anything outside ``[A-Za-z0-9-]``."""
    return _BRANCH_DISALLOWED_RE.sub("", branch[:_BRANCH_MAX_LEN])


def split_list(raw: str | None) -> list[str]:
    """Split a comma-separated input, trimming whitespace around each entry."""
    if not raw:
        return []
    return [item.strip() for item in raw.split(",")]


class SnykSettings(BaseModel):
    token: str
    org: str
    no_monitor: bool = False
    severity_threshold: str = "medium"
    repository: str | None = None


class MendSettings(BaseModel):
    api_key: str
    user_key: str
    url: str
    product_name: str
    project_name: str
    agent_jar: str = DEFAULT_MEND_AGENT_JAR


class ScanConfig(BaseModel):
    """Validated settings for one scan run."""

    workspace: Path
    scanner: Literal["snyk", "mend"] = "snyk"
    snyk: SnykSettings | None = None
    mend: MendSettings | None = None
    skip_projects: list[str] = Field(default_factory=list)
    skip_platforms: list[str] = Field(default_factory=list)
    branch: str | None = None
    debug: bool = False
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    resolve_concurrency: int = Field(default=DEFAULT_RESOLVE_CONCURRENCY, ge=1)
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    github_output: Path | None = None

    @property
    def output_root(self) -> Path:
        if self.output_dir.is_absolute():
            return self.output_dir
        return self.workspace / self.output_dir

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ScanConfig:
        """Build a config from the process environment (or *environ*).

        Raises :class:`ConfigError` naming every missing required setting.
        """
        env = os.environ if environ is None else environ

        scanner = (env.get("INPUT_SCANNER") or "snyk").strip().lower()
        if scanner not in _REQUIRED_BY_SCANNER:
            raise ConfigError(f"unknown scanner {scanner!r} (expected 'snyk' or 'mend')")

        missing = [msg for var, msg in _REQUIRED_BY_SCANNER[scanner] if not env.get(var)]
        if not env.get("GITHUB_WORKSPACE"):
            missing.append("no github workspace set")
        if missing:
            raise ConfigError("; ".join(missing))

        snyk = mend = None
        if scanner == "snyk":
            snyk = SnykSettings(
                token=env["INPUT_SNYKTOKEN"],
                org=env["INPUT_SNYKORG"],
                no_monitor=bool(env.get("INPUT_NOMONITOR")),
                severity_threshold=env.get("INPUT_SEVERITYTHRESHOLD") or "medium",
                repository=env.get("GITHUB_REPOSITORY") or None,
            )
        else:
            mend = MendSettings(
                api_key=env["INPUT_MENDAPIKEY"],
                user_key=env["INPUT_MENDTOKEN"],
                url=env["INPUT_MENDURL"],
                product_name=env["INPUT_PRODUCTNAME"],
                project_name=env["INPUT_PROJECTNAME"],
                agent_jar=env.get("INPUT_MENDAGENTJAR") or DEFAULT_MEND_AGENT_JAR,
            )

        branch = env.get("INPUT_BRANCH")
        try:
            return cls(
                workspace=Path(env["GITHUB_WORKSPACE"]),
                scanner=scanner,
                snyk=snyk,
                mend=mend,
                skip_projects=split_list(env.get("INPUT_SKIPPROJECTS")),
                skip_platforms=split_list(env.get("INPUT_SKIPPLATFORMS")),
                branch=sanitize_branch(branch) if branch else None,
                debug=bool(env.get("INPUT_SVDEBUG")),
                concurrency=env.get("INPUT_CONCURRENCY") or DEFAULT_CONCURRENCY,
                resolve_concurrency=(
                    env.get("INPUT_RESOLVECONCURRENCY") or DEFAULT_RESOLVE_CONCURRENCY
                ),
                output_dir=Path(env.get("INPUT_OUTPUTDIR") or DEFAULT_OUTPUT_DIR),
                github_output=env.get("GITHUB_OUTPUT") or None,
            )
        except ValidationError as exc:
            raise ConfigError(f"invalid configuration: {exc}") from exc
