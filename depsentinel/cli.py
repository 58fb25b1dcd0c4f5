"""CLI entry point: depsentinel.

Subcommands:
    depsentinel scan        # scan every vanagon target and publish the findings
    depsentinel targets     # list the targets a scan would cover

Settings come from the GitHub Actions environment (see ``core/config.py``).
"""

from __future__ import annotations

import asyncio
import sys

import click
import structlog

from depsentinel.core.config import ScanConfig
from depsentinel.core.logging import setup_logging
from depsentinel.engines.pipeline.manifest import ManifestBuilder
from depsentinel.engines.pipeline.models import AggregateReport
from depsentinel.engines.pipeline.runner import PipelineRunner
from depsentinel.engines.pipeline.scanners import create_scanner
from depsentinel.engines.vanagon.source import VanagonSource, enumerate_targets
from depsentinel.exceptions import DepSentinelError
from depsentinel.report import emit_report, exit_code

log = structlog.get_logger("depsentinel.cli")


def _load_config(verbose: bool) -> ScanConfig:
    try:
        config = ScanConfig.from_env()
    except DepSentinelError as e:
        click.echo(f"Error: couldn't set up the environment: {e}", err=True)
        sys.exit(1)
    setup_logging(debug=config.debug or verbose)
    if config.debug:
        log.debug("cli.debug_enabled")
    return config


async def _scan(config: ScanConfig, concurrency: int) -> tuple[AggregateReport, PipelineRunner]:
    scanner = create_scanner(config)
    await scanner.prepare()

    targets = enumerate_targets(config.workspace, config.skip_projects, config.skip_platforms)
    source = VanagonSource(config.workspace)
    runner = PipelineRunner(
        ManifestBuilder(config.output_root),
        scanner,
        resolve_limit=config.resolve_concurrency,
    )
    report = await runner.run(targets, source.resolve_dependencies, concurrency)
    return report, runner


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """depsentinel: scan vanagon targets for vulnerable gems."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@main.command("scan")
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum scans running at once (default: INPUT_CONCURRENCY or 20)",
)
@click.pass_context
def scan(ctx: click.Context, concurrency: int | None) -> None:
    """Build a Gemfile.lock per target, scan them, and publish the findings."""
    verbose = ctx.obj["verbose"]
    config = _load_config(verbose)

    try:
        report, runner = asyncio.run(_scan(config, concurrency or config.concurrency))
    except DepSentinelError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        emit_report(report, config.github_output)
    except DepSentinelError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if verbose:
        click.echo("", err=True)
        for line in runner.progress.summary_lines():
            click.echo(line, err=True)

    for target in report.failed_targets:
        click.echo(
            f"Got a failure on {target.project}-{target.platform}. "
            "See the mend console for details",
            err=True,
        )

    sys.exit(exit_code(report, runner.scanner.mode))


@main.command("targets")
@click.pass_context
def targets(ctx: click.Context) -> None:
    """List the project/platform targets a scan would cover."""
    config = _load_config(ctx.obj["verbose"])
    try:
        found = enumerate_targets(config.workspace, config.skip_projects, config.skip_platforms)
    except DepSentinelError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if not found:
        click.echo("No targets found.")
        return
    for target in found:
        click.echo(f"  {target.project}  {target.platform}")


if __name__ == "__main__":
    main()
