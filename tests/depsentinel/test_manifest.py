"""Tests for the manifest builder (resolver subprocess patched)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from depsentinel.core.process import ProcessResult
from depsentinel.engines.pipeline.manifest import (
    ManifestBuilder,
    constraint_literal,
    render_gemfile,
)
from depsentinel.engines.pipeline.models import Dependency, Target
from depsentinel.exceptions import BuildError

_RUN = "depsentinel.engines.pipeline.manifest.run_process"


# ── render_gemfile ───────────────────────────────────────────────────────


class TestRenderGemfile:
    def test_empty_is_header_only(self):
        text = render_gemfile([])
        assert text == "source ENV['GEM_SOURCE'] || \"https://rubygems.org\"\n"

    def test_one_line_per_dep_in_order(self):
        text = render_gemfile(
            [
                Dependency("zlib", "~> 1.0"),
                Dependency("abc", "= 2.1.3"),
            ]
        )
        lines = text.splitlines()
        assert lines[1] == 'gem "zlib", "~> 1.0"'
        assert lines[2] == 'gem "abc", "= 2.1.3"'
        assert len(lines) == 3

    def test_no_constraint(self):
        text = render_gemfile([Dependency("rake")])
        assert text.splitlines()[1] == 'gem "rake"'

    def test_quoted_constraints_pass_through(self):
        text = render_gemfile([Dependency("json", "'>= 1.0', '< 2'")])
        assert text.splitlines()[1] == "gem \"json\", '>= 1.0', '< 2'"

    def test_blank_constraint_treated_as_none(self):
        text = render_gemfile([Dependency("rake", "  ")])
        assert text.splitlines()[1] == 'gem "rake"'


class TestConstraintLiteral:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1.2.3", '"1.2.3"'),
            ("~> 1.2", '"~> 1.2"'),
            ('"2.0"', '"2.0"'),
            (" '>= 1', '< 3' ", "'>= 1', '< 3'"),
        ],
    )
    def test_quoting(self, raw, expected):
        assert constraint_literal(raw) == expected


# ── ManifestBuilder.build ────────────────────────────────────────────────


class TestManifestBuilder:
    @pytest.mark.asyncio
    async def test_empty_dependency_set_builds(self, tmp_path, linux, bundle_lock):
        builder = ManifestBuilder(tmp_path / "gen_lockfile")
        with patch(_RUN, new=AsyncMock(side_effect=bundle_lock)):
            manifest = await builder.build(linux, [])

        assert manifest.dependency_count == 0
        assert manifest.target == linux
        assert manifest.path == tmp_path / "gen_lockfile" / "agent_linux"
        assert manifest.lockfile_path.is_file()
        gemfile = manifest.declaration_path.read_text()
        assert "gem " not in gemfile

    @pytest.mark.asyncio
    async def test_writes_gemfile_and_runs_resolver_in_dir(self, tmp_path, linux, bundle_lock):
        builder = ManifestBuilder(tmp_path / "out")
        mock = AsyncMock(side_effect=bundle_lock)
        with patch(_RUN, new=mock):
            manifest = await builder.build(linux, [Dependency("foo", "1.0")])

        assert 'gem "foo", "1.0"' in manifest.declaration_path.read_text()
        mock.assert_awaited_once()
        args, kwargs = mock.call_args
        assert args[0] == ["bundle", "lock"]
        assert kwargs["cwd"] == manifest.path
        assert manifest.dependency_count == 1

    @pytest.mark.asyncio
    async def test_resolver_failure_is_build_error(self, tmp_path, linux):
        builder = ManifestBuilder(tmp_path)
        failed = ProcessResult(returncode=7, stdout="", stderr="Could not find gem")
        with patch(_RUN, new=AsyncMock(return_value=failed)):
            with pytest.raises(BuildError, match="exit 7") as exc_info:
                await builder.build(linux, [Dependency("nope", "9.9")])
        assert exc_info.value.target == linux

    @pytest.mark.asyncio
    async def test_missing_resolver_is_build_error(self, tmp_path, linux):
        builder = ManifestBuilder(tmp_path)
        with patch(_RUN, new=AsyncMock(side_effect=FileNotFoundError("bundle"))):
            with pytest.raises(BuildError, match="resolver not found"):
                await builder.build(linux, [])

    @pytest.mark.asyncio
    async def test_unrunnable_resolver_is_build_error(self, tmp_path, linux):
        builder = ManifestBuilder(tmp_path)
        denied = PermissionError(13, "Permission denied", "bundle")
        with patch(_RUN, new=AsyncMock(side_effect=denied)):
            with pytest.raises(BuildError, match="could not run resolver") as exc_info:
                await builder.build(linux, [])
        assert exc_info.value.target == linux

    @pytest.mark.asyncio
    async def test_missing_lockfile_is_build_error(self, tmp_path, linux):
        builder = ManifestBuilder(tmp_path)
        ok = ProcessResult(returncode=0, stdout="", stderr="")
        with patch(_RUN, new=AsyncMock(return_value=ok)):
            with pytest.raises(BuildError, match="Gemfile.lock"):
                await builder.build(linux, [])

    @pytest.mark.asyncio
    async def test_concurrent_builds_for_different_targets(self, tmp_path, bundle_lock):
        root = tmp_path / "nested" / "gen_lockfile"
        builder = ManifestBuilder(root)
        targets = [Target("agent", f"plat-{i}") for i in range(25)]
        with patch(_RUN, new=AsyncMock(side_effect=bundle_lock)):
            manifests = await asyncio.gather(*(builder.build(t, []) for t in targets))

        assert {m.target for m in manifests} == set(targets)
        assert len({m.path for m in manifests}) == 25
        assert root.is_dir()

    @pytest.mark.asyncio
    async def test_ensure_root_is_idempotent(self, tmp_path):
        builder = ManifestBuilder(tmp_path / "root")
        await builder.ensure_root()
        await builder.ensure_root()
        assert (tmp_path / "root").is_dir()
        assert not builder._root_lock.locked()

    @pytest.mark.asyncio
    async def test_rebuild_same_target_overwrites(self, tmp_path, linux, bundle_lock):
        builder = ManifestBuilder(tmp_path)
        with patch(_RUN, new=AsyncMock(side_effect=bundle_lock)):
            await builder.build(linux, [Dependency("a", "1")])
            manifest = await builder.build(linux, [Dependency("b", "2")])
        text = manifest.declaration_path.read_text()
        assert 'gem "b", "2"' in text
        assert 'gem "a"' not in text
