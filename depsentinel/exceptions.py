"""Custom exceptions for depsentinel."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depsentinel.engines.pipeline.models import Target


class DepSentinelError(Exception):
    """Base exception for all depsentinel errors."""


class ConfigError(DepSentinelError):
    """Raised when required CI settings are missing or invalid."""


class PipelineError(DepSentinelError):
    """Raised when a collaborator failure makes the whole run meaningless."""


class BuildError(DepSentinelError):
    """Raised when a target's manifest cannot be built or resolved."""

    def __init__(self, target: Target, message: str):
        self.target = target
        super().__init__(f"{target}: {message}")


class ScanError(DepSentinelError):
    """Raised when the scanner fails with an undocumented exit code."""

    def __init__(self, target: Target, message: str, returncode: int | None = None):
        self.target = target
        self.returncode = returncode
        super().__init__(f"{target}: {message}")
