"""Vanagon dependency source: enumerate targets and extract their gems."""

from depsentinel.engines.vanagon.source import VanagonSource, enumerate_targets

__all__ = ["VanagonSource", "enumerate_targets"]
