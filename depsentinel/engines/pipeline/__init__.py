"""Scan pipeline engine: build manifests, scan them, merge the findings."""
