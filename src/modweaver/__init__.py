"""Mod dependency resolution, deployment and update reconciliation."""

__version__ = "0.1.0"
