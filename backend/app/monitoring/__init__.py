"""Metric registry and metric definitions for the rooms service."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
