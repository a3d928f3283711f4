"""Utility modules for RankHarvest."""

from .atomic import atomic_json_dump, atomic_write_json, read_json

__all__ = ["atomic_json_dump", "atomic_write_json", "read_json"]
