"""Markup to record extraction."""

from .ranking_extractor import RankingExtractor, class_from_style, parse_int

__all__ = ["RankingExtractor", "class_from_style", "parse_int"]
