"""Criteria detection and fit scoring."""

from .scoring import ScoringEngine

__all__ = ["ScoringEngine"]
