"""Competitor-to-catalog product matching engine."""

__version__ = "1.0.0"
