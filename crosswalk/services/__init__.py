"""Matching, inference and batch services."""
