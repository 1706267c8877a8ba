"""Shared helpers: market statistics and quota tracking."""
