"""Cosmos: an offline-first package manager core."""

__version__ = "0.1.0"
