"""Poker tournament clock service."""

__version__ = "0.1.0"
