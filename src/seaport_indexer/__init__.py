"""Seaport marketplace event indexer for Flow EVM."""

__version__ = "0.1.0"
