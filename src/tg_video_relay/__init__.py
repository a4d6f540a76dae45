"""Relay videos posted to a channel into object storage and announce them via webhook."""

__version__ = "0.1.0"
