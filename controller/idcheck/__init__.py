"""Liveness check controller for campus digital ID cards."""

__version__ = "0.1.0"
