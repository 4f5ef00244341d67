"""Configurable load generator for publish/subscribe brokers."""

__version__ = "1.0.0"
