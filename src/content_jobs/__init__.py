"""Durable background jobs and the multi-agent article pipeline."""

__version__ = "0.1.0"
