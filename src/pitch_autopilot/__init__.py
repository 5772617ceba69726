"""Orchestration core for the pitch content pipeline."""

__version__ = "0.1.0"
