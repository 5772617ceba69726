"""Bounded agentic tool loop against a content-generation service."""
