"""Resilient generation core for AI trend insights."""
