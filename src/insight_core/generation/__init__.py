"""Prompt assembly, input safety, output quality, and cache freshness."""
