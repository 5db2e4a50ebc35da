"""Shared types, errors, Web Mercator tile math, config and logging."""
