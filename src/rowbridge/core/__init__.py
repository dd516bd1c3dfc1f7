"""Shared infrastructure: outcomes, configuration, logging."""
