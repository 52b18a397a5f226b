"""Audit answer model and report generation/versioning core."""

__version__ = "0.1.0"
