"""Asynchronous content-moderation pipeline for uploaded videos."""

__version__ = "1.0.0"
