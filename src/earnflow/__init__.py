"""Earnflow: daily earnings ingestion-and-publish pipeline."""

__version__ = "0.1.0"
