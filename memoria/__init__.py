"""Memoria: personal-content ingestion pipeline and hybrid retrieval engine."""

__version__ = "0.1.0"
