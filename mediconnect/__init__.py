"""MediConnect provider matching: CMS data ingestion, symptom-based specialty analysis and ranked provider search."""

__version__ = "1.0.0"
