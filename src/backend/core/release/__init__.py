"""Site archive ingestion and atomic release pipeline."""
