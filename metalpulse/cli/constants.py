"""Exit codes shared by CLI commands."""

VALIDATION_EXIT_CODE = 2
STORE_EXIT_CODE = 3
INGEST_EXIT_CODE = 4

__all__ = ["INGEST_EXIT_CODE", "STORE_EXIT_CODE", "VALIDATION_EXIT_CODE"]
