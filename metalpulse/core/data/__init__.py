"""Data layer: payload parsing, schema and storage."""
