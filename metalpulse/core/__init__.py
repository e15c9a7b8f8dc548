"""metalpulse core modules."""
