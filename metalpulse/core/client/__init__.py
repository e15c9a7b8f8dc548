"""Upstream feed client."""

from metalpulse.core.client.fetch import DEFAULT_TIMEOUT, FetchClient

__all__ = ["DEFAULT_TIMEOUT", "FetchClient"]
