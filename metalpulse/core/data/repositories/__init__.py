"""Repository layer for price data."""

from metalpulse.core.data.repositories.price_store import PriceStore, StoredQuote, UpsertOutcome

__all__ = ["PriceStore", "StoredQuote", "UpsertOutcome"]
