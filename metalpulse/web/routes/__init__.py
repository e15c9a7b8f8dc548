"""
API routes
"""

from metalpulse.web.routes.aggregate_routes import router as aggregate_router
from metalpulse.web.routes.health_routes import router as health_router
from metalpulse.web.routes.ingest_routes import router as ingest_router
from metalpulse.web.routes.quote_routes import router as quote_router

__all__ = ["aggregate_router", "health_router", "ingest_router", "quote_router"]
