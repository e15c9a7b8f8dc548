"""
Web API module - FastAPI service
"""

from metalpulse.web.app import create_app
from metalpulse.web.models import AggregateResponse, APIResponse, ErrorResponse

__all__ = ["AggregateResponse", "APIResponse", "ErrorResponse", "create_app"]
