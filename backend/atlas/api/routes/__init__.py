"""Route exports for the API layer.

Re-exports the ingestion and catalog routers so callers can include all endpoints with a single import.
"""

from .catalog import router as catalog_router
from .ingest import router as ingest_router

__all__ = ["catalog_router", "ingest_router"]
