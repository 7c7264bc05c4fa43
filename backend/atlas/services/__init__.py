"""Service layer exports.

Expose the provider, ingestion and search implementations for easy importing.
"""

from .openai_client import OpenAIService
from .ingestion import IngestionRunner, IngestionService
from .catalog import SearchService

__all__ = ["OpenAIService", "IngestionService", "IngestionRunner", "SearchService"]
