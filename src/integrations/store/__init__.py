"""Storage backends for integration records, schedule and reflections."""

from src.integrations.store.base import IntegrationStore
from src.integrations.store.memory import InMemoryStore
from src.integrations.store.postgres import PostgresStore

__all__ = ["IntegrationStore", "InMemoryStore", "PostgresStore"]
