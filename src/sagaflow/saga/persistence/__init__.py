"""Saga state store adapters."""

from sagaflow.saga.persistence.memory import InMemorySagaStateStore
from sagaflow.saga.persistence.sqlalchemy import SqlAlchemySagaStateStore

__all__ = ["InMemorySagaStateStore", "SqlAlchemySagaStateStore"]
