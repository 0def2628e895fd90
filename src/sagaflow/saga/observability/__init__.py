"""Saga lifecycle event adapters."""

from sagaflow.saga.observability.events import (
    CompositeEventsAdapter,
    LoggerEventsAdapter,
    MetricsEventsAdapter,
)

__all__ = ["CompositeEventsAdapter", "LoggerEventsAdapter", "MetricsEventsAdapter"]
