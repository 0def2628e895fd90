# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Observability adapters for saga lifecycle events.

This module provides three ``SagaEventsPort`` implementations:

* :class:`LoggerEventsAdapter` -- writes a log message for every lifecycle
  event emitted by the saga engine.
* :class:`MetricsEventsAdapter` -- maintains Prometheus counters, an
  in-flight gauge and an attempts histogram per saga name.
* :class:`CompositeEventsAdapter` -- fans-out each event to an ordered
  sequence of child adapters, absorbing individual adapter failures so that
  one broken sink never silences the others.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sagaflow.observability.metrics import MetricsRegistry
from sagaflow.saga.core.types import SagaStatus
from sagaflow.saga.ports.outbound import SagaEventsPort

_logger = logging.getLogger("sagaflow.saga.events")


# ---------------------------------------------------------------------------
# LoggerEventsAdapter
# ---------------------------------------------------------------------------


class LoggerEventsAdapter:
    """Logs saga lifecycle events via the standard ``logging`` module.

    All messages are emitted through the ``sagaflow.saga.events`` logger.
    Successful operations log at :data:`logging.INFO`; failures and
    compensation errors log at :data:`logging.WARNING`.
    """

    async def on_start(self, name: str, saga_id: str) -> None:
        _logger.info("Saga '%s' started [saga_id=%s]", name, saga_id)

    async def on_step_success(self, name: str, saga_id: str, step_name: str, attempts: int) -> None:
        _logger.info(
            "Step '%s' succeeded [saga=%s, saga_id=%s, attempts=%d]",
            step_name,
            name,
            saga_id,
            attempts,
        )

    async def on_step_failed(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        reason: str,
        attempts: int,
    ) -> None:
        _logger.warning(
            "Step '%s' failed [saga=%s, saga_id=%s, attempts=%d]: %s",
            step_name,
            name,
            saga_id,
            attempts,
            reason,
        )

    async def on_compensated(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        error: str | None,
    ) -> None:
        if error is None:
            _logger.info("Step '%s' compensated [saga=%s, saga_id=%s]", step_name, name, saga_id)
        else:
            _logger.warning(
                "Compensation of step '%s' failed [saga=%s, saga_id=%s]: %s",
                step_name,
                name,
                saga_id,
                error,
            )

    async def on_completed(self, name: str, saga_id: str, status: SagaStatus) -> None:
        log = _logger.info if status is SagaStatus.COMPLETED else _logger.warning
        log("Saga '%s' finished [saga_id=%s, status=%s]", name, saga_id, status)


# ---------------------------------------------------------------------------
# MetricsEventsAdapter
# ---------------------------------------------------------------------------


class MetricsEventsAdapter:
    """Records saga lifecycle events as Prometheus metrics.

    Metrics (all labelled by ``saga``):

    * ``sagaflow_saga_started_total``
    * ``sagaflow_saga_finished_total`` (plus ``status``)
    * ``sagaflow_saga_steps_total`` (plus ``outcome``: succeeded / failed)
    * ``sagaflow_saga_compensations_total`` (plus ``outcome``)
    * ``sagaflow_saga_active`` -- instances started but not yet terminal
    * ``sagaflow_saga_step_attempts`` -- attempts per finished step
    """

    def __init__(self, metrics: MetricsRegistry) -> None:
        self._started = metrics.counter("sagaflow_saga_started_total", "Saga instances started", ["saga"])
        self._finished = metrics.counter(
            "sagaflow_saga_finished_total", "Saga instances reaching a terminal status", ["saga", "status"]
        )
        self._steps = metrics.counter("sagaflow_saga_steps_total", "Forward step outcomes", ["saga", "outcome"])
        self._compensations = metrics.counter(
            "sagaflow_saga_compensations_total", "Compensation outcomes", ["saga", "outcome"]
        )
        self._active = metrics.gauge("sagaflow_saga_active", "Saga instances in flight", ["saga"])
        self._attempts = metrics.histogram(
            "sagaflow_saga_step_attempts",
            "Attempts needed per forward step",
            ["saga"],
            buckets=(1, 2, 3, 5, 10),
        )

    async def on_start(self, name: str, saga_id: str) -> None:
        self._started.labels(saga=name).inc()
        self._active.labels(saga=name).inc()

    async def on_step_success(self, name: str, saga_id: str, step_name: str, attempts: int) -> None:
        self._steps.labels(saga=name, outcome="succeeded").inc()
        self._attempts.labels(saga=name).observe(attempts)

    async def on_step_failed(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        reason: str,
        attempts: int,
    ) -> None:
        self._steps.labels(saga=name, outcome="failed").inc()
        self._attempts.labels(saga=name).observe(attempts)

    async def on_compensated(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        error: str | None,
    ) -> None:
        outcome = "succeeded" if error is None else "failed"
        self._compensations.labels(saga=name, outcome=outcome).inc()

    async def on_completed(self, name: str, saga_id: str, status: SagaStatus) -> None:
        self._finished.labels(saga=name, status=str(status)).inc()
        self._active.labels(saga=name).dec()


# ---------------------------------------------------------------------------
# CompositeEventsAdapter
# ---------------------------------------------------------------------------


class CompositeEventsAdapter:
    """Broadcasts saga events to multiple ``SagaEventsPort`` adapters.

    If an individual adapter raises an exception, the error is logged and
    the remaining adapters still receive the event.

    Args:
        *adapters: One or more :class:`SagaEventsPort` implementations
            to broadcast events to.
    """

    def __init__(self, *adapters: SagaEventsPort) -> None:
        self._adapters: Sequence[SagaEventsPort] = adapters

    # -- internal broadcast helper ------------------------------------------

    async def _broadcast(self, method: str, *args: object, **kwargs: object) -> None:
        for adapter in self._adapters:
            try:
                await getattr(adapter, method)(*args, **kwargs)
            except Exception:
                _logger.error(
                    "Events adapter %r failed on %s",
                    adapter,
                    method,
                    exc_info=True,
                )

    # -- SagaEventsPort interface -------------------------------------------

    async def on_start(self, name: str, saga_id: str) -> None:
        await self._broadcast("on_start", name, saga_id)

    async def on_step_success(self, name: str, saga_id: str, step_name: str, attempts: int) -> None:
        await self._broadcast("on_step_success", name, saga_id, step_name, attempts=attempts)

    async def on_step_failed(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        reason: str,
        attempts: int,
    ) -> None:
        await self._broadcast("on_step_failed", name, saga_id, step_name, reason=reason, attempts=attempts)

    async def on_compensated(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        error: str | None,
    ) -> None:
        await self._broadcast("on_compensated", name, saga_id, step_name, error=error)

    async def on_completed(self, name: str, saga_id: str, status: SagaStatus) -> None:
        await self._broadcast("on_completed", name, saga_id, status=status)
