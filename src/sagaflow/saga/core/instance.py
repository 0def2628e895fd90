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
"""SagaInstance — one execution of a definition, rebuilt as the fold of its event log."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sagaflow.kernel.exceptions import ConcurrencyException, ConflictException
from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.types import Direction, HistoryOutcome, SagaEventType, SagaStatus
from sagaflow.saga.registry.saga_definition import DefinitionRef


@dataclass(frozen=True)
class HistoryEntry:
    """One line of an instance's human-readable history."""

    event_type: SagaEventType
    step_name: str | None
    direction: Direction | None
    outcome: HistoryOutcome
    attempt: int
    timestamp: datetime


@dataclass
class SagaInstance:
    """Mutable state of one saga execution, owned by the engine.

    The state is never written directly; :meth:`apply` folds one
    :class:`SagaEvent` at a time and :meth:`replay` rebuilds an instance from
    a complete log. Steps ``[0, cursor)`` have succeeded; while compensating,
    ``compensation_index`` points at the step whose compensation is awaited
    and only moves downwards.

    ``compensation_index`` is ``None`` until compensation starts. A cancelled
    instance keeps it ``None`` while the forward command that was in flight
    at cancellation is still awaited.
    """

    id: str
    definition_ref: DefinitionRef
    status: SagaStatus = SagaStatus.RUNNING
    cursor: int = 0
    context: dict[str, Any] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)
    attempt: int = 1
    compensation_index: int | None = None
    cancelled: bool = False
    sequence: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # ── queries ───────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def awaiting_forward(self) -> bool:
        """``True`` while the step at ``cursor`` has a forward command outstanding."""
        if self.status is SagaStatus.RUNNING:
            return True
        return self.status is SagaStatus.COMPENSATING and self.compensation_index is None

    def entries(self, event_type: SagaEventType) -> list[HistoryEntry]:
        """Return history entries of one type, in order."""
        return [entry for entry in self.history if entry.event_type is event_type]

    def snapshot(self) -> SagaInstance:
        """Return a deep copy safe to hand to readers."""
        return copy.deepcopy(self)

    # ── folding ───────────────────────────────────────────────

    @classmethod
    def replay(cls, events: Iterable[SagaEvent]) -> SagaInstance:
        """Rebuild an instance from its complete event log.

        Raises:
            ValueError: If the log is empty or does not begin with ``started``.
        """
        iterator = iter(events)
        first = next(iterator, None)
        if first is None:
            raise ValueError("Cannot replay an empty event log")
        if first.type is not SagaEventType.STARTED:
            raise ValueError(f"Event log of saga '{first.saga_id}' does not begin with 'started'")

        ref = first.payload["definition"]
        instance = cls(id=first.saga_id, definition_ref=DefinitionRef(ref["name"], int(ref["version"])))
        instance.apply(first)
        for event in iterator:
            instance.apply(event)
        return instance

    def apply(self, event: SagaEvent) -> None:
        """Fold *event* into this instance.

        Raises:
            ConcurrencyException: If the event is not the next in sequence.
            ConflictException: If the instance is already terminal or the
                event belongs to another saga.
        """
        if event.saga_id != self.id:
            raise ConflictException(
                f"Event for saga '{event.saga_id}' applied to saga '{self.id}'",
                code="SAGA_EVENT_MISMATCH",
            )
        if event.sequence_number != self.sequence + 1:
            raise ConcurrencyException(
                f"Saga '{self.id}' expected event #{self.sequence + 1}, got #{event.sequence_number}",
                code="SAGA_EVENT_OUT_OF_SEQUENCE",
                context={"saga_id": self.id, "expected": self.sequence + 1, "actual": event.sequence_number},
            )
        if self.is_terminal:
            raise ConflictException(
                f"Saga '{self.id}' is {self.status} and accepts no further events",
                code="SAGA_TERMINAL",
            )

        _APPLIERS[event.type](self, event)
        self.sequence = event.sequence_number
        self.updated_at = event.timestamp

    # ── per-type appliers ─────────────────────────────────────

    def _record(
        self,
        event: SagaEvent,
        direction: Direction | None,
        outcome: HistoryOutcome,
    ) -> None:
        self.history.append(
            HistoryEntry(
                event_type=event.type,
                step_name=event.step_name,
                direction=direction,
                outcome=outcome,
                attempt=int(event.payload.get("attempt", self.attempt)),
                timestamp=event.timestamp,
            )
        )

    def _on_started(self, event: SagaEvent) -> None:
        self.status = SagaStatus.RUNNING
        self.cursor = 0
        self.context = copy.deepcopy(event.payload.get("context") or {})
        self.attempt = 1
        self.created_at = event.timestamp

    def _on_step_succeeded(self, event: SagaEvent) -> None:
        self._record(event, Direction.FORWARD, HistoryOutcome.SUCCESS)
        self.context.update(copy.deepcopy(event.payload.get("result") or {}))
        self.cursor += 1
        self.attempt = 1
        if self.status is SagaStatus.COMPENSATING:
            # late success of the forward that was in flight at cancellation
            self.compensation_index = self.cursor - 1

    def _on_step_retried(self, event: SagaEvent) -> None:
        self.attempt = int(event.payload["attempt"])

    def _on_step_failed(self, event: SagaEvent) -> None:
        self._record(event, Direction.FORWARD, HistoryOutcome.FAILURE)
        self.status = SagaStatus.COMPENSATING
        self.compensation_index = self.cursor - 1
        self.attempt = 1

    def _on_cancelled(self, event: SagaEvent) -> None:
        self._record(event, None, HistoryOutcome.PENDING)
        self.status = SagaStatus.COMPENSATING
        self.cancelled = True
        if not event.payload.get("draining", False):
            self.compensation_index = self.cursor - 1
            self.attempt = 1

    def _on_compensation_retried(self, event: SagaEvent) -> None:
        self.attempt = int(event.payload["attempt"])

    def _on_compensation_succeeded(self, event: SagaEvent) -> None:
        self._record(event, Direction.COMPENSATE, HistoryOutcome.SUCCESS)
        if self.compensation_index is not None:
            self.compensation_index -= 1
        self.attempt = 1

    def _on_compensation_failed(self, event: SagaEvent) -> None:
        self._record(event, Direction.COMPENSATE, HistoryOutcome.FAILURE)

    def _on_completed(self, event: SagaEvent) -> None:
        self._record(event, None, HistoryOutcome.SUCCESS)
        self.status = SagaStatus.COMPLETED

    def _on_compensated(self, event: SagaEvent) -> None:
        self._record(event, None, HistoryOutcome.SUCCESS)
        self.status = SagaStatus.COMPENSATED

    def _on_failed(self, event: SagaEvent) -> None:
        self._record(event, None, HistoryOutcome.FAILURE)
        self.status = SagaStatus.FAILED


_APPLIERS: dict[SagaEventType, Callable[[SagaInstance, SagaEvent], None]] = {
    SagaEventType.STARTED: SagaInstance._on_started,
    SagaEventType.STEP_SUCCEEDED: SagaInstance._on_step_succeeded,
    SagaEventType.STEP_RETRIED: SagaInstance._on_step_retried,
    SagaEventType.STEP_FAILED: SagaInstance._on_step_failed,
    SagaEventType.CANCELLED: SagaInstance._on_cancelled,
    SagaEventType.COMPENSATION_RETRIED: SagaInstance._on_compensation_retried,
    SagaEventType.COMPENSATION_SUCCEEDED: SagaInstance._on_compensation_succeeded,
    SagaEventType.COMPENSATION_FAILED: SagaInstance._on_compensation_failed,
    SagaEventType.COMPLETED: SagaInstance._on_completed,
    SagaEventType.COMPENSATED: SagaInstance._on_compensated,
    SagaEventType.FAILED: SagaInstance._on_failed,
}
