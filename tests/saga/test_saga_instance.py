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
"""Tests for SagaInstance — state as the fold of its event log."""

from __future__ import annotations

from typing import Any

import pytest

from sagaflow.kernel.exceptions import ConcurrencyException, ConflictException
from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.instance import SagaInstance
from sagaflow.saga.core.types import Direction, HistoryOutcome, SagaEventType, SagaStatus
from sagaflow.saga.registry.saga_definition import DefinitionRef


# ── Helpers ──────────────────────────────────────────────────


class _Log:
    """Builds a well-sequenced event log for one saga."""

    def __init__(self, saga_id: str = "s-1") -> None:
        self.saga_id = saga_id
        self.events: list[SagaEvent] = []

    def add(self, event_type: SagaEventType, step: str | None = None, **payload: Any) -> _Log:
        self.events.append(
            SagaEvent(
                saga_id=self.saga_id,
                sequence_number=len(self.events) + 1,
                type=event_type,
                step_name=step,
                payload=payload,
            )
        )
        return self


def _started(context: dict[str, Any] | None = None) -> _Log:
    return _Log().add(
        SagaEventType.STARTED,
        definition={"name": "order", "version": 2},
        context=context if context is not None else {"orderId": "O1"},
    )


# ── Tests ────────────────────────────────────────────────────


class TestReplay:
    def test_started_initialises_running_instance(self):
        instance = SagaInstance.replay(_started().events)

        assert instance.id == "s-1"
        assert instance.definition_ref == DefinitionRef("order", 2)
        assert instance.status is SagaStatus.RUNNING
        assert instance.cursor == 0
        assert instance.context == {"orderId": "O1"}
        assert instance.history == []
        assert instance.sequence == 1

    def test_step_success_merges_result_and_advances(self):
        log = _started().add(SagaEventType.STEP_SUCCEEDED, "reserve", result={"reservationId": "R1"}, attempt=1)
        instance = SagaInstance.replay(log.events)

        assert instance.cursor == 1
        assert instance.context == {"orderId": "O1", "reservationId": "R1"}
        assert [e.event_type for e in instance.history] == [SagaEventType.STEP_SUCCEEDED]
        assert instance.history[0].direction is Direction.FORWARD
        assert instance.history[0].outcome is HistoryOutcome.SUCCESS

    def test_retry_updates_attempt_without_history(self):
        log = _started().add(SagaEventType.STEP_RETRIED, "reserve", attempt=2, reason="boom")
        instance = SagaInstance.replay(log.events)

        assert instance.attempt == 2
        assert instance.history == []
        assert instance.status is SagaStatus.RUNNING

    def test_step_failure_starts_compensation_from_previous_step(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={}, attempt=1)
            .add(SagaEventType.STEP_RETRIED, "charge", attempt=2)
            .add(SagaEventType.STEP_FAILED, "charge", reason="declined", attempt=2)
        )
        instance = SagaInstance.replay(log.events)

        assert instance.status is SagaStatus.COMPENSATING
        assert instance.compensation_index == 0
        assert instance.attempt == 1
        assert instance.history[-1].attempt == 2
        assert instance.history[-1].outcome is HistoryOutcome.FAILURE

    def test_compensation_success_moves_pointer_down(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={}, attempt=1)
            .add(SagaEventType.STEP_FAILED, "charge", reason="declined", attempt=1)
            .add(SagaEventType.COMPENSATION_SUCCEEDED, "reserve", attempt=1)
            .add(SagaEventType.COMPENSATED)
        )
        instance = SagaInstance.replay(log.events)

        assert instance.compensation_index == -1
        assert instance.status is SagaStatus.COMPENSATED
        assert instance.is_terminal
        assert len(instance.history) == 4

    def test_draining_cancel_keeps_compensation_pointer_unset(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={}, attempt=1)
            .add(SagaEventType.CANCELLED, draining=True)
        )
        instance = SagaInstance.replay(log.events)

        assert instance.status is SagaStatus.COMPENSATING
        assert instance.cancelled is True
        assert instance.compensation_index is None
        assert instance.awaiting_forward is True
        assert instance.history[-1].outcome is HistoryOutcome.PENDING

    def test_late_success_after_cancel_is_compensated_first(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={}, attempt=1)
            .add(SagaEventType.CANCELLED, draining=True)
            .add(SagaEventType.STEP_SUCCEEDED, "charge", result={"paymentId": "P1"}, attempt=1)
        )
        instance = SagaInstance.replay(log.events)

        assert instance.cursor == 2
        assert instance.compensation_index == 1
        assert instance.awaiting_forward is False

    def test_immediate_cancel_points_at_last_success(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={}, attempt=1)
            .add(SagaEventType.STEP_RETRIED, "charge", attempt=2)
            .add(SagaEventType.CANCELLED, draining=False)
        )
        instance = SagaInstance.replay(log.events)

        assert instance.compensation_index == 0
        assert instance.attempt == 1

    def test_replay_rejects_empty_log(self):
        with pytest.raises(ValueError):
            SagaInstance.replay([])

    def test_replay_requires_started_first(self):
        event = SagaEvent(saga_id="s-1", sequence_number=1, type=SagaEventType.COMPLETED)
        with pytest.raises(ValueError):
            SagaInstance.replay([event])

    def test_replay_is_deterministic(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={"r": 1}, attempt=1)
            .add(SagaEventType.STEP_FAILED, "charge", reason="x", attempt=3)
        )
        first = SagaInstance.replay(log.events)
        second = SagaInstance.replay(log.events)

        assert (first.status, first.cursor, first.context) == (second.status, second.cursor, second.context)
        assert first.history == second.history


class TestApplyGuards:
    def test_out_of_sequence_event_is_rejected(self):
        instance = SagaInstance.replay(_started().events)
        event = SagaEvent(saga_id="s-1", sequence_number=3, type=SagaEventType.COMPLETED)

        with pytest.raises(ConcurrencyException) as exc_info:
            instance.apply(event)
        assert exc_info.value.code == "SAGA_EVENT_OUT_OF_SEQUENCE"
        assert instance.sequence == 1

    def test_event_of_other_saga_is_rejected(self):
        instance = SagaInstance.replay(_started().events)
        event = SagaEvent(saga_id="other", sequence_number=2, type=SagaEventType.COMPLETED)

        with pytest.raises(ConflictException):
            instance.apply(event)

    def test_terminal_instance_accepts_nothing(self):
        instance = SagaInstance.replay(_started().add(SagaEventType.FAILED).events)
        event = SagaEvent(saga_id="s-1", sequence_number=3, type=SagaEventType.STEP_SUCCEEDED, step_name="x")

        with pytest.raises(ConflictException) as exc_info:
            instance.apply(event)
        assert exc_info.value.code == "SAGA_TERMINAL"


class TestSnapshot:
    def test_snapshot_is_independent(self):
        instance = SagaInstance.replay(_started({"nested": {"a": 1}}).events)
        copy = instance.snapshot()
        copy.context["nested"]["a"] = 99
        copy.history.append(None)  # type: ignore[arg-type]

        assert instance.context == {"nested": {"a": 1}}
        assert instance.history == []

    def test_entries_filters_by_type(self):
        log = (
            _started()
            .add(SagaEventType.STEP_SUCCEEDED, "reserve", result={}, attempt=1)
            .add(SagaEventType.STEP_SUCCEEDED, "charge", result={}, attempt=1)
            .add(SagaEventType.COMPLETED)
        )
        instance = SagaInstance.replay(log.events)

        assert [e.step_name for e in instance.entries(SagaEventType.STEP_SUCCEEDED)] == ["reserve", "charge"]


class TestSagaEvent:
    def test_to_dict_from_dict(self):
        event = SagaEvent(
            saga_id="s-1",
            sequence_number=4,
            type=SagaEventType.COMPENSATION_FAILED,
            step_name="reserve",
            payload={"reason": "timeout", "attempt": 3},
        )
        data = event.to_dict()

        assert data["type"] == "compensation_failed"
        assert isinstance(data["timestamp"], str)
        assert SagaEvent.from_dict(data) == event
