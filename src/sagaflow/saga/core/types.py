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
"""Shared enumerations for the saga engine."""

from __future__ import annotations

from enum import StrEnum


class SagaStatus(StrEnum):
    """Lifecycle status of a saga instance."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPENSATING = "COMPENSATING"
    COMPENSATED = "COMPENSATED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SagaStatus.COMPLETED, SagaStatus.COMPENSATED, SagaStatus.FAILED)


class Direction(StrEnum):
    """Which command of a step is being executed."""

    FORWARD = "forward"
    COMPENSATE = "compensate"


class ResultOutcome(StrEnum):
    """Outcome reported for one attempt of a command."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class HistoryOutcome(StrEnum):
    """Outcome recorded in a history entry."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class SagaEventType(StrEnum):
    """Type tag of a persisted saga event."""

    STARTED = "started"
    STEP_SUCCEEDED = "step_succeeded"
    STEP_RETRIED = "step_retried"
    STEP_FAILED = "step_failed"
    COMPENSATION_RETRIED = "compensation_retried"
    COMPENSATION_SUCCEEDED = "compensation_succeeded"
    COMPENSATION_FAILED = "compensation_failed"
    COMPLETED = "completed"
    COMPENSATED = "compensated"
    FAILED = "failed"
    CANCELLED = "cancelled"
