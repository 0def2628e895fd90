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
"""Outbound port protocols for the saga engine.

These ``@runtime_checkable`` ``Protocol`` definitions form the hexagonal
architecture boundary between the engine and its infrastructure adapters
(state store, participant gateways, observability sinks).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.instance import SagaInstance
from sagaflow.saga.core.messages import CommandMessage
from sagaflow.saga.core.outcome import Outcome
from sagaflow.saga.core.types import SagaStatus


@runtime_checkable
class SagaStateStorePort(Protocol):
    """Port for the append-only saga event log.

    The current state of an instance is always the fold of its events;
    nothing is overwritten in place. Adapters never mutate state on their
    own; they persist what the engine appends.
    """

    async def append(self, saga_id: str, event: SagaEvent) -> None:
        """Append *event* to the log of *saga_id*.

        Raises:
            ConcurrencyException: If ``event.sequence_number`` is not exactly
                one past the last stored event of *saga_id*.
        """
        ...

    async def load_latest(self, saga_id: str) -> SagaInstance:
        """Rebuild the current state of *saga_id* from its log.

        Raises:
            SagaNotFoundError: If no event exists for *saga_id*.
        """
        ...

    async def load_events(self, saga_id: str) -> list[SagaEvent]:
        """Return the full log of *saga_id* in sequence order (empty if unknown)."""
        ...

    async def list_non_terminal(self) -> list[SagaInstance]:
        """Return every instance that is still ``RUNNING`` or ``COMPENSATING``."""
        ...


@runtime_checkable
class ParticipantGatewayPort(Protocol):
    """Port for invoking one remote participant.

    Gateways are stateless: they forward the command, including its
    idempotency key, and translate the participant's answer into an
    :data:`Outcome`.
    """

    async def invoke(self, command: CommandMessage) -> Outcome:
        """Send *command* and return ``Success``, ``Failure`` or ``Timeout``."""
        ...


@runtime_checkable
class SagaEventsPort(Protocol):
    """Port for emitting lifecycle notifications from the saga engine.

    Adapters integrate with observability back-ends (metrics, logs, audit)
    without coupling the engine to any vendor. Notifications are emitted
    after the corresponding event has been persisted.
    """

    async def on_start(self, name: str, saga_id: str) -> None:
        """Fired when an instance of saga *name* has been created."""
        ...

    async def on_step_success(self, name: str, saga_id: str, step_name: str, attempts: int) -> None:
        """Fired when a forward step succeeds."""
        ...

    async def on_step_failed(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        reason: str,
        attempts: int,
    ) -> None:
        """Fired when a forward step fails permanently."""
        ...

    async def on_compensated(
        self,
        name: str,
        saga_id: str,
        step_name: str,
        error: str | None,
    ) -> None:
        """Fired after a compensation finishes; *error* is ``None`` on success."""
        ...

    async def on_completed(self, name: str, saga_id: str, status: SagaStatus) -> None:
        """Fired when the instance reaches a terminal status."""
        ...
