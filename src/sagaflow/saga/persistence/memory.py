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
"""In-memory implementation of :class:`SagaStateStorePort`.

This adapter keeps every saga's event log in a plain Python ``dict``,
making it the zero-dependency default when no database is configured.
**All state is lost on process restart.**
"""

from __future__ import annotations

from sagaflow.kernel.exceptions import ConcurrencyException
from sagaflow.saga.core.errors import SagaNotFoundError
from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.instance import SagaInstance


class InMemorySagaStateStore:
    """In-memory :class:`SagaStateStorePort`.  State lost on restart.

    Each entry in the internal ``_logs`` is keyed by saga id and holds the
    ordered event list::

        {
            "3f2c...": [SagaEvent(sequence_number=1, type=STARTED, ...),
                        SagaEvent(sequence_number=2, type=STEP_SUCCEEDED, ...)],
        }
    """

    def __init__(self) -> None:
        self._logs: dict[str, list[SagaEvent]] = {}

    # -- append -------------------------------------------------------------

    async def append(self, saga_id: str, event: SagaEvent) -> None:
        """Append *event*; its sequence number must directly follow the last one."""
        log = self._logs.setdefault(saga_id, [])
        expected = len(log) + 1
        if event.saga_id != saga_id or event.sequence_number != expected:
            if not log:
                del self._logs[saga_id]
            raise ConcurrencyException(
                f"Saga '{saga_id}' expected event #{expected}, got #{event.sequence_number}",
                code="SAGA_EVENT_OUT_OF_SEQUENCE",
                context={"saga_id": saga_id, "expected": expected, "actual": event.sequence_number},
            )
        log.append(event)

    # -- queries ------------------------------------------------------------

    async def load_events(self, saga_id: str) -> list[SagaEvent]:
        return list(self._logs.get(saga_id, []))

    async def load_latest(self, saga_id: str) -> SagaInstance:
        log = self._logs.get(saga_id)
        if not log:
            raise SagaNotFoundError(f"Saga '{saga_id}' not found", code="SAGA_NOT_FOUND")
        return SagaInstance.replay(log)

    async def list_non_terminal(self) -> list[SagaInstance]:
        instances = [SagaInstance.replay(log) for log in self._logs.values() if log]
        return [instance for instance in instances if not instance.is_terminal]
