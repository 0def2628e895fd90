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
"""SagaEvent — the append-only record persisted for every saga transition."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sagaflow.saga.core.types import SagaEventType


@dataclass(frozen=True)
class SagaEvent:
    """One entry of a saga instance's event log.

    Fields
    ------
    saga_id:
        Instance the event belongs to.
    sequence_number:
        1-based position in the instance's log; strictly increasing by one.
    type:
        What happened.
    step_name:
        Step the event refers to, or ``None`` for lifecycle markers.
    payload:
        Type-specific JSON-serialisable data (result payload, reason,
        attempt, initial context, ...).
    timestamp:
        UTC time the engine issued the event.
    """

    saga_id: str
    sequence_number: int
    type: SagaEventType
    step_name: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # ── serialisation ─────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dict."""
        return {
            "saga_id": self.saga_id,
            "sequence_number": self.sequence_number,
            "type": self.type.value,
            "step_name": self.step_name,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SagaEvent:
        """Reconstruct from a dict produced by :meth:`to_dict`."""
        return cls(
            saga_id=data["saga_id"],
            sequence_number=int(data["sequence_number"]),
            type=SagaEventType(data["type"]),
            step_name=data.get("step_name"),
            payload=dict(data.get("payload") or {}),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
