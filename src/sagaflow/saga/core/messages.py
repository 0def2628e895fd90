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
"""Wire messages exchanged between the engine and participants.

Both messages are validated with Pydantic when they cross the channel;
a payload that does not parse is a protocol error for the receiver.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from sagaflow.saga.core.types import Direction


def idempotency_key(saga_id: str, direction: Direction, step_name: str) -> str:
    """Deterministic key shared by every attempt of one logical command."""
    return f"{saga_id}:{direction.value}:{step_name}"


class CommandMessage(BaseModel):
    """Engine → participant: perform (or undo) one step."""

    model_config = ConfigDict(frozen=True)

    saga_id: str
    step_name: str
    direction: Direction
    idempotency_key: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = Field(default=1, ge=1)
    participant: str
    action: str
    reply_topic: str

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> CommandMessage:
        return cls.model_validate_json(raw)


class ResultMessage(BaseModel):
    """Participant → engine: outcome of one command attempt.

    ``retryable=False`` marks an explicit business rejection that must not
    be retried.
    """

    model_config = ConfigDict(frozen=True)

    saga_id: str
    step_name: str
    direction: Direction
    outcome: Literal["success", "failure"]
    result_payload: dict[str, Any] | None = None
    reason: str | None = None
    retryable: bool = True
    attempt: int | None = Field(default=None, ge=1)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> ResultMessage:
        return cls.model_validate_json(raw)

    @classmethod
    def reply_to(cls, command: CommandMessage, **fields: Any) -> ResultMessage:
        """Build a result addressed to the saga and step of *command*."""
        return cls(
            saga_id=command.saga_id,
            step_name=command.step_name,
            direction=command.direction,
            attempt=command.attempt,
            **fields,
        )
