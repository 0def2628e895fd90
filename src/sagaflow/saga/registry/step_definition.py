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
"""Step definition — immutable metadata for a single saga step."""

from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from sagaflow.saga.core.templates import render_template
from sagaflow.saga.core.types import Direction


@dataclass(frozen=True)
class RetryPolicy:
    """Retry, backoff and per-attempt timeout settings for one command.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff_ms: Delay before the second attempt.
        backoff_multiplier: Growth factor applied to the delay per attempt.
        max_backoff_ms: Upper bound for any single delay.
        jitter_factor: Fraction of the delay used as a symmetric jitter range.
        timeout_ms: Per-attempt reply timeout (0 = wait indefinitely).
    """

    max_attempts: int = 3
    backoff_ms: int = 100
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 30_000
    jitter_factor: float = 0.0
    timeout_ms: int = 0

    def allows_retry(self, attempt: int) -> bool:
        """Return ``True`` if another attempt may follow attempt number *attempt*."""
        return attempt < self.max_attempts

    def backoff_seconds(self, attempt: int) -> float:
        """Delay in seconds to wait after a failed attempt number *attempt*."""
        delay_ms = self.backoff_ms * (self.backoff_multiplier ** max(attempt - 1, 0))
        delay_ms = min(delay_ms, float(self.max_backoff_ms))
        if self.jitter_factor > 0:
            delay_ms *= 1 + random.uniform(-self.jitter_factor, self.jitter_factor)
        return max(delay_ms, 0.0) / 1000.0

    @property
    def timeout_seconds(self) -> float | None:
        return self.timeout_ms / 1000.0 if self.timeout_ms > 0 else None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, base: RetryPolicy | None = None) -> RetryPolicy:
        """Build a policy from config, filling unspecified fields from *base*."""
        base = base or cls()
        values = {f.name: getattr(base, f.name) for f in fields(cls)}
        for key, value in (data or {}).items():
            if key in values:
                values[key] = type(values[key])(value)
        return cls(**values)


@dataclass(frozen=True)
class CommandSpec:
    """Template for the command sent to a participant.

    Attributes:
        participant: Logical participant name; selects the command topic.
        action: Operation the participant should perform.
        payload: Payload template rendered against the saga context.
    """

    participant: str
    action: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def render(self, context: Mapping[str, Any]) -> dict[str, Any]:
        return render_template(dict(self.payload), context)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CommandSpec:
        return cls(
            participant=str(data["participant"]),
            action=str(data["action"]),
            payload=dict(data.get("payload") or {}),
        )


@dataclass(frozen=True)
class StepDefinition:
    """Immutable descriptor for one saga step.

    Attributes:
        name: Unique step name within the saga definition.
        forward: Command performing the step's action.
        compensate: Command undoing one successful ``forward``; only the
            final step of a definition may leave it ``None``.
        retry_policy: Policy for the forward command.
        compensation_retry_policy: Override for the compensation command,
            falling back to ``retry_policy``.
    """

    name: str
    forward: CommandSpec
    compensate: CommandSpec | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    compensation_retry_policy: RetryPolicy | None = None

    def command_for(self, direction: Direction) -> CommandSpec | None:
        return self.forward if direction is Direction.FORWARD else self.compensate

    def policy_for(self, direction: Direction) -> RetryPolicy:
        if direction is Direction.COMPENSATE and self.compensation_retry_policy is not None:
            return self.compensation_retry_policy
        return self.retry_policy

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_retry: RetryPolicy | None = None) -> StepDefinition:
        """Build a step from its static configuration form.

        Example::

            {"name": "charge_payment",
             "forward": {"participant": "payment", "action": "charge"},
             "compensate": {"participant": "payment", "action": "refund"},
             "retry": {"max_attempts": 3, "timeout_ms": 5000}}
        """
        retry_policy = RetryPolicy.from_dict(data.get("retry"), default_retry)
        compensation_retry = data.get("compensation_retry")
        compensate = data.get("compensate")
        return cls(
            name=str(data["name"]),
            forward=CommandSpec.from_dict(data["forward"]),
            compensate=CommandSpec.from_dict(compensate) if compensate else None,
            retry_policy=retry_policy,
            compensation_retry_policy=(
                RetryPolicy.from_dict(compensation_retry, retry_policy) if compensation_retry else None
            ),
        )
