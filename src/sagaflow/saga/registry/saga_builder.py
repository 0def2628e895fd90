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
"""Saga builder — fluent DSL for programmatic saga definitions.

Example::

    saga_def = (
        SagaBuilder("order", version=2)
        .step("reserve_inventory")
            .forward("inventory", "reserve", {"orderId": "${orderId}"})
            .compensate("inventory", "release", {"orderId": "${orderId}"})
            .retry(3).backoff_ms(100).timeout_ms(5000).add()
        .step("send_confirmation")
            .forward("notification", "send", {"orderId": "${orderId}"}).add()
        .build()
    )
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from sagaflow.saga.core.errors import SagaDefinitionError
from sagaflow.saga.registry.saga_definition import SagaDefinition
from sagaflow.saga.registry.step_definition import CommandSpec, RetryPolicy, StepDefinition


class StepBuilder:
    """Builder for individual step configuration.

    Accumulates step metadata via a fluent interface.  Call :meth:`add` to
    finalise the step and return the parent :class:`SagaBuilder` for
    continued chaining.
    """

    def __init__(self, name: str, parent: SagaBuilder) -> None:
        self._name = name
        self._parent = parent
        self._forward: CommandSpec | None = None
        self._compensate: CommandSpec | None = None
        self._policy: RetryPolicy = parent._default_retry  # noqa: SLF001
        self._compensation_policy: RetryPolicy | None = None

    # ── Fluent setters ────────────────────────────────────────

    def forward(self, participant: str, action: str, payload: Mapping[str, Any] | None = None) -> StepBuilder:
        """Set the forward command for this step."""
        self._forward = CommandSpec(participant, action, dict(payload or {}))
        return self

    def compensate(self, participant: str, action: str, payload: Mapping[str, Any] | None = None) -> StepBuilder:
        """Set the compensation command for this step."""
        self._compensate = CommandSpec(participant, action, dict(payload or {}))
        return self

    def retry(self, max_attempts: int) -> StepBuilder:
        """Set the maximum number of attempts, including the first."""
        self._policy = replace(self._policy, max_attempts=max_attempts)
        return self

    def backoff_ms(self, ms: int, multiplier: float | None = None) -> StepBuilder:
        """Set the base backoff in milliseconds and, optionally, its growth factor."""
        self._policy = replace(
            self._policy,
            backoff_ms=ms,
            backoff_multiplier=self._policy.backoff_multiplier if multiplier is None else multiplier,
        )
        return self

    def timeout_ms(self, ms: int) -> StepBuilder:
        """Set the per-attempt reply timeout in milliseconds."""
        self._policy = replace(self._policy, timeout_ms=ms)
        return self

    def jitter(self, factor: float = 0.5) -> StepBuilder:
        """Apply +/- *factor* jitter to the backoff."""
        self._policy = replace(self._policy, jitter_factor=factor)
        return self

    def compensation_policy(self, policy: RetryPolicy) -> StepBuilder:
        """Use a dedicated retry policy for the compensation command."""
        self._compensation_policy = policy
        return self

    # ── Finalisation ──────────────────────────────────────────

    def add(self) -> SagaBuilder:
        """Finalise this step and return the parent builder for chaining."""
        self._parent._add_step(self._build_definition())  # noqa: SLF001
        return self._parent

    def _build_definition(self) -> StepDefinition:
        if self._forward is None:
            msg = f"Step '{self._name}' in saga '{self._parent.name}' must have a forward command"
            raise SagaDefinitionError(msg)
        return StepDefinition(
            name=self._name,
            forward=self._forward,
            compensate=self._compensate,
            retry_policy=self._policy,
            compensation_retry_policy=self._compensation_policy,
        )


class SagaBuilder:
    """Fluent builder for programmatic saga definitions.

    Use :meth:`step` to begin configuring a step, chain configuration
    methods, call ``.add()`` to finalise, and repeat.  Call :meth:`build`
    to validate and produce the :class:`SagaDefinition`.
    """

    def __init__(self, name: str, version: int = 1, default_retry: RetryPolicy | None = None) -> None:
        self.name = name
        self._version = version
        self._default_retry = default_retry or RetryPolicy()
        self._steps: list[StepDefinition] = []

    def step(self, name: str) -> StepBuilder:
        """Begin configuring a new step named *name*."""
        return StepBuilder(name, self)

    def build(self) -> SagaDefinition:
        """Validate and produce the final :class:`SagaDefinition`.

        Raises:
            SagaDefinitionError: If the saga has no steps or a non-final
                step lacks a compensation.
        """
        return SagaDefinition(name=self.name, version=self._version, steps=tuple(self._steps))

    def _add_step(self, step: StepDefinition) -> None:
        if any(s.name == step.name for s in self._steps):
            msg = f"Step '{step.name}' already exists in saga '{self.name}'"
            raise SagaDefinitionError(msg)
        self._steps.append(step)
