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
"""Saga definition — ordered, immutable sequence of steps identified by name + version."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sagaflow.saga.core.errors import SagaDefinitionError
from sagaflow.saga.registry.step_definition import RetryPolicy, StepDefinition


@dataclass(frozen=True, order=True)
class DefinitionRef:
    """Name + version identifying one registered saga definition."""

    name: str
    version: int = 1

    def __str__(self) -> str:
        return f"{self.name}@v{self.version}"


@dataclass(frozen=True)
class SagaDefinition:
    """Immutable definition of a saga: its identity and its ordered steps.

    Validated on construction:

    * at least one step;
    * step names are unique;
    * every step but the last has a compensation;
    * every retry policy allows at least one attempt.

    Raises:
        SagaDefinitionError: On any of the violations above.
    """

    name: str
    version: int
    steps: tuple[StepDefinition, ...]

    def __post_init__(self) -> None:
        if not self.steps:
            raise SagaDefinitionError(f"Saga '{self.name}' must have at least one step")

        seen: set[str] = set()
        last = len(self.steps) - 1
        for index, step in enumerate(self.steps):
            if step.name in seen:
                raise SagaDefinitionError(f"Step '{step.name}' already exists in saga '{self.name}'")
            seen.add(step.name)
            if step.compensate is None and index != last:
                raise SagaDefinitionError(
                    f"Step '{step.name}' in saga '{self.name}' must define a compensation; "
                    "only the final step may omit it"
                )
            policies = [step.retry_policy, step.compensation_retry_policy]
            if any(p is not None and p.max_attempts < 1 for p in policies):
                raise SagaDefinitionError(
                    f"Step '{step.name}' in saga '{self.name}' must allow at least one attempt"
                )

    @property
    def ref(self) -> DefinitionRef:
        return DefinitionRef(self.name, self.version)

    def __len__(self) -> int:
        return len(self.steps)

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_retry: RetryPolicy | None = None) -> SagaDefinition:
        """Build a definition from its static configuration form.

        Example::

            {"name": "order", "version": 1, "steps": [...]}
        """
        try:
            return cls(
                name=str(data["name"]),
                version=int(data.get("version", 1)),
                steps=tuple(StepDefinition.from_dict(s, default_retry) for s in data.get("steps") or []),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Invalid saga definition {data.get('name', '<unnamed>')!r}: {exc}"
            raise SagaDefinitionError(msg) from exc
