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
"""Sagaflow Saga — orchestration-based distributed transactions over messaging."""

from __future__ import annotations

from sagaflow.saga.core.errors import (
    CommandTemplateError,
    DefinitionNotFoundError,
    SagaDefinitionError,
    SagaNotFoundError,
)
from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.instance import HistoryEntry, SagaInstance
from sagaflow.saga.core.messages import CommandMessage, ResultMessage
from sagaflow.saga.core.outcome import Failure, Outcome, Success, Timeout
from sagaflow.saga.core.types import (
    Direction,
    HistoryOutcome,
    ResultOutcome,
    SagaEventType,
    SagaStatus,
)
from sagaflow.saga.engine.saga_engine import SagaEngine
from sagaflow.saga.registry.saga_builder import SagaBuilder
from sagaflow.saga.registry.saga_definition import DefinitionRef, SagaDefinition
from sagaflow.saga.registry.saga_registry import SagaRegistry
from sagaflow.saga.registry.step_definition import CommandSpec, RetryPolicy, StepDefinition

__all__ = [
    "CommandMessage",
    "CommandSpec",
    "CommandTemplateError",
    "DefinitionNotFoundError",
    "DefinitionRef",
    "Direction",
    "Failure",
    "HistoryEntry",
    "HistoryOutcome",
    "Outcome",
    "ResultMessage",
    "ResultOutcome",
    "RetryPolicy",
    "SagaBuilder",
    "SagaDefinition",
    "SagaDefinitionError",
    "SagaEngine",
    "SagaEvent",
    "SagaEventType",
    "SagaInstance",
    "SagaNotFoundError",
    "SagaRegistry",
    "SagaStatus",
    "StepDefinition",
    "Success",
    "Timeout",
]
