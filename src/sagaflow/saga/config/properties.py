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
"""Saga engine configuration properties.

Plain dataclasses bound from the ``sagaflow.saga`` section by
:meth:`sagaflow.core.config.Config.bind`.

YAML structure::

    sagaflow:
      saga:
        command_topic_prefix: saga.commands
        reply_topic: saga.replies
        recovery_enabled: true
        metrics_enabled: true
        store: memory            # or "sqlalchemy"
        database_url: sqlite+aiosqlite:///sagas.db
        default_retry:
          max_attempts: 3
          backoff_ms: 100
          timeout_ms: 5000
        definitions:
          - name: order
            version: 1
            steps: [...]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sagaflow.core.config import config_properties
from sagaflow.saga.registry.step_definition import RetryPolicy


@config_properties(prefix="sagaflow.saga")
@dataclass
class SagaEngineProperties:
    """Configuration for the saga engine."""

    command_topic_prefix: str = "saga.commands"
    reply_topic: str = "saga.replies"
    recovery_enabled: bool = True
    metrics_enabled: bool = False
    store: str = "memory"
    database_url: str = "sqlite+aiosqlite:///:memory:"
    default_retry: dict[str, Any] = field(default_factory=dict)
    definitions: list[dict[str, Any]] = field(default_factory=list)

    def retry_policy(self) -> RetryPolicy:
        """Default retry policy applied to steps that do not set their own."""
        return RetryPolicy.from_dict(self.default_retry)
