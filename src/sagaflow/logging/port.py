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
"""Logging port the application bootstrap configures at startup."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from sagaflow.core.config import Config


@runtime_checkable
class LoggingPort(Protocol):
    """Configures logging from the ``sagaflow.logging`` section and hands out loggers.

    :class:`~sagaflow.application.SagaApplication` calls :meth:`configure`
    before anything else starts, so engine and participant modules that log
    through the standard library pick up the configured levels and renderer.
    """

    def configure(self, config: Config) -> None:
        """Apply root and per-module levels and the output format."""
        ...

    def get_logger(self, name: str) -> Any:
        """Logger accepting ``logger.info("event", key=value)`` calls."""
        ...

    def set_level(self, name: str, level: str) -> None:
        """Change the level of one logger at runtime."""
        ...
