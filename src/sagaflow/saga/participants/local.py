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
"""In-process participant gateway that routes commands to async callables."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from sagaflow.saga.core.messages import CommandMessage
from sagaflow.saga.core.outcome import Failure, Outcome, Success, Timeout

logger = logging.getLogger(__name__)

ActionHandler = Callable[[CommandMessage], Awaitable[Outcome | Mapping[str, Any] | None]]


class CallableParticipantGateway:
    """Participant gateway backed by plain async functions, keyed by action.

    A handler may return an :data:`Outcome` directly, a mapping (wrapped in
    ``Success``) or ``None`` (``Success`` with an empty payload). Any
    exception it raises becomes a retryable ``Failure``.

    Args:
        handlers: Mapping of action name to handler.
        timeout_ms: Optional per-invocation limit; exceeding it yields
            ``Timeout``.
    """

    def __init__(self, handlers: Mapping[str, ActionHandler], timeout_ms: int = 0) -> None:
        self._handlers = dict(handlers)
        self._timeout_ms = timeout_ms

    async def invoke(self, command: CommandMessage) -> Outcome:
        handler = self._handlers.get(command.action)
        if handler is None:
            return Failure(reason=f"Unknown action '{command.action}'", retryable=False)

        try:
            if self._timeout_ms > 0:
                result = await asyncio.wait_for(handler(command), timeout=self._timeout_ms / 1000.0)
            else:
                result = await handler(command)
        except TimeoutError:
            return Timeout()
        except Exception as exc:
            logger.warning(
                "Action '%s' failed for saga %s step '%s': %s",
                command.action,
                command.saga_id,
                command.step_name,
                exc,
            )
            return Failure(reason=str(exc) or type(exc).__name__)

        if isinstance(result, Success | Failure | Timeout):
            return result
        return Success(payload=dict(result or {}))
