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
"""In-memory message channel for testing and single-process deployments."""
from __future__ import annotations

import asyncio
import logging

from sagaflow.kernel.exceptions import MessagingException
from sagaflow.messaging.ports.outbound import MessageHandler
from sagaflow.messaging.types import Message

logger = logging.getLogger(__name__)


class InMemoryMessageChannel:
    """Delivers every message to each subscriber of its topic on a separate task.

    ``send`` never runs a handler inline, so a handler may itself send
    messages without re-entering the caller. ``join`` waits until every
    delivery, including those triggered by handlers, has finished.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[MessageHandler]] = {}
        self._deliveries: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def send(
        self,
        topic: str,
        value: bytes,
        *,
        key: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not self._running:
            raise MessagingException("Channel is not running", code="CHANNEL_STOPPED", context={"topic": topic})
        msg = Message(topic=topic, value=value, key=key, headers=headers or {})
        for handler in self._subscriptions.get(topic, []):
            task = asyncio.create_task(self._deliver(handler, msg), name=f"deliver-{topic}")
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def on_message(self, topic: str, handler: MessageHandler) -> None:
        self._subscriptions.setdefault(topic, []).append(handler)

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        for task in list(self._deliveries):
            task.cancel()
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    async def join(self) -> None:
        """Wait until no delivery is pending."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    @staticmethod
    async def _deliver(handler: MessageHandler, msg: Message) -> None:
        try:
            await handler(msg)
        except Exception:
            logger.exception("Handler %r failed for message on topic '%s'", handler, msg.topic)
