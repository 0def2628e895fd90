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
"""Outbound port for the message channel between the engine and participants.

Delivery is at-least-once with no ordering guarantee, neither across saga
instances nor within one. Consumers must tolerate redelivery and
reordering.
"""
from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any, Protocol, runtime_checkable

from sagaflow.messaging.types import Message

MessageHandler = Callable[[Message], Coroutine[Any, Any, None]]


@runtime_checkable
class MessageChannelPort(Protocol):
    async def send(
        self,
        topic: str,
        value: bytes,
        *,
        key: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None: ...

    async def on_message(self, topic: str, handler: MessageHandler) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
