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
"""Shared fixtures for saga engine tests."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

import pytest

from sagaflow.messaging.ports.outbound import MessageHandler
from sagaflow.messaging.types import Message
from sagaflow.saga.core.messages import CommandMessage
from sagaflow.saga.core.types import Direction
from sagaflow.saga.engine.saga_engine import SagaEngine
from sagaflow.saga.persistence.memory import InMemorySagaStateStore
from sagaflow.saga.registry.saga_builder import SagaBuilder
from sagaflow.saga.registry.saga_definition import SagaDefinition
from sagaflow.saga.registry.saga_registry import SagaRegistry
from sagaflow.saga.registry.step_definition import RetryPolicy


class RecordingChannel:
    """MessageChannelPort that records outgoing messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[Message] = []
        self.handlers: dict[str, list[MessageHandler]] = {}

    async def send(
        self,
        topic: str,
        value: bytes,
        *,
        key: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.sent.append(Message(topic=topic, value=value, key=key, headers=headers or {}))

    async def on_message(self, topic: str, handler: MessageHandler) -> None:
        self.handlers.setdefault(topic, []).append(handler)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @property
    def commands(self) -> list[CommandMessage]:
        return [CommandMessage.from_bytes(m.value) for m in self.sent]

    def calls(self, direction: Direction | None = None) -> list[tuple[str, str, int]]:
        """``(direction, step_name, attempt)`` of every command sent, in order."""
        return [
            (c.direction.value, c.step_name, c.attempt)
            for c in self.commands
            if direction is None or c.direction is direction
        ]


def order_definition(
    retry: RetryPolicy | None = None,
    *,
    version: int = 1,
    payment_payload: dict[str, Any] | None = None,
    refund_payload: dict[str, Any] | None = None,
) -> SagaDefinition:
    """``reserve_inventory`` → ``charge_payment`` → ``ship_order`` (no compensation)."""
    retry = retry or RetryPolicy(max_attempts=3, backoff_ms=0)
    return (
        SagaBuilder("order", version=version, default_retry=retry)
        .step("reserve_inventory")
        .forward("inventory", "reserve", {"orderId": "${orderId}"})
        .compensate("inventory", "release", {"orderId": "${orderId}"})
        .add()
        .step("charge_payment")
        .forward("payment", "charge", payment_payload or {"orderId": "${orderId}"})
        .compensate("payment", "refund", refund_payload or {"orderId": "${orderId}"})
        .add()
        .step("ship_order")
        .forward("shipping", "ship", {"orderId": "${orderId}"})
        .add()
        .build()
    )


async def eventually(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    """Yield to the loop until *predicate* holds (timers fire on their own tasks).

    *predicate* may be a plain or an async callable.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def registry() -> SagaRegistry:
    registry = SagaRegistry()
    registry.register(order_definition())
    return registry


@pytest.fixture
def store() -> InMemorySagaStateStore:
    return InMemorySagaStateStore()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
async def engine(registry: SagaRegistry, store: InMemorySagaStateStore, channel: RecordingChannel):
    engine = SagaEngine(registry, store, channel)
    yield engine
    await engine.stop()


@pytest.fixture
def make_definition() -> Callable[..., SagaDefinition]:
    return order_definition


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return eventually
