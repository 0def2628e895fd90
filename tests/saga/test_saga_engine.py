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
"""Tests for SagaEngine — forward execution, compensation and message guards."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from sagaflow.kernel.exceptions import ConflictException
from sagaflow.messaging.types import Message
from sagaflow.saga.core.errors import DefinitionNotFoundError, SagaNotFoundError
from sagaflow.saga.core.instance import SagaInstance
from sagaflow.saga.core.messages import ResultMessage
from sagaflow.saga.core.types import Direction, HistoryOutcome, SagaEventType, SagaStatus
from sagaflow.saga.engine.saga_engine import SagaEngine

STEPS = ["reserve_inventory", "charge_payment", "ship_order"]


# ── Helpers ──────────────────────────────────────────────────


async def _fail_with_retries(engine, channel, wait_until, saga_id: str, step: str, attempts: int = 3) -> None:
    """Report a retryable failure for every attempt of *step*."""
    for attempt in range(1, attempts + 1):
        await wait_until(lambda: ("forward", step, attempt) in channel.calls())
        assert await engine.on_step_result(saga_id, step, "failure", reason="declined", attempt=attempt)


# ── start ────────────────────────────────────────────────────


class TestStart:
    @pytest.mark.asyncio
    async def test_start_persists_and_dispatches_first_step(self, engine, store, channel):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert channel.calls() == [("forward", "reserve_inventory", 1)]
        message = channel.sent[0]
        assert message.topic == "saga.commands.inventory"
        assert message.key == saga_id.encode()
        command = channel.commands[0]
        assert command.saga_id == saga_id
        assert command.action == "reserve"
        assert command.payload == {"orderId": "O1"}
        assert command.idempotency_key == f"{saga_id}:forward:reserve_inventory"
        assert command.reply_topic == "saga.replies"
        assert message.headers == {"idempotency-key": command.idempotency_key}

        events = await store.load_events(saga_id)
        assert [e.type for e in events] == [SagaEventType.STARTED]
        assert events[0].payload["definition"] == {"name": "order", "version": 1}

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.RUNNING
        assert instance.cursor == 0
        assert instance.context == {"orderId": "O1"}

    @pytest.mark.asyncio
    async def test_start_unknown_definition_creates_nothing(self, engine, store, channel):
        with pytest.raises(DefinitionNotFoundError):
            await engine.start("missing", {"orderId": "O1"})

        assert channel.sent == []
        assert await store.list_non_terminal() == []

    @pytest.mark.asyncio
    async def test_start_with_explicit_id_and_version(self, engine, registry, make_definition):
        registry.register(make_definition(version=2))

        saga_id = await engine.start(("order", 2), {"orderId": "O1"}, saga_id="order-O1")

        assert saga_id == "order-O1"
        assert (await engine.get("order-O1")).definition_ref.version == 2

    @pytest.mark.asyncio
    async def test_start_by_name_uses_latest_version(self, engine, registry, make_definition):
        registry.register(make_definition(version=5))

        saga_id = await engine.start("order", {"orderId": "O1"})

        assert (await engine.get(saga_id)).definition_ref.version == 5

    @pytest.mark.asyncio
    async def test_start_rejects_duplicate_id(self, engine):
        await engine.start("order", {"orderId": "O1"}, saga_id="dup")
        with pytest.raises(ConflictException):
            await engine.start("order", {"orderId": "O2"}, saga_id="dup")

    @pytest.mark.asyncio
    async def test_initial_context_is_copied(self, engine):
        context = {"orderId": "O1", "lines": [1]}
        saga_id = await engine.start("order", context)
        context["lines"].append(2)

        assert (await engine.get(saga_id)).context["lines"] == [1]


# ── forward execution ────────────────────────────────────────


class TestAllSuccess:
    @pytest.mark.asyncio
    async def test_every_step_succeeds(self, engine, channel):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert await engine.on_step_result(saga_id, "reserve_inventory", "success", {"reservationId": "R1"})
        assert await engine.on_step_result(saga_id, "charge_payment", "success", {"paymentId": "P1"})
        assert await engine.on_step_result(saga_id, "ship_order", "success")

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.COMPLETED
        assert instance.cursor == 3
        assert [e.step_name for e in instance.entries(SagaEventType.STEP_SUCCEEDED)] == STEPS
        assert instance.history[-1].event_type is SagaEventType.COMPLETED
        assert instance.context == {"orderId": "O1", "reservationId": "R1", "paymentId": "P1"}
        assert channel.calls() == [("forward", step, 1) for step in STEPS]
        assert channel.calls(Direction.COMPENSATE) == []

    @pytest.mark.asyncio
    async def test_results_feed_later_templates(self, engine, registry, channel, make_definition):
        registry.register(make_definition(version=2, payment_payload={"reservation": "${reservationId}"}))
        saga_id = await engine.start(("order", 2), {"orderId": "O1"})

        await engine.on_step_result(saga_id, "reserve_inventory", "success", {"reservationId": "R1"})

        assert channel.commands[-1].payload == {"reservation": "R1"}

    @pytest.mark.asyncio
    async def test_completed_instance_is_evicted(self, engine):
        saga_id = await engine.start("order", {"orderId": "O1"})
        for step in STEPS:
            await engine.on_step_result(saga_id, step, "success")

        assert saga_id not in engine._instances
        assert (await engine.get(saga_id)).status is SagaStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_with_same_key(self, engine, channel, wait_until):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert await engine.on_step_result(saga_id, "reserve_inventory", "failure", reason="busy", attempt=1)
        await wait_until(lambda: len(channel.sent) == 2)

        first, second = channel.commands
        assert (second.step_name, second.attempt) == ("reserve_inventory", 2)
        assert second.idempotency_key == first.idempotency_key
        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.RUNNING
        assert instance.attempt == 2
        assert instance.history == []


# ── compensation ─────────────────────────────────────────────


class TestCompensation:
    @pytest.mark.asyncio
    async def test_compensates_in_reverse_order(self, engine, channel):
        saga_id = await engine.start("order", {"orderId": "O1"})
        await engine.on_step_result(saga_id, "reserve_inventory", "success")
        await engine.on_step_result(saga_id, "charge_payment", "success")

        await engine.on_step_result(saga_id, "ship_order", "failure", reason="no carrier", retryable=False)
        assert (await engine.get(saga_id)).status is SagaStatus.COMPENSATING
        assert channel.calls(Direction.COMPENSATE) == [("compensate", "charge_payment", 1)]

        assert await engine.on_compensation_result(saga_id, "charge_payment", "success")
        assert channel.calls(Direction.COMPENSATE) == [
            ("compensate", "charge_payment", 1),
            ("compensate", "reserve_inventory", 1),
        ]

        assert await engine.on_compensation_result(saga_id, "reserve_inventory", "success")
        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.COMPENSATED
        assert [e.step_name for e in instance.entries(SagaEventType.COMPENSATION_SUCCEEDED)] == [
            "charge_payment",
            "reserve_inventory",
        ]
        compensate = [c for c in channel.commands if c.direction is Direction.COMPENSATE]
        assert compensate[0].action == "refund"
        assert compensate[0].idempotency_key == f"{saga_id}:compensate:charge_payment"
        assert compensate[1].action == "release"

    @pytest.mark.asyncio
    async def test_order_scenario(self, engine, channel, wait_until):
        saga_id = await engine.start("order", {"orderId": "O1"})

        await engine.on_step_result(saga_id, "reserve_inventory", "success", {"reservationId": "R1"})
        assert (await engine.get(saga_id)).cursor == 1

        await _fail_with_retries(engine, channel, wait_until, saga_id, "charge_payment")
        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.COMPENSATING
        assert channel.calls(Direction.COMPENSATE) == [("compensate", "reserve_inventory", 1)]

        await engine.on_compensation_result(saga_id, "reserve_inventory", "success")
        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.COMPENSATED
        assert len(instance.history) == 4
        assert [e.event_type for e in instance.history] == [
            SagaEventType.STEP_SUCCEEDED,
            SagaEventType.STEP_FAILED,
            SagaEventType.COMPENSATION_SUCCEEDED,
            SagaEventType.COMPENSATED,
        ]
        assert [e.outcome for e in instance.history] == [
            HistoryOutcome.SUCCESS,
            HistoryOutcome.FAILURE,
            HistoryOutcome.SUCCESS,
            HistoryOutcome.SUCCESS,
        ]
        assert instance.history[1].attempt == 3
        charges = [c for c in channel.commands if c.step_name == "charge_payment"]
        assert [c.attempt for c in charges] == [1, 2, 3]
        assert len({c.idempotency_key for c in charges}) == 1

    @pytest.mark.asyncio
    async def test_first_step_failure_fails_without_compensation(self, engine, channel, wait_until):
        saga_id = await engine.start("order", {"orderId": "O1"})

        await _fail_with_retries(engine, channel, wait_until, saga_id, "reserve_inventory")

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.FAILED
        assert channel.calls(Direction.COMPENSATE) == []
        assert [e.event_type for e in instance.history] == [SagaEventType.STEP_FAILED, SagaEventType.FAILED]

    @pytest.mark.asyncio
    async def test_non_retryable_failure_skips_retries(self, engine, channel):
        saga_id = await engine.start("order", {"orderId": "O1"})
        await engine.on_step_result(saga_id, "reserve_inventory", "success")

        await engine.on_step_result(saga_id, "charge_payment", "failure", reason="card declined", retryable=False)

        assert [c for c in channel.calls() if c[1] == "charge_payment"] == [("forward", "charge_payment", 1)]
        instance = await engine.get(saga_id)
        assert instance.entries(SagaEventType.STEP_FAILED)[0].attempt == 1

    @pytest.mark.asyncio
    async def test_compensation_failure_fails_saga(self, engine, channel, wait_until):
        saga_id = await engine.start("order", {"orderId": "O1"})
        await engine.on_step_result(saga_id, "reserve_inventory", "success")
        await engine.on_step_result(saga_id, "charge_payment", "failure", retryable=False)

        for attempt in (1, 2, 3):
            await wait_until(lambda: ("compensate", "reserve_inventory", attempt) in channel.calls())
            assert await engine.on_compensation_result(
                saga_id, "reserve_inventory", "failure", reason="locked", attempt=attempt
            )

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.FAILED
        assert [e.event_type for e in instance.history[-2:]] == [
            SagaEventType.COMPENSATION_FAILED,
            SagaEventType.FAILED,
        ]
        assert instance.history[-2].attempt == 3
        assert await engine.on_compensation_result(saga_id, "reserve_inventory", "success") is False

    @pytest.mark.asyncio
    async def test_non_retryable_compensation_failure(self, engine, channel):
        saga_id = await engine.start("order", {"orderId": "O1"})
        await engine.on_step_result(saga_id, "reserve_inventory", "success")
        await engine.on_step_result(saga_id, "charge_payment", "failure", retryable=False)

        await engine.on_compensation_result(saga_id, "reserve_inventory", "failure", retryable=False)

        assert (await engine.get(saga_id)).status is SagaStatus.FAILED
        assert channel.calls(Direction.COMPENSATE) == [("compensate", "reserve_inventory", 1)]


# ── template errors ──────────────────────────────────────────


class TestTemplateErrors:
    @pytest.mark.asyncio
    async def test_unrenderable_forward_fails_step(self, engine, registry, channel, make_definition):
        registry.register(make_definition(version=2, payment_payload={"card": "${cardToken}"}))
        saga_id = await engine.start(("order", 2), {"orderId": "O1"})

        await engine.on_step_result(saga_id, "reserve_inventory", "success")

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.COMPENSATING
        failed = instance.entries(SagaEventType.STEP_FAILED)
        assert [e.step_name for e in failed] == ["charge_payment"]
        assert channel.calls() == [
            ("forward", "reserve_inventory", 1),
            ("compensate", "reserve_inventory", 1),
        ]

    @pytest.mark.asyncio
    async def test_unrenderable_compensation_fails_saga(self, engine, registry, store, channel, make_definition):
        registry.register(make_definition(version=2, refund_payload={"paymentId": "${paymentId}"}))
        saga_id = await engine.start(("order", 2), {"orderId": "O1"})
        await engine.on_step_result(saga_id, "reserve_inventory", "success")
        await engine.on_step_result(saga_id, "charge_payment", "success")

        await engine.on_step_result(saga_id, "ship_order", "failure", retryable=False)

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.FAILED
        assert channel.calls(Direction.COMPENSATE) == []
        events = await store.load_events(saga_id)
        failed = [e for e in events if e.type is SagaEventType.COMPENSATION_FAILED]
        assert failed[0].step_name == "charge_payment"
        assert "paymentId" in failed[0].payload["reason"]
        assert failed[0].payload["retryable"] is False


# ── message guards ───────────────────────────────────────────


class TestMessageGuards:
    @pytest.mark.asyncio
    async def test_duplicate_success_is_discarded(self, engine, store, channel):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert await engine.on_step_result(saga_id, "reserve_inventory", "success", {"r": 1})
        sequence = len(await store.load_events(saga_id))
        assert await engine.on_step_result(saga_id, "reserve_inventory", "success", {"r": 1}) is False

        instance = await engine.get(saga_id)
        assert len(instance.entries(SagaEventType.STEP_SUCCEEDED)) == 1
        assert len(await store.load_events(saga_id)) == sequence
        assert channel.calls() == [("forward", "reserve_inventory", 1), ("forward", "charge_payment", 1)]

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_apply_once(self, engine):
        saga_id = await engine.start("order", {"orderId": "O1"})

        applied = await asyncio.gather(
            engine.on_step_result(saga_id, "reserve_inventory", "success"),
            engine.on_step_result(saga_id, "reserve_inventory", "success"),
        )

        assert sorted(applied) == [False, True]
        assert (await engine.get(saga_id)).cursor == 1

    @pytest.mark.asyncio
    async def test_duplicate_failure_of_same_attempt_is_discarded(self, engine):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert await engine.on_step_result(saga_id, "reserve_inventory", "failure", attempt=1)
        assert await engine.on_step_result(saga_id, "reserve_inventory", "failure", attempt=1) is False

        assert (await engine.get(saga_id)).attempt == 2

    @pytest.mark.asyncio
    async def test_result_for_step_ahead_is_discarded(self, engine, store):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert await engine.on_step_result(saga_id, "ship_order", "success") is False

        instance = await engine.get(saga_id)
        assert instance.cursor == 0
        assert instance.sequence == 1
        assert len(await store.load_events(saga_id)) == 1

    @pytest.mark.asyncio
    async def test_result_with_wrong_direction_is_discarded(self, engine):
        saga_id = await engine.start("order", {"orderId": "O1"})

        assert await engine.on_compensation_result(saga_id, "reserve_inventory", "success") is False
        assert (await engine.get(saga_id)).status is SagaStatus.RUNNING

    @pytest.mark.asyncio
    async def test_unknown_saga_is_discarded(self, engine):
        assert await engine.on_step_result("nope", "reserve_inventory", "success") is False

    @pytest.mark.asyncio
    async def test_result_after_completion_is_discarded(self, engine):
        saga_id = await engine.start("order", {"orderId": "O1"})
        for step in STEPS:
            await engine.on_step_result(saga_id, step, "success")

        assert await engine.on_step_result(saga_id, "ship_order", "success") is False
        assert await engine.on_step_result(saga_id, "ship_order", "failure") is False


# ── queries & events ─────────────────────────────────────────


class TestQueriesAndEvents:
    @pytest.mark.asyncio
    async def test_get_returns_copy(self, engine):
        saga_id = await engine.start("order", {"orderId": "O1"})

        snapshot = await engine.get(saga_id)
        snapshot.context["orderId"] = "tampered"

        assert (await engine.get(saga_id)).context["orderId"] == "O1"
        assert isinstance(snapshot, SagaInstance)

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, engine):
        with pytest.raises(SagaNotFoundError):
            await engine.get("nope")

    @pytest.mark.asyncio
    async def test_lifecycle_events_are_emitted(self, registry, store, channel):
        events = AsyncMock()
        engine = SagaEngine(registry, store, channel, events)
        saga_id = await engine.start("order", {"orderId": "O1"})
        await engine.on_step_result(saga_id, "reserve_inventory", "success")
        await engine.on_step_result(saga_id, "charge_payment", "failure", reason="declined", retryable=False)
        await engine.on_compensation_result(saga_id, "reserve_inventory", "success")

        events.on_start.assert_awaited_once_with("order", saga_id)
        events.on_step_success.assert_awaited_once_with("order", saga_id, "reserve_inventory", 1)
        events.on_step_failed.assert_awaited_once_with("order", saga_id, "charge_payment", "declined", 1)
        events.on_compensated.assert_awaited_once_with("order", saga_id, "reserve_inventory", None)
        events.on_completed.assert_awaited_once_with("order", saga_id, SagaStatus.COMPENSATED)
        await engine.stop()


# ── reply listener ───────────────────────────────────────────


class TestReplyListener:
    @pytest.mark.asyncio
    async def test_routes_results_by_direction(self, engine, channel):
        await engine.start_listening()
        await engine.start_listening()
        assert len(channel.handlers["saga.replies"]) == 1
        deliver = channel.handlers["saga.replies"][0]

        saga_id = await engine.start("order", {"orderId": "O1"})
        reply = ResultMessage.reply_to(channel.commands[0], outcome="success", result_payload={"r": "R1"})
        await deliver(Message(topic="saga.replies", value=reply.to_bytes()))
        reply = ResultMessage.reply_to(channel.commands[1], outcome="failure", reason="declined", retryable=False)
        await deliver(Message(topic="saga.replies", value=reply.to_bytes()))
        reply = ResultMessage.reply_to(channel.commands[2], outcome="success")
        await deliver(Message(topic="saga.replies", value=reply.to_bytes()))

        instance = await engine.get(saga_id)
        assert instance.status is SagaStatus.COMPENSATED
        assert instance.context["r"] == "R1"

    @pytest.mark.asyncio
    async def test_malformed_and_unknown_results_are_dropped(self, engine, channel):
        await engine.start_listening()
        deliver = channel.handlers["saga.replies"][0]

        await deliver(Message(topic="saga.replies", value=b"{garbage"))
        await deliver(
            Message(
                topic="saga.replies",
                value=b'{"saga_id": "ghost", "step_name": "a", "direction": "forward", "outcome": "success"}',
            )
        )

        assert channel.sent == []
