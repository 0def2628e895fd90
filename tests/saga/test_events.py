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
"""Tests for the saga lifecycle event adapters."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from sagaflow.observability.metrics import MetricsRegistry
from sagaflow.saga.core.types import SagaStatus
from sagaflow.saga.engine.saga_engine import SagaEngine
from sagaflow.saga.observability.events import (
    CompositeEventsAdapter,
    LoggerEventsAdapter,
    MetricsEventsAdapter,
)


class TestLoggerEventsAdapter:
    @pytest.mark.asyncio
    async def test_success_logs_at_info(self, caplog):
        adapter = LoggerEventsAdapter()
        with caplog.at_level(logging.INFO, logger="sagaflow.saga.events"):
            await adapter.on_start("order", "s1")
            await adapter.on_step_success("order", "s1", "reserve", 2)
            await adapter.on_completed("order", "s1", SagaStatus.COMPLETED)

        assert [r.levelno for r in caplog.records] == [logging.INFO] * 3
        assert "attempts=2" in caplog.records[1].getMessage()
        assert "status=COMPLETED" in caplog.records[2].getMessage()

    @pytest.mark.asyncio
    async def test_failures_log_at_warning(self, caplog):
        adapter = LoggerEventsAdapter()
        with caplog.at_level(logging.INFO, logger="sagaflow.saga.events"):
            await adapter.on_step_failed("order", "s1", "charge", "declined", 3)
            await adapter.on_compensated("order", "s1", "reserve", "locked")
            await adapter.on_completed("order", "s1", SagaStatus.COMPENSATED)

        assert [r.levelno for r in caplog.records] == [logging.WARNING] * 3
        assert caplog.records[0].getMessage().endswith(": declined")


class TestCompositeEventsAdapter:
    @pytest.mark.asyncio
    async def test_broadcasts_to_every_adapter(self):
        first, second = AsyncMock(), AsyncMock()
        composite = CompositeEventsAdapter(first, second)

        await composite.on_step_failed("order", "s1", "charge", "declined", 2)

        for adapter in (first, second):
            adapter.on_step_failed.assert_awaited_once_with("order", "s1", "charge", reason="declined", attempts=2)

    @pytest.mark.asyncio
    async def test_failing_adapter_does_not_silence_others(self, caplog):
        broken, healthy = AsyncMock(), AsyncMock()
        broken.on_completed.side_effect = RuntimeError("sink down")
        composite = CompositeEventsAdapter(broken, healthy)

        await composite.on_completed("order", "s1", SagaStatus.FAILED)

        healthy.on_completed.assert_awaited_once_with("order", "s1", status=SagaStatus.FAILED)
        assert "failed on on_completed" in caplog.text


class TestMetricsEventsAdapter:
    @pytest.fixture
    def collector(self) -> CollectorRegistry:
        return CollectorRegistry()

    @pytest.fixture
    def adapter(self, collector) -> MetricsEventsAdapter:
        return MetricsEventsAdapter(MetricsRegistry(collector))

    @pytest.mark.asyncio
    async def test_counts_lifecycle(self, adapter, collector):
        await adapter.on_start("order", "s1")
        await adapter.on_start("order", "s2")
        await adapter.on_step_success("order", "s1", "reserve", 1)
        await adapter.on_step_failed("order", "s1", "charge", "declined", 3)
        await adapter.on_compensated("order", "s1", "reserve", None)
        await adapter.on_completed("order", "s1", SagaStatus.COMPENSATED)

        sample = collector.get_sample_value
        assert sample("sagaflow_saga_started_total", {"saga": "order"}) == 2.0
        assert sample("sagaflow_saga_active", {"saga": "order"}) == 1.0
        assert sample("sagaflow_saga_steps_total", {"saga": "order", "outcome": "succeeded"}) == 1.0
        assert sample("sagaflow_saga_steps_total", {"saga": "order", "outcome": "failed"}) == 1.0
        assert sample("sagaflow_saga_compensations_total", {"saga": "order", "outcome": "succeeded"}) == 1.0
        assert sample("sagaflow_saga_finished_total", {"saga": "order", "status": "COMPENSATED"}) == 1.0
        assert sample("sagaflow_saga_step_attempts_count", {"saga": "order"}) == 2.0
        assert sample("sagaflow_saga_step_attempts_sum", {"saga": "order"}) == 4.0

    @pytest.mark.asyncio
    async def test_fed_by_engine(self, registry, store, channel, collector):
        engine = SagaEngine(registry, store, channel, MetricsEventsAdapter(MetricsRegistry(collector)))
        saga_id = await engine.start("order", {"orderId": "O1"})
        for step in ("reserve_inventory", "charge_payment", "ship_order"):
            await engine.on_step_result(saga_id, step, "success")
        await engine.stop()

        sample = collector.get_sample_value
        assert sample("sagaflow_saga_steps_total", {"saga": "order", "outcome": "succeeded"}) == 3.0
        assert sample("sagaflow_saga_finished_total", {"saga": "order", "status": "COMPLETED"}) == 1.0
        assert sample("sagaflow_saga_active", {"saga": "order"}) == 0.0
