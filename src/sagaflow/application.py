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
"""Application bootstrap — wires a saga engine from configuration."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from sagaflow.core.config import Config
from sagaflow.logging.port import LoggingPort
from sagaflow.logging.structlog_adapter import StructlogAdapter
from sagaflow.messaging.adapters.memory import InMemoryMessageChannel
from sagaflow.messaging.ports.outbound import MessageChannelPort
from sagaflow.observability.metrics import MetricsRegistry
from sagaflow.saga.config.properties import SagaEngineProperties
from sagaflow.saga.engine.saga_engine import SagaEngine
from sagaflow.saga.observability.events import (
    CompositeEventsAdapter,
    LoggerEventsAdapter,
    MetricsEventsAdapter,
)
from sagaflow.saga.participants.endpoint import ParticipantEndpoint
from sagaflow.saga.persistence.memory import InMemorySagaStateStore
from sagaflow.saga.persistence.sqlalchemy import SqlAlchemySagaStateStore
from sagaflow.saga.ports.outbound import (
    ParticipantGatewayPort,
    SagaEventsPort,
    SagaStateStorePort,
)
from sagaflow.saga.registry.saga_registry import SagaRegistry


class SagaApplication:
    """Owns the engine and its infrastructure for one process.

    Startup sequence:
    1. Configure logging (from the ``sagaflow.logging`` section)
    2. Create the store schema when a SQLAlchemy store is configured
    3. Start the message channel and the in-process participant endpoints
    4. Subscribe the engine to the reply topic
    5. Recover non-terminal instances (``sagaflow.saga.recovery_enabled``)

    Usage::

        app = SagaApplication.from_file("sagaflow.yaml")
        app.participant("inventory", CallableParticipantGateway({...}))
        await app.startup()
        saga_id = await app.engine.start("order", {"orderId": "O1"})
        ...
        await app.shutdown()
    """

    def __init__(
        self,
        config: Config,
        *,
        registry: SagaRegistry | None = None,
        store: SagaStateStorePort | None = None,
        channel: MessageChannelPort | None = None,
        events_port: SagaEventsPort | None = None,
        metrics: MetricsRegistry | None = None,
        logging_port: LoggingPort | None = None,
    ) -> None:
        self.config = config
        self.properties = config.bind(SagaEngineProperties)

        self._logging: LoggingPort = logging_port or StructlogAdapter()
        self._logger = self._logging.get_logger("sagaflow.application")
        self._db_engine: AsyncEngine | None = None
        self._endpoints: list[ParticipantEndpoint] = []
        self._startup_time: float = 0.0

        self.registry = registry or SagaRegistry()
        if registry is None and self.properties.definitions:
            self.registry.register_all(self.properties.definitions, self.properties.retry_policy())

        self.store = store or self._create_store()
        self.channel = channel or InMemoryMessageChannel()

        if events_port is None:
            adapters: list[SagaEventsPort] = [LoggerEventsAdapter()]
            if self.properties.metrics_enabled:
                adapters.append(MetricsEventsAdapter(metrics or MetricsRegistry()))
            events_port = CompositeEventsAdapter(*adapters)

        self.engine = SagaEngine(
            self.registry,
            self.store,
            self.channel,
            events_port,
            command_topic_prefix=self.properties.command_topic_prefix,
            reply_topic=self.properties.reply_topic,
        )

    @classmethod
    def from_config(cls, config: Config | dict[str, Any], **overrides: Any) -> SagaApplication:
        """Build an application from a :class:`Config` or a raw config dict."""
        if not isinstance(config, Config):
            config = Config(config)
        return cls(config, **overrides)

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        active_profiles: list[str] | None = None,
        **overrides: Any,
    ) -> SagaApplication:
        """Build an application from a YAML or TOML file plus profile overlays."""
        return cls(Config.from_file(path, active_profiles), **overrides)

    @property
    def startup_time_seconds(self) -> float:
        return self._startup_time

    def participant(self, name: str, gateway: ParticipantGatewayPort) -> ParticipantEndpoint:
        """Serve the commands of participant *name* through *gateway* in this process."""
        endpoint = ParticipantEndpoint(
            self.channel,
            gateway,
            name,
            command_topic_prefix=self.properties.command_topic_prefix,
        )
        self._endpoints.append(endpoint)
        return endpoint

    async def startup(self) -> list[str]:
        """Start the application; returns the ids of recovered instances."""
        start = time.perf_counter()
        self._logging.configure(self.config)

        if isinstance(self.store, SqlAlchemySagaStateStore) and self._db_engine is not None:
            await SqlAlchemySagaStateStore.create_schema(self._db_engine)

        await self.channel.start()
        for endpoint in self._endpoints:
            await endpoint.start()
        await self.engine.start_listening()

        recovered: list[str] = []
        if self.properties.recovery_enabled:
            recovered = await self.engine.recover()

        self._startup_time = time.perf_counter() - start
        self._logger.info(
            "saga_application_started",
            definitions=[str(d.ref) for d in self.registry.get_all()],
            participants=[e.topic for e in self._endpoints],
            recovered=len(recovered),
            startup_time_s=round(self._startup_time, 3),
        )
        return recovered

    async def shutdown(self) -> None:
        """Stop timers, the channel and the database engine."""
        await self.engine.stop()
        await self.channel.stop()
        if self._db_engine is not None:
            await self._db_engine.dispose()
        self._logger.info("saga_application_stopped")

    def _create_store(self) -> SagaStateStorePort:
        if self.properties.store == "memory":
            return InMemorySagaStateStore()
        if self.properties.store == "sqlalchemy":
            self._db_engine = create_async_engine(self.properties.database_url)
            return SqlAlchemySagaStateStore(async_sessionmaker(self._db_engine, expire_on_commit=False))
        raise ValueError(f"Unknown saga store '{self.properties.store}' (expected 'memory' or 'sqlalchemy')")
