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
"""SQLAlchemy 2.0 async implementation of :class:`SagaStateStorePort`.

Two tables are used:

* ``saga_events`` — the append-only log, unique on
  ``(saga_id, sequence_number)`` so a second writer racing on the same
  sequence number fails instead of interleaving;
* ``saga_instances`` — one row per saga holding its latest status and
  sequence number, updated in the same transaction, so that
  :meth:`list_non_terminal` does not have to fold every log.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Integer, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from sagaflow.kernel.exceptions import ConcurrencyException
from sagaflow.saga.core.errors import SagaNotFoundError
from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.instance import SagaInstance
from sagaflow.saga.core.types import SagaEventType, SagaStatus

_STATUS_CHANGES = {
    SagaEventType.STEP_FAILED: SagaStatus.COMPENSATING,
    SagaEventType.CANCELLED: SagaStatus.COMPENSATING,
    SagaEventType.COMPLETED: SagaStatus.COMPLETED,
    SagaEventType.COMPENSATED: SagaStatus.COMPENSATED,
    SagaEventType.FAILED: SagaStatus.FAILED,
}


class SagaStoreBase(DeclarativeBase):
    """Declarative base holding the saga store tables."""


class SagaEventRow(SagaStoreBase):
    __tablename__ = "saga_events"
    __table_args__ = (UniqueConstraint("saga_id", "sequence_number", name="uq_saga_events_sequence"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    saga_id: Mapped[str] = mapped_column(String(64), index=True)
    sequence_number: Mapped[int] = mapped_column(Integer)
    type: Mapped[str] = mapped_column(String(32))
    step_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    # ISO-8601 text keeps the exact timestamp (and its zone) on every backend
    timestamp: Mapped[str] = mapped_column(String(40))

    def to_event(self) -> SagaEvent:
        return SagaEvent.from_dict(
            {
                "saga_id": self.saga_id,
                "sequence_number": self.sequence_number,
                "type": self.type,
                "step_name": self.step_name,
                "payload": self.payload,
                "timestamp": self.timestamp,
            }
        )


class SagaInstanceRow(SagaStoreBase):
    __tablename__ = "saga_instances"

    saga_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    last_sequence: Mapped[int] = mapped_column(Integer)


class SqlAlchemySagaStateStore:
    """Durable :class:`SagaStateStorePort` backed by an ``AsyncEngine``.

    Usage::

        engine = create_async_engine("postgresql+asyncpg://...")
        store = SqlAlchemySagaStateStore(async_sessionmaker(engine, expire_on_commit=False))
        await store.create_schema(engine)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def create_schema(engine: AsyncEngine) -> None:
        """Create the store tables if they do not exist."""
        async with engine.begin() as conn:
            await conn.run_sync(SagaStoreBase.metadata.create_all)

    # -- append -------------------------------------------------------------

    async def append(self, saga_id: str, event: SagaEvent) -> None:
        if event.saga_id != saga_id:
            raise ConcurrencyException(
                f"Event for saga '{event.saga_id}' appended to saga '{saga_id}'",
                code="SAGA_EVENT_MISMATCH",
            )
        try:
            async with self._session_factory() as session, session.begin():
                index = await session.get(SagaInstanceRow, saga_id, with_for_update=True)
                last = index.last_sequence if index is not None else 0
                if event.sequence_number != last + 1:
                    raise ConcurrencyException(
                        f"Saga '{saga_id}' expected event #{last + 1}, got #{event.sequence_number}",
                        code="SAGA_EVENT_OUT_OF_SEQUENCE",
                        context={"saga_id": saga_id, "expected": last + 1, "actual": event.sequence_number},
                    )

                data = event.to_dict()
                session.add(
                    SagaEventRow(
                        saga_id=saga_id,
                        sequence_number=event.sequence_number,
                        type=data["type"],
                        step_name=event.step_name,
                        payload=data["payload"],
                        timestamp=data["timestamp"],
                    )
                )
                if index is None:
                    index = SagaInstanceRow(saga_id=saga_id, status=SagaStatus.RUNNING.value, last_sequence=0)
                    session.add(index)
                index.last_sequence = event.sequence_number
                status = _STATUS_CHANGES.get(event.type)
                if status is not None:
                    index.status = status.value
        except IntegrityError as exc:
            raise ConcurrencyException(
                f"Concurrent append to saga '{saga_id}' at #{event.sequence_number}",
                code="SAGA_EVENT_OUT_OF_SEQUENCE",
                context={"saga_id": saga_id},
            ) from exc

    # -- queries ------------------------------------------------------------

    async def load_events(self, saga_id: str) -> list[SagaEvent]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(SagaEventRow)
                .where(SagaEventRow.saga_id == saga_id)
                .order_by(SagaEventRow.sequence_number)
            )
            return [row.to_event() for row in rows]

    async def load_latest(self, saga_id: str) -> SagaInstance:
        events = await self.load_events(saga_id)
        if not events:
            raise SagaNotFoundError(f"Saga '{saga_id}' not found", code="SAGA_NOT_FOUND")
        return SagaInstance.replay(events)

    async def list_non_terminal(self) -> list[SagaInstance]:
        async with self._session_factory() as session:
            saga_ids = list(
                await session.scalars(
                    select(SagaInstanceRow.saga_id)
                    .where(SagaInstanceRow.status.in_([SagaStatus.RUNNING.value, SagaStatus.COMPENSATING.value]))
                    .order_by(SagaInstanceRow.saga_id)
                )
            )
        return [await self.load_latest(saga_id) for saga_id in saga_ids]
