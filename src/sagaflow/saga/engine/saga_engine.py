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
"""SagaEngine — event-driven orchestrator for saga instances.

The engine never waits on a participant. Every transition is a short
critical section under the instance's lock:

1. load the instance (cache, then state store);
2. decide, persisting each decision as a :class:`SagaEvent` *before* it is
   folded into the in-memory instance;
3. arm the timeout or backoff timer for what the instance now awaits;
4. release the lock and publish the resulting command, if any.

Replies arrive through :meth:`SagaEngine.on_step_result` and
:meth:`SagaEngine.on_compensation_result`, either called directly or fed by
the reply-topic listener installed by :meth:`SagaEngine.start_listening`.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any

from pydantic import ValidationError

from sagaflow.kernel.exceptions import ConcurrencyException, ConflictException
from sagaflow.messaging.ports.outbound import MessageChannelPort
from sagaflow.messaging.types import Message
from sagaflow.saga.core.errors import CommandTemplateError, SagaNotFoundError
from sagaflow.saga.core.events import SagaEvent
from sagaflow.saga.core.instance import SagaInstance
from sagaflow.saga.core.messages import CommandMessage, ResultMessage, idempotency_key
from sagaflow.saga.core.types import Direction, ResultOutcome, SagaEventType, SagaStatus
from sagaflow.saga.engine.keyed_lock import KeyedLock
from sagaflow.saga.engine.timers import TimerService
from sagaflow.saga.ports.outbound import SagaEventsPort, SagaStateStorePort
from sagaflow.saga.registry.saga_definition import SagaDefinition
from sagaflow.saga.registry.saga_registry import DefinitionRefLike, SagaRegistry
from sagaflow.saga.registry.step_definition import StepDefinition

logger = logging.getLogger(__name__)

_TERMINAL_MARKERS = {
    SagaEventType.COMPLETED: SagaStatus.COMPLETED,
    SagaEventType.COMPENSATED: SagaStatus.COMPENSATED,
    SagaEventType.FAILED: SagaStatus.FAILED,
}


@dataclass(frozen=True)
class _Dispatch:
    """A command ready to be published once the instance lock is released."""

    topic: str
    command: CommandMessage


class SagaEngine:
    """Saga orchestrator -- drives steps, reacts to replies, compensates, persists.

    Usage::

        engine = SagaEngine(registry, store, channel)
        await engine.start_listening()
        saga_id = await engine.start("order", {"orderId": "O1"})
        ...
        instance = await engine.get(saga_id)
    """

    def __init__(
        self,
        registry: SagaRegistry,
        store: SagaStateStorePort,
        channel: MessageChannelPort,
        events_port: SagaEventsPort | None = None,
        *,
        command_topic_prefix: str = "saga.commands",
        reply_topic: str = "saga.replies",
        timers: TimerService | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._channel = channel
        self._events_port = events_port
        self._command_topic_prefix = command_topic_prefix
        self._reply_topic = reply_topic
        self._timers = timers or TimerService()
        self._locks = KeyedLock()
        self._instances: dict[str, SagaInstance] = {}
        self._listening = False

    @property
    def reply_topic(self) -> str:
        return self._reply_topic

    def command_topic(self, participant: str) -> str:
        """Topic carrying the commands addressed to *participant*."""
        return f"{self._command_topic_prefix}.{participant}"

    # ── client API ────────────────────────────────────────────

    async def start(
        self,
        definition_ref: DefinitionRefLike,
        initial_context: Mapping[str, Any] | None = None,
        *,
        saga_id: str | None = None,
    ) -> str:
        """Create a ``RUNNING`` instance and dispatch its first step.

        Args:
            definition_ref: A :class:`DefinitionRef`, a saga name (latest
                version) or a ``(name, version)`` tuple.
            initial_context: Seed of the instance context.
            saga_id: Explicit instance id (auto-generated if not provided).

        Returns:
            The id of the new instance.

        Raises:
            DefinitionNotFoundError: If the definition is not registered.
            ConflictException: If *saga_id* is already in use.
        """
        definition = self._registry.require(definition_ref)
        saga_id = saga_id or str(uuid.uuid4())

        async with self._locks.hold(saga_id):
            if saga_id in self._instances or await self._store.load_events(saga_id):
                raise ConflictException(
                    f"Saga '{saga_id}' already exists",
                    code="SAGA_ALREADY_EXISTS",
                    context={"saga_id": saga_id},
                )
            instance = SagaInstance(id=saga_id, definition_ref=definition.ref)
            await self._append(
                instance,
                SagaEventType.STARTED,
                payload={
                    "definition": {"name": definition.name, "version": definition.version},
                    "context": copy.deepcopy(dict(initial_context or {})),
                },
            )
            self._instances[saga_id] = instance
            dispatches = await self._advance(instance, definition)
            self._evict(instance)

        logger.info("Saga '%s' started as %s", definition.ref, saga_id)
        await self._send(dispatches)
        return saga_id

    async def on_step_result(
        self,
        saga_id: str,
        step_name: str,
        outcome: ResultOutcome | str,
        result_payload: Mapping[str, Any] | None = None,
        *,
        reason: str | None = None,
        retryable: bool = True,
        attempt: int | None = None,
    ) -> bool:
        """Apply the reply to a forward command.

        Returns ``False`` when the reply was discarded: unknown or terminal
        instance, a step other than the awaited one, a failure while the retry
        is still backing off, or a failure reported for another attempt.
        """
        return await self._on_result(
            saga_id,
            step_name,
            Direction.FORWARD,
            ResultOutcome(outcome),
            result_payload,
            reason=reason,
            retryable=retryable,
            attempt=attempt,
        )

    async def on_compensation_result(
        self,
        saga_id: str,
        step_name: str,
        outcome: ResultOutcome | str,
        *,
        reason: str | None = None,
        retryable: bool = True,
        attempt: int | None = None,
    ) -> bool:
        """Apply the reply to a compensation command; see :meth:`on_step_result`."""
        return await self._on_result(
            saga_id,
            step_name,
            Direction.COMPENSATE,
            ResultOutcome(outcome),
            None,
            reason=reason,
            retryable=retryable,
            attempt=attempt,
        )

    async def cancel(self, saga_id: str) -> bool:
        """Request cancellation of a ``RUNNING`` instance.

        If the instance is only waiting out a retry backoff, compensation
        starts at once. Otherwise the forward command in flight is drained
        first: its reply (or timeout) is recorded, and compensation then
        covers every step that succeeded, including a late one.

        Returns:
            ``False`` if the instance is no longer ``RUNNING``.

        Raises:
            SagaNotFoundError: If *saga_id* is unknown.
        """
        async with self._locks.hold(saga_id):
            instance = await self._require(saga_id)
            if instance.status is not SagaStatus.RUNNING:
                logger.info("Cancel of saga %s ignored: status is %s", saga_id, instance.status)
                return False

            definition = self._registry.require(instance.definition_ref)
            draining = self._timers.kind_of(saga_id) != "backoff"
            if not draining:
                self._timers.cancel(saga_id)
            await self._append(instance, SagaEventType.CANCELLED, payload={"draining": draining})
            dispatches = [] if draining else await self._advance(instance, definition)
            self._evict(instance)

        logger.info("Saga %s cancelled (draining=%s)", saga_id, draining)
        await self._send(dispatches)
        return True

    async def recover(self) -> list[str]:
        """Re-dispatch the awaited command of every non-terminal instance.

        Meant to run once at startup: commands in flight before a crash are
        assumed lost. Instances whose log stops right before a terminal
        marker are settled instead.

        Returns:
            Ids of the instances that were resumed.
        """
        recovered: list[str] = []
        for stored in await self._store.list_non_terminal():
            dispatches: list[_Dispatch] = []
            async with self._locks.hold(stored.id):
                instance = self._instances.setdefault(stored.id, stored)
                if instance.is_terminal:
                    continue
                definition = self._registry.get(instance.definition_ref)
                if definition is None:
                    logger.error(
                        "Cannot recover saga %s: definition %s is not registered",
                        instance.id,
                        instance.definition_ref,
                    )
                    self._instances.pop(instance.id, None)
                    continue
                self._timers.cancel(instance.id)
                dispatches = await self._advance(instance, definition)
                self._evict(instance)
            recovered.append(stored.id)
            await self._send(dispatches)

        if recovered:
            logger.info("Recovered %d saga instance(s)", len(recovered))
        return recovered

    async def get(self, saga_id: str) -> SagaInstance:
        """Return a copy of the current state of *saga_id*.

        Raises:
            SagaNotFoundError: If *saga_id* is unknown.
        """
        async with self._locks.hold(saga_id):
            return (await self._require(saga_id)).snapshot()

    # ── reply listener ────────────────────────────────────────

    async def start_listening(self) -> None:
        """Subscribe to the reply topic of the message channel."""
        if self._listening:
            return
        await self._channel.on_message(self._reply_topic, self._on_reply)
        self._listening = True
        logger.info("Saga engine listening on '%s'", self._reply_topic)

    async def stop(self) -> None:
        """Disarm all timers; pending instances stay in the store for recovery."""
        await self._timers.close()
        self._instances.clear()

    async def _on_reply(self, message: Message) -> None:
        try:
            result = ResultMessage.from_bytes(message.value)
        except ValidationError as exc:
            logger.warning("Discarding malformed result on '%s': %s", message.topic, exc)
            return

        try:
            if result.direction is Direction.FORWARD:
                await self.on_step_result(
                    result.saga_id,
                    result.step_name,
                    result.outcome,
                    result.result_payload,
                    reason=result.reason,
                    retryable=result.retryable,
                    attempt=result.attempt,
                )
            else:
                await self.on_compensation_result(
                    result.saga_id,
                    result.step_name,
                    result.outcome,
                    reason=result.reason,
                    retryable=result.retryable,
                    attempt=result.attempt,
                )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to process result of step '%s' for saga %s",
                result.step_name,
                result.saga_id,
            )

    # ── result handling ───────────────────────────────────────

    async def _on_result(
        self,
        saga_id: str,
        step_name: str,
        direction: Direction,
        outcome: ResultOutcome,
        result_payload: Mapping[str, Any] | None,
        *,
        reason: str | None,
        retryable: bool,
        attempt: int | None,
    ) -> bool:
        async with self._locks.hold(saga_id):
            instance = await self._load(saga_id)
            if instance is None:
                logger.warning("Discarding %s result for unknown saga %s", direction, saga_id)
                return False
            definition = self._registry.require(instance.definition_ref)
            if not self._accepts(instance, definition, step_name, direction, outcome, attempt):
                return False

            self._timers.cancel(saga_id)
            step = definition.steps[
                instance.cursor if direction is Direction.FORWARD else instance.compensation_index
            ]
            if outcome is ResultOutcome.SUCCESS:
                if direction is Direction.FORWARD:
                    payload = {"result": copy.deepcopy(dict(result_payload or {})), "attempt": instance.attempt}
                    await self._append(instance, SagaEventType.STEP_SUCCEEDED, step.name, payload)
                else:
                    await self._append(
                        instance,
                        SagaEventType.COMPENSATION_SUCCEEDED,
                        step.name,
                        {"attempt": instance.attempt},
                    )
                dispatches = await self._advance(instance, definition)
            else:
                reason = reason or str(outcome)
                dispatches = await self._on_failure(instance, definition, step, direction, reason, retryable)
            self._evict(instance)

        await self._send(dispatches)
        return True

    def _accepts(
        self,
        instance: SagaInstance,
        definition: SagaDefinition,
        step_name: str,
        direction: Direction,
        outcome: ResultOutcome,
        attempt: int | None,
    ) -> bool:
        if instance.is_terminal:
            logger.debug("Discarding result for terminal saga %s (%s)", instance.id, instance.status)
            return False

        if direction is Direction.FORWARD:
            index = instance.cursor if instance.awaiting_forward else None
        else:
            index = instance.compensation_index
            if instance.status is not SagaStatus.COMPENSATING or index is None or index < 0:
                index = None
        if index is None or definition.steps[index].name != step_name:
            logger.debug(
                "Discarding %s result for step '%s' of saga %s: not the awaited step",
                direction,
                step_name,
                instance.id,
            )
            return False

        if outcome is not ResultOutcome.SUCCESS:
            if self._timers.kind_of(instance.id) == "backoff":
                logger.debug(
                    "Discarding %s of step '%s' for saga %s: attempt %d is not dispatched yet",
                    outcome,
                    step_name,
                    instance.id,
                    instance.attempt,
                )
                return False
            if attempt is not None and attempt != instance.attempt:
                logger.debug(
                    "Discarding %s of step '%s' attempt %d for saga %s (current attempt %d)",
                    outcome,
                    step_name,
                    attempt,
                    instance.id,
                    instance.attempt,
                )
                return False
        return True

    async def _on_failure(
        self,
        instance: SagaInstance,
        definition: SagaDefinition,
        step: StepDefinition,
        direction: Direction,
        reason: str,
        retryable: bool,
    ) -> list[_Dispatch]:
        policy = step.policy_for(direction)
        attempt = instance.attempt
        draining = direction is Direction.FORWARD and instance.cancelled

        if not draining and retryable and policy.allows_retry(attempt):
            retried = (
                SagaEventType.STEP_RETRIED if direction is Direction.FORWARD else SagaEventType.COMPENSATION_RETRIED
            )
            await self._append(instance, retried, step.name, {"attempt": attempt + 1, "reason": reason})
            delay = policy.backoff_seconds(attempt)
            self._timers.schedule(
                instance.id,
                delay,
                partial(self._fire_retry, instance.id, step.name, direction, attempt + 1),
                kind="backoff",
            )
            logger.warning(
                "Step '%s' (%s) of saga %s failed on attempt %d/%d: %s; retrying in %.3fs",
                step.name,
                direction,
                instance.id,
                attempt,
                policy.max_attempts,
                reason,
                delay,
            )
            return []

        failed = SagaEventType.STEP_FAILED if direction is Direction.FORWARD else SagaEventType.COMPENSATION_FAILED
        await self._append(
            instance,
            failed,
            step.name,
            {"reason": reason, "attempt": attempt, "retryable": retryable},
        )
        logger.error(
            "Step '%s' (%s) of saga %s failed permanently after %d attempt(s): %s",
            step.name,
            direction,
            instance.id,
            attempt,
            reason,
        )
        return await self._advance(instance, definition)

    async def _fire_retry(self, saga_id: str, step_name: str, direction: Direction, attempt: int) -> None:
        async with self._locks.hold(saga_id):
            instance = await self._load(saga_id)
            if instance is None or instance.is_terminal or instance.attempt != attempt:
                return
            definition = self._registry.require(instance.definition_ref)
            awaited = self._awaited(instance, definition)
            if awaited is None or awaited[0].name != step_name or awaited[1] is not direction:
                return
            dispatches = await self._advance(instance, definition)
            self._evict(instance)
        await self._send(dispatches)

    async def _on_timeout(self, saga_id: str, step_name: str, direction: Direction, attempt: int) -> None:
        logger.warning("Step '%s' (%s) of saga %s timed out on attempt %d", step_name, direction, saga_id, attempt)
        await self._on_result(
            saga_id,
            step_name,
            direction,
            ResultOutcome.TIMEOUT,
            None,
            reason="timeout",
            retryable=True,
            attempt=attempt,
        )

    # ── progression ───────────────────────────────────────────

    def _awaited(
        self,
        instance: SagaInstance,
        definition: SagaDefinition,
    ) -> tuple[StepDefinition, Direction] | None:
        """Step and direction whose command the instance waits on, if any."""
        if instance.is_terminal:
            return None
        if instance.awaiting_forward:
            if instance.cursor >= len(definition):
                return None
            return definition.steps[instance.cursor], Direction.FORWARD
        index = instance.compensation_index
        if index is None or index < 0:
            return None
        return definition.steps[index], Direction.COMPENSATE

    async def _advance(self, instance: SagaInstance, definition: SagaDefinition) -> list[_Dispatch]:
        """Settle the instance until it awaits a command or reaches a terminal status.

        Returns the command to publish, arming its timeout under the lock.
        """
        while not instance.is_terminal:
            if instance.status is SagaStatus.RUNNING and instance.cursor >= len(definition):
                await self._append(instance, SagaEventType.COMPLETED)
                continue

            if instance.status is SagaStatus.COMPENSATING and instance.compensation_index is not None:
                last = instance.history[-1] if instance.history else None
                if last is not None and last.event_type is SagaEventType.COMPENSATION_FAILED:
                    await self._append(instance, SagaEventType.FAILED)
                    continue
                if instance.compensation_index < 0:
                    # nothing left to undo; a saga that undid nothing has failed
                    if instance.entries(SagaEventType.COMPENSATION_SUCCEEDED):
                        await self._append(instance, SagaEventType.COMPENSATED)
                    else:
                        await self._append(instance, SagaEventType.FAILED)
                    continue

            awaited = self._awaited(instance, definition)
            if awaited is None:
                break
            step, direction = awaited

            if direction is Direction.COMPENSATE and step.compensate is None:
                await self._append(
                    instance,
                    SagaEventType.COMPENSATION_SUCCEEDED,
                    step.name,
                    {"skipped": True, "attempt": instance.attempt},
                )
                continue

            try:
                dispatch = self._build_dispatch(instance, step, direction)
            except CommandTemplateError as exc:
                failed = (
                    SagaEventType.STEP_FAILED if direction is Direction.FORWARD else SagaEventType.COMPENSATION_FAILED
                )
                logger.error(
                    "Cannot build %s command of step '%s' for saga %s: %s",
                    direction,
                    step.name,
                    instance.id,
                    exc,
                )
                await self._append(
                    instance,
                    failed,
                    step.name,
                    {"reason": str(exc), "attempt": instance.attempt, "retryable": False},
                )
                continue

            timeout = step.policy_for(direction).timeout_seconds
            if timeout is not None:
                self._timers.schedule(
                    instance.id,
                    timeout,
                    partial(self._on_timeout, instance.id, step.name, direction, instance.attempt),
                    kind="timeout",
                )
            return [dispatch]
        return []

    def _build_dispatch(self, instance: SagaInstance, step: StepDefinition, direction: Direction) -> _Dispatch:
        spec = step.command_for(direction)
        if spec is None:
            raise CommandTemplateError(
                f"Step '{step.name}' has no {direction} command",
                code="SAGA_COMMAND_MISSING",
            )
        command = CommandMessage(
            saga_id=instance.id,
            step_name=step.name,
            direction=direction,
            idempotency_key=idempotency_key(instance.id, direction, step.name),
            payload=spec.render(instance.context),
            attempt=instance.attempt,
            participant=spec.participant,
            action=spec.action,
            reply_topic=self._reply_topic,
        )
        return _Dispatch(topic=self.command_topic(spec.participant), command=command)

    async def _send(self, dispatches: list[_Dispatch]) -> None:
        for dispatch in dispatches:
            command = dispatch.command
            logger.debug(
                "Dispatching %s '%s' attempt %d of saga %s to '%s'",
                command.direction,
                command.step_name,
                command.attempt,
                command.saga_id,
                dispatch.topic,
            )
            await self._channel.send(
                dispatch.topic,
                command.to_bytes(),
                key=command.saga_id.encode("utf-8"),
                headers={"idempotency-key": command.idempotency_key},
            )

    # ── state ─────────────────────────────────────────────────

    async def _load(self, saga_id: str) -> SagaInstance | None:
        instance = self._instances.get(saga_id)
        if instance is not None:
            return instance
        try:
            instance = await self._store.load_latest(saga_id)
        except SagaNotFoundError:
            return None
        if not instance.is_terminal:
            self._instances[saga_id] = instance
        return instance

    async def _require(self, saga_id: str) -> SagaInstance:
        instance = await self._load(saga_id)
        if instance is None:
            raise SagaNotFoundError(f"Saga '{saga_id}' not found", code="SAGA_NOT_FOUND")
        return instance

    def _evict(self, instance: SagaInstance) -> None:
        if instance.is_terminal:
            self._instances.pop(instance.id, None)
            self._timers.cancel(instance.id)

    async def _append(
        self,
        instance: SagaInstance,
        event_type: SagaEventType,
        step_name: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> SagaEvent:
        """Persist the next event of *instance*, then fold it in."""
        event = SagaEvent(
            saga_id=instance.id,
            sequence_number=instance.sequence + 1,
            type=event_type,
            step_name=step_name,
            payload=payload or {},
        )
        try:
            await self._store.append(instance.id, event)
        except ConcurrencyException:
            # another writer got there first; the cached copy is stale
            self._instances.pop(instance.id, None)
            raise
        instance.apply(event)
        await self._notify(instance, event)
        return event

    async def _notify(self, instance: SagaInstance, event: SagaEvent) -> None:
        if self._events_port is None:
            return
        name = instance.definition_ref.name
        payload = event.payload
        if event.type is SagaEventType.STARTED:
            await self._events_port.on_start(name, instance.id)
        elif event.type is SagaEventType.STEP_SUCCEEDED:
            await self._events_port.on_step_success(name, instance.id, event.step_name or "", payload.get("attempt", 1))
        elif event.type is SagaEventType.STEP_FAILED:
            await self._events_port.on_step_failed(
                name,
                instance.id,
                event.step_name or "",
                str(payload.get("reason", "")),
                payload.get("attempt", 1),
            )
        elif event.type is SagaEventType.COMPENSATION_SUCCEEDED:
            await self._events_port.on_compensated(name, instance.id, event.step_name or "", None)
        elif event.type is SagaEventType.COMPENSATION_FAILED:
            await self._events_port.on_compensated(
                name, instance.id, event.step_name or "", str(payload.get("reason", ""))
            )
        elif event.type in _TERMINAL_MARKERS:
            await self._events_port.on_completed(name, instance.id, _TERMINAL_MARKERS[event.type])
