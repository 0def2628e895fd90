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
"""Participant endpoint — bridges a command topic to a participant gateway."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from sagaflow.messaging.ports.outbound import MessageChannelPort
from sagaflow.messaging.types import Message
from sagaflow.saga.core.messages import CommandMessage, ResultMessage
from sagaflow.saga.core.outcome import Failure, Outcome, Success
from sagaflow.saga.ports.outbound import ParticipantGatewayPort

logger = logging.getLogger(__name__)


class ParticipantEndpoint:
    """Consumes commands for one participant and publishes their results.

    Subscribes to ``{command_topic_prefix}.{participant}``, invokes the
    gateway for every command and sends a :class:`ResultMessage` to the
    command's ``reply_topic``. A gateway ``Timeout`` is reported as a
    retryable failure with reason ``"timeout"``.
    """

    def __init__(
        self,
        channel: MessageChannelPort,
        gateway: ParticipantGatewayPort,
        participant: str,
        command_topic_prefix: str = "saga.commands",
    ) -> None:
        self._channel = channel
        self._gateway = gateway
        self._participant = participant
        self._topic = f"{command_topic_prefix}.{participant}"

    @property
    def topic(self) -> str:
        return self._topic

    async def start(self) -> None:
        await self._channel.on_message(self._topic, self._handle)

    async def _handle(self, message: Message) -> None:
        try:
            command = CommandMessage.from_bytes(message.value)
        except ValidationError as exc:
            logger.warning("Discarding malformed command on '%s': %s", message.topic, exc)
            return

        outcome = await self._gateway.invoke(command)
        reply = ResultMessage.reply_to(command, **self._fields_for(outcome))
        await self._channel.send(command.reply_topic, reply.to_bytes(), key=command.saga_id.encode("utf-8"))

    @staticmethod
    def _fields_for(outcome: Outcome) -> dict[str, object]:
        if isinstance(outcome, Success):
            return {"outcome": "success", "result_payload": outcome.payload}
        if isinstance(outcome, Failure):
            return {"outcome": "failure", "reason": outcome.reason, "retryable": outcome.retryable}
        return {"outcome": "failure", "reason": "timeout", "retryable": True}
