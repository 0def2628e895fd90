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
"""httpx-based participant gateway."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import httpx

from sagaflow.saga.core.messages import CommandMessage
from sagaflow.saga.core.outcome import Failure, Outcome, Success, Timeout

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
SAGA_ID_HEADER = "X-Saga-Id"

_RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


class HttpParticipantGateway:
    """Participant gateway that POSTs each command to ``{base_url}/{action}``.

    Response mapping:

    * 2xx → ``Success`` with the JSON body (non-object bodies are wrapped
      as ``{"result": body}``);
    * 408, 425, 429 and 5xx → retryable ``Failure``;
    * any other 4xx → non-retryable ``Failure`` (business rejection);
    * ``httpx.TimeoutException`` → ``Timeout``;
    * other transport errors → retryable ``Failure``.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: timedelta = timedelta(seconds=30),
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout.total_seconds(),
            headers=headers or {},
        )

    async def invoke(self, command: CommandMessage) -> Outcome:
        headers = {
            IDEMPOTENCY_HEADER: command.idempotency_key,
            SAGA_ID_HEADER: command.saga_id,
        }
        try:
            response = await self._client.post(
                f"/{command.action}",
                json=command.model_dump(mode="json"),
                headers=headers,
            )
        except httpx.TimeoutException:
            return Timeout()
        except httpx.TransportError as exc:
            logger.warning("Transport error calling participant '%s': %s", command.participant, exc)
            return Failure(reason=f"transport error: {exc}")

        if response.is_success:
            return Success(payload=self._payload_of(response))

        reason = f"HTTP {response.status_code}: {response.text[:200]}"
        status = response.status_code
        retryable = status >= 500 or status in _RETRYABLE_CLIENT_STATUSES
        return Failure(reason=reason, retryable=retryable)

    async def start(self) -> None:
        """No-op -- httpx client is ready after construction."""

    async def stop(self) -> None:
        """Close the underlying HTTP client."""
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @staticmethod
    def _payload_of(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"result": response.text}
        return body if isinstance(body, dict) else {"result": body}
