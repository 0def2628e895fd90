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
"""TimerService — at most one armed timer per saga instance.

A saga waits on exactly one thing at a time: the reply to the command in
flight (guarded by a *timeout* timer) or the end of a retry delay (a
*backoff* timer). Scheduling a timer for a key therefore replaces any
timer already armed for it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

logger = logging.getLogger(__name__)

TimerKind = Literal["timeout", "backoff"]
TimerCallback = Callable[[], Awaitable[None]]


class TimerService:
    """Keyed one-shot timers running as asyncio tasks."""

    def __init__(self) -> None:
        self._timers: dict[str, tuple[TimerKind, asyncio.Task[Any]]] = {}

    def schedule(self, key: str, delay: float, callback: TimerCallback, kind: TimerKind) -> None:
        """Arm a timer firing *callback* after *delay* seconds, replacing any for *key*."""
        self.cancel(key)
        task = asyncio.create_task(self._run(key, delay, callback), name=f"sagaflow-{kind}-{key}")
        self._timers[key] = (kind, task)

    def cancel(self, key: str) -> bool:
        """Disarm the timer of *key*; returns whether one was armed."""
        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def kind_of(self, key: str) -> TimerKind | None:
        """Kind of the timer armed for *key*, or ``None``."""
        entry = self._timers.get(key)
        return entry[0] if entry is not None else None

    def __len__(self) -> int:
        return len(self._timers)

    async def close(self) -> None:
        """Cancel every armed timer and wait for the tasks to finish."""
        tasks = [task for _, task in self._timers.values()]
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, key: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        # A fired timer is no longer armed; the callback may arm the next one.
        entry = self._timers.get(key)
        if entry is not None and entry[1] is asyncio.current_task():
            del self._timers[key]
        try:
            await callback()
        except Exception:  # noqa: BLE001
            logger.exception("Timer callback for '%s' failed", key)
