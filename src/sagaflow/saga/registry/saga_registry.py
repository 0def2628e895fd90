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
"""Saga registry — named, versioned definitions resolved once at registration."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sagaflow.saga.core.errors import DefinitionNotFoundError, SagaDefinitionError
from sagaflow.saga.registry.saga_definition import DefinitionRef, SagaDefinition
from sagaflow.saga.registry.step_definition import RetryPolicy

logger = logging.getLogger(__name__)

DefinitionRefLike = DefinitionRef | str | tuple[str, int]


class SagaRegistry:
    """Holds every :class:`SagaDefinition` the engine may start.

    Definitions are immutable once registered; registering the same
    name + version twice is rejected. Lookups by bare name resolve to the
    highest registered version.
    """

    def __init__(self) -> None:
        self._sagas: dict[DefinitionRef, SagaDefinition] = {}

    # -- Public API ----------------------------------------------------------

    def register(self, definition: SagaDefinition) -> SagaDefinition:
        """Register *definition*.

        Raises:
            SagaDefinitionError: If the same name + version is already
                registered.
        """
        ref = definition.ref
        if ref in self._sagas:
            raise SagaDefinitionError(f"Saga '{ref}' is already registered")
        self._sagas[ref] = definition
        logger.debug("Registered saga '%s' with steps %s", ref, definition.step_names())
        return definition

    def register_all(
        self,
        definitions: Iterable[Mapping[str, Any]],
        default_retry: RetryPolicy | None = None,
    ) -> list[SagaDefinition]:
        """Register definitions given in their static configuration form."""
        return [self.register(SagaDefinition.from_dict(data, default_retry)) for data in definitions]

    def get(self, ref: DefinitionRefLike, version: int | None = None) -> SagaDefinition | None:
        """Look up a definition.

        Args:
            ref: A :class:`DefinitionRef`, a ``(name, version)`` tuple, or a
                bare saga name.
            version: Version to use with a bare name; ``None`` selects the
                latest registered version.

        Returns:
            The :class:`SagaDefinition` if registered, otherwise ``None``.
        """
        if isinstance(ref, DefinitionRef):
            return self._sagas.get(ref)
        if isinstance(ref, tuple):
            name, ver = ref
            return self._sagas.get(DefinitionRef(name, int(ver)))
        if version is not None:
            return self._sagas.get(DefinitionRef(ref, version))
        candidates = [r for r in self._sagas if r.name == ref]
        if not candidates:
            return None
        return self._sagas[max(candidates)]

    def require(self, ref: DefinitionRefLike) -> SagaDefinition:
        """Like :meth:`get` but raises when the definition is unknown.

        Raises:
            DefinitionNotFoundError: If nothing matches *ref*.
        """
        definition = self.get(ref)
        if definition is None:
            raise DefinitionNotFoundError(
                f"Saga definition '{ref}' is not registered",
                code="SAGA_DEFINITION_NOT_FOUND",
                context={"ref": str(ref)},
            )
        return definition

    def get_all(self) -> list[SagaDefinition]:
        """Return all registered definitions ordered by name and version."""
        return [self._sagas[ref] for ref in sorted(self._sagas)]
