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
"""Unified exception hierarchy for sagaflow.

All library exceptions inherit from SagaflowException, enabling unified
error handling across modules.

Categories:
- BusinessException: Definition errors, lookups of unknown resources
- InfrastructureException: Persistence and messaging failures
"""

from __future__ import annotations

# =============================================================================
# Base
# =============================================================================


class SagaflowException(Exception):
    """Base exception for all sagaflow errors.

    Carries an optional error code and context dict for structured error data.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (e.g. "SAGA_DEFINITION_NOT_FOUND").
        context: Arbitrary key-value pairs for error context and debugging.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict = context if context is not None else {}


# =============================================================================
# Business
# =============================================================================


class BusinessException(SagaflowException):
    """Domain rule violations and business logic errors."""


class ValidationException(BusinessException):
    """Input or definition validation failures."""


class ResourceNotFoundException(BusinessException):
    """Requested resource does not exist."""


class ConflictException(BusinessException):
    """Operation conflicts with current state (e.g. duplicate, version mismatch)."""


class ConcurrencyException(ConflictException):
    """Concurrent modification conflict (e.g. out-of-sequence append)."""


# =============================================================================
# Infrastructure
# =============================================================================


class InfrastructureException(SagaflowException):
    """Infrastructure failures: database, messaging, network."""


class MessagingException(InfrastructureException):
    """The message channel rejected or failed to deliver a message."""
