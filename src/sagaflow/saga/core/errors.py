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
"""Saga-specific exceptions, rooted in the sagaflow kernel hierarchy."""

from __future__ import annotations

from sagaflow.kernel.exceptions import ResourceNotFoundException, ValidationException


class SagaDefinitionError(ValidationException):
    """Raised when a saga definition fails structural validation.

    Typical causes include duplicate step names, a non-final step without a
    compensation, or a definition with no steps at all.
    """


class DefinitionNotFoundError(ResourceNotFoundException):
    """Raised by ``start`` when the definition reference is not registered."""


class SagaNotFoundError(ResourceNotFoundException):
    """Raised when no event log exists for a saga id."""


class CommandTemplateError(ValidationException):
    """Raised when a command payload template references a missing context key."""
