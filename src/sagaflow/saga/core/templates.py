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
"""Command payload templates rendered against a saga instance's context.

A template is any JSON-like structure. String leaves may contain
``${key}`` placeholders:

* a string that is exactly one placeholder yields the raw context value,
  so ``"${amount}"`` stays a number;
* placeholders embedded in longer strings are substituted as text;
* ``${a.b}`` walks nested dicts;
* ``${key:default}`` falls back to ``default`` (always a string).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from sagaflow.saga.core.errors import CommandTemplateError

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


def render_template(template: Any, context: Mapping[str, Any]) -> Any:
    """Return a copy of *template* with every placeholder resolved from *context*.

    Raises:
        CommandTemplateError: If a placeholder without default names a key
            that is not present in *context*.
    """
    if isinstance(template, str):
        return _render_string(template, context)
    if isinstance(template, Mapping):
        return {key: render_template(value, context) for key, value in template.items()}
    if isinstance(template, list | tuple):
        return [render_template(item, context) for item in template]
    return template


def _render_string(value: str, context: Mapping[str, Any]) -> Any:
    whole = _PLACEHOLDER_RE.fullmatch(value)
    if whole is not None:
        return _resolve(whole.group(1), context)

    def _replace(match: re.Match[str]) -> str:
        return str(_resolve(match.group(1), context))

    return _PLACEHOLDER_RE.sub(_replace, value)


def _resolve(expression: str, context: Mapping[str, Any]) -> Any:
    if ":" in expression:
        key, default = expression.split(":", 1)
    else:
        key, default = expression, None

    current: Any = context
    for part in key.strip().split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            current = _MISSING
            break

    if current is not _MISSING:
        return current
    if default is not None:
        return default
    raise CommandTemplateError(
        f"Cannot resolve placeholder '${{{expression}}}' from saga context",
        code="SAGA_TEMPLATE_UNRESOLVED",
        context={"placeholder": expression, "available": sorted(context)},
    )
