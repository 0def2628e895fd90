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
"""Configuration for sagaflow processes: YAML/TOML files, env overrides, typed binding.

Keys are addressed with dots (``sagaflow.saga.reply_topic``). Lookup order,
highest priority first:

1. ``SAGAFLOW_*`` environment variables (``sagaflow.saga.reply_topic`` is
   overridden by ``SAGAFLOW_SAGA_REPLY_TOPIC``);
2. the loaded file, with profile overlays merged on top;
3. defaults of the bound properties class.

Top-level string values may reference ``${ENV_VAR}``, ``${other.key}`` or
``${key:default}``. Strings nested inside lists or mappings are returned
untouched, so saga payload templates such as ``${orderId}`` survive loading.
"""

from __future__ import annotations

import dataclasses
import os
import re
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, TypeVar, get_type_hints

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ValidationError

T = TypeVar("T")

ENV_PREFIX = "SAGAFLOW_"

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
_MAX_PLACEHOLDER_DEPTH = 10
_CONFIG_PROPERTIES_ATTR = "__sagaflow_config_prefix__"
_MISSING: Any = object()

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_STRING_COERCIONS: dict[Any, Callable[[str], Any]] = {
    int: int,
    float: float,
    bool: lambda raw: raw.strip().lower() in _TRUE_STRINGS,
}


def config_properties(prefix: str) -> Callable[[type[T]], type[T]]:
    """Mark a dataclass or Pydantic model as bindable to the section at *prefix*.

    Usage::

        @config_properties(prefix="sagaflow.saga")
        @dataclass
        class SagaEngineProperties:
            reply_topic: str = "saga.replies"
    """

    def decorator(cls: type[T]) -> type[T]:
        setattr(cls, _CONFIG_PROPERTIES_ATTR, prefix)
        return cls

    return decorator


class Config:
    """Read-only view over a nested configuration mapping."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = data or {}
        self._loaded_sources: list[str] = []

    @property
    def loaded_sources(self) -> list[str]:
        """Files merged into this config, base file first."""
        return list(self._loaded_sources)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    # -- loading ------------------------------------------------------------

    @classmethod
    def from_file(cls, path: str | Path, active_profiles: list[str] | None = None) -> Config:
        """Load *path* and merge each ``{stem}-{profile}{suffix}`` overlay found beside it.

        A missing base file yields an empty config; missing overlays are skipped.
        """
        path = Path(path)
        data: dict[str, Any] = {}
        sources: list[str] = []

        if path.exists():
            candidates = [(path, str(path))]
            candidates += [
                (path.with_name(f"{path.stem}-{profile}{path.suffix}"), f"profile: {profile}")
                for profile in active_profiles or []
            ]
            for candidate, label in candidates:
                if not candidate.exists():
                    continue
                data = _deep_merge(data, _read(candidate))
                sources.append(str(candidate) if candidate == path else f"{candidate} ({label})")

        config = cls(data)
        config._loaded_sources = sources
        return config

    # -- lookup -------------------------------------------------------------

    @staticmethod
    def env_key(key: str) -> str:
        """Environment variable overriding *key*."""
        return ENV_PREFIX + key.removeprefix("sagaflow.").upper().replace(".", "_").replace("-", "_")

    def get(self, key: str, default: Any = None) -> Any:
        """Value at dotted *key*, or *default* when absent."""
        env_value = os.environ.get(self.env_key(key))
        if env_value is not None:
            return env_value

        value = self._lookup(key)
        if value is _MISSING:
            return default
        if isinstance(value, str) and "${" in value:
            return self._resolve_placeholders(value)
        return value

    def get_section(self, prefix: str) -> dict[str, Any]:
        """Mapping stored under *prefix* (empty if absent or not a mapping)."""
        section = self._lookup(prefix)
        return section if isinstance(section, dict) else {}

    def _lookup(self, key: str) -> Any:
        current: Any = self._data
        for part in key.split("."):
            if not isinstance(current, Mapping) or current.get(part) is None:
                return _MISSING
            current = current[part]
        return current

    def _resolve_placeholders(self, value: str, depth: int = 0) -> str:
        if depth > _MAX_PLACEHOLDER_DEPTH:
            raise ValueError(f"Placeholders in '{value}' nest too deeply; check for circular references")

        def substitute(match: re.Match[str]) -> str:
            name, _, fallback = match.group(1).partition(":")
            has_fallback = ":" in match.group(1)

            env_value = os.environ.get(name)
            if env_value is not None:
                return env_value

            referenced = self._lookup(name)
            if referenced is not _MISSING:
                text = str(referenced)
                return self._resolve_placeholders(text, depth + 1) if "${" in text else text
            if has_fallback:
                return fallback
            raise ValueError(f"Cannot resolve placeholder '${{{match.group(1)}}}': not found in environment or config")

        return _PLACEHOLDER_RE.sub(substitute, value)

    # -- binding ------------------------------------------------------------

    def bind(self, config_cls: type[T]) -> T:
        """Build an instance of a ``@config_properties`` class from its section.

        Dataclass fields take the file value or its environment override,
        with ``int``, ``float`` and ``bool`` parsed from strings. Pydantic
        models are validated from the file section.

        Raises:
            ValueError: If *config_cls* is not decorated or fails validation.
        """
        prefix = getattr(config_cls, _CONFIG_PROPERTIES_ATTR, None)
        if prefix is None:
            raise ValueError(f"{config_cls.__name__} is not decorated with @config_properties")

        if isinstance(config_cls, type) and issubclass(config_cls, BaseModel):
            try:
                return config_cls.model_validate(self.get_section(prefix))  # type: ignore[return-value]
            except ValidationError as exc:
                raise ValueError(
                    f"Configuration validation failed for '{config_cls.__name__}' (prefix='{prefix}'):\n{exc}"
                ) from exc

        hints = get_type_hints(config_cls)
        kwargs: dict[str, Any] = {}
        for field in dataclasses.fields(config_cls):  # type: ignore[arg-type]
            value = self.get(f"{prefix}.{field.name}", _MISSING)
            if value is _MISSING:
                continue
            coerce = _STRING_COERCIONS.get(hints.get(field.name))
            kwargs[field.name] = coerce(value) if coerce is not None and isinstance(value, str) else value
        return config_cls(**kwargs)


def _read(path: Path) -> dict[str, Any]:
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            return tomllib.load(f) or {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
