"""sagaflow core — configuration."""

from sagaflow.core.config import Config, config_properties

__all__ = ["Config", "config_properties"]
