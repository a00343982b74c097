"""
Configuration package.

Type-safe settings loaded from environment variables, ``.env``, an optional
YAML file and command line overrides.
"""

from .settings import ProbeSettings, load_settings, load_yaml_config

__all__ = [
    "ProbeSettings",
    "load_settings",
    "load_yaml_config",
]
