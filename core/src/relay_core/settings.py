"""Relay settings: defaults, then settings.json, then environment.

Loaded once at startup. The resulting `Settings` is frozen, so the owner
code and listen address stay constant for the process lifetime.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from .paths import Paths

log = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "host": "0.0.0.0",
    "port": 10000,
    "owner_code": "",
    "audit_recent_limit": 50,
}

# Environment variable -> setting key.
ENV_KEYS = {
    "HOST": "host",
    "PORT": "port",
    "OWNER_CODE": "owner_code",
}

_INT_KEYS = {"port", "audit_recent_limit"}


@dataclass(frozen=True)
class Settings:
    """Immutable relay configuration.

    Usage:
        settings = Settings.load(paths)
        server = RelayServer(..., host=settings.host, port=settings.port)
    """

    host: str = DEFAULTS["host"]
    port: int = DEFAULTS["port"]
    owner_code: str = DEFAULTS["owner_code"]
    audit_recent_limit: int = DEFAULTS["audit_recent_limit"]

    @classmethod
    def load(
        cls,
        paths: Paths,
        environ: Mapping[str, str] | None = None,
    ) -> Settings:
        """Merge defaults, the settings file, and the environment."""
        values = dict(DEFAULTS)
        values.update(_read_settings_file(paths))

        env = os.environ if environ is None else environ
        for env_key, key in ENV_KEYS.items():
            if env.get(env_key):
                values[key] = env[env_key]

        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key not in known:
                log.warning("ignoring unknown setting: %s", key)
                continue
            kwargs[key] = int(value) if key in _INT_KEYS else str(value)
        return cls(**kwargs)

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with non-None *overrides* applied (CLI flags)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def owner_enabled(self) -> bool:
        return bool(self.owner_code)


def _read_settings_file(paths: Paths) -> dict[str, Any]:
    try:
        raw = paths.settings_file.read_text(encoding="utf-8")
        stored = json.loads(raw)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as exc:
        log.warning("ignoring malformed %s: %s", paths.settings_file, exc)
        return {}
    if not isinstance(stored, dict):
        log.warning("ignoring %s: expected a JSON object", paths.settings_file)
        return {}
    return stored
