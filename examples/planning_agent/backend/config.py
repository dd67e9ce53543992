from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from typing import Any

from dotenv import load_dotenv

ENV_PREFIX = "PLANNER_"


@dataclass(frozen=True)
class PlannerConfig:
    base_url: str = "https://api.businesscentral.dynamics.com/v2.0"
    environment: str = "sandbox"
    company_id: str = ""
    access_token: str = ""
    api_publisher: str = "knowall"
    api_group: str = "thyme"
    api_version: str = "v1.0"
    request_timeout: float = 30.0
    fan_out: int = 5  # concurrent requests per phase / per cache fill
    daily_ceiling: float = 24.0
    hours_precision: int = 2
    palette_size: int = 10
    weeks_to_show: int = 3
    email_domain: str | None = None

    @property
    def standard_api_url(self) -> str:
        return f"{self.base_url}/{self.environment}/api/v2.0/companies({self.company_id})"

    @property
    def extension_api_url(self) -> str:
        return (
            f"{self.base_url}/{self.environment}/api/{self.api_publisher}/"
            f"{self.api_group}/{self.api_version}/companies({self.company_id})"
        )


_DEFAULTS = PlannerConfig()


def _coerce(name: str, raw: Any) -> Any:
    """Coerce a raw value to the type of the default; fall back to the default."""
    default = getattr(_DEFAULTS, name)
    if raw is None or raw == "":
        return default
    try:
        if isinstance(default, bool):
            return str(raw).strip().lower() in {"1", "true", "yes", "on"}
        if isinstance(default, int):
            val = int(raw)
            return val if val > 0 else default
        if isinstance(default, float):
            fval = float(raw)
            return fval if fval > 0 else default
    except (TypeError, ValueError):
        return default
    return str(raw)


def config_from_mapping(data: dict[str, Any], base: PlannerConfig | None = None) -> PlannerConfig:
    known = {f.name for f in fields(PlannerConfig)}
    updates = {k: _coerce(k, v) for k, v in data.items() if k in known}
    return replace(base or PlannerConfig(), **updates)


def load_planner_config(path: str) -> PlannerConfig:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return config_from_mapping(data.get("ledger") or data)


def load_from_env(default_path: str | None = None) -> PlannerConfig:
    """Build the config from an optional JSON file overlaid with PLANNER_* variables.

    A ``.env`` file in the working directory is loaded first; variables
    already set in the environment are not overridden.
    """
    load_dotenv()
    path = os.environ.get(f"{ENV_PREFIX}CONFIG_PATH") or default_path
    cfg = PlannerConfig()
    if path and os.path.isfile(path):
        cfg = load_planner_config(path)
    env_values = {
        f.name: os.environ[f"{ENV_PREFIX}{f.name.upper()}"]
        for f in fields(PlannerConfig)
        if f"{ENV_PREFIX}{f.name.upper()}" in os.environ
    }
    return config_from_mapping(env_values, base=cfg)
