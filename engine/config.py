"""Configuration loader for the interpreter runtime."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple


DEFAULTS: Dict[str, Any] = {
    "base_url": "",
    "retry_attempts": 3,
    "retry_delay_seconds": 2,
    "default_timeout": 10.0,
    "navigation_timeout": 30.0,
    "confirm_timeout": 2.0,
    "poll_interval": 0.25,
    "headless": True,
    "browser_args": (),
    "browser_init_attempts": 3,
    "http_timeout": 30.0,
    "broker_enabled": False,
    "broker_bootstrap_servers": "localhost:9092",
    "broker_group_id": "engine",
    "screenshots_on_failure": True,
    "log_root": "runs",
    "event_log": True,
    "on_row_failure": "abort",
}

ENV_PREFIX = "ENGINE_"
_ROW_POLICIES = {"abort", "continue"}


def _as_bool(value: Any) -> bool:
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _as_args(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(part) for part in value or ())


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_seconds: float

    @property
    def budget_seconds(self) -> float:
        return self.max_attempts * (self.delay_seconds + 1)


@dataclass(slots=True, frozen=True)
class RunConfig:
    base_url: str = DEFAULTS["base_url"]
    retry_attempts: int = DEFAULTS["retry_attempts"]
    retry_delay_seconds: float = DEFAULTS["retry_delay_seconds"]
    default_timeout: float = DEFAULTS["default_timeout"]
    navigation_timeout: float = DEFAULTS["navigation_timeout"]
    confirm_timeout: float = DEFAULTS["confirm_timeout"]
    poll_interval: float = DEFAULTS["poll_interval"]
    headless: bool = DEFAULTS["headless"]
    browser_args: Tuple[str, ...] = DEFAULTS["browser_args"]
    browser_init_attempts: int = DEFAULTS["browser_init_attempts"]
    http_timeout: float = DEFAULTS["http_timeout"]
    broker_enabled: bool = DEFAULTS["broker_enabled"]
    broker_bootstrap_servers: str = DEFAULTS["broker_bootstrap_servers"]
    broker_group_id: str = DEFAULTS["broker_group_id"]
    screenshots_on_failure: bool = DEFAULTS["screenshots_on_failure"]
    log_root: Path = field(default_factory=lambda: Path(DEFAULTS["log_root"]))
    event_log: bool = DEFAULTS["event_log"]
    on_row_failure: str = DEFAULTS["on_row_failure"]

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.retry_attempts, delay_seconds=self.retry_delay_seconds)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "RunConfig":
        data = dict(DEFAULTS)
        data.update(mapping)
        policy = str(data["on_row_failure"]).lower()
        if policy not in _ROW_POLICIES:
            raise ValueError(f"on_row_failure must be one of {sorted(_ROW_POLICIES)}, got {policy!r}")
        return cls(
            base_url=str(data["base_url"]).rstrip("/"),
            retry_attempts=int(data["retry_attempts"]),
            retry_delay_seconds=float(data["retry_delay_seconds"]),
            default_timeout=float(data["default_timeout"]),
            navigation_timeout=float(data["navigation_timeout"]),
            confirm_timeout=float(data["confirm_timeout"]),
            poll_interval=float(data["poll_interval"]),
            headless=_as_bool(data["headless"]),
            browser_args=_as_args(data["browser_args"]),
            browser_init_attempts=max(1, int(data["browser_init_attempts"])),
            http_timeout=float(data["http_timeout"]),
            broker_enabled=_as_bool(data["broker_enabled"]),
            broker_bootstrap_servers=str(data["broker_bootstrap_servers"]),
            broker_group_id=str(data["broker_group_id"]),
            screenshots_on_failure=_as_bool(data["screenshots_on_failure"]),
            log_root=Path(data["log_root"]),
            event_log=_as_bool(data["event_log"]),
            on_row_failure=policy,
        )


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Path | None = None, env: str | None = None) -> RunConfig:
    """Load settings from defaults, an optional TOML file and the environment.

    The TOML ``[settings]`` table is applied first, then the overlay
    ``[settings.env.<name>]`` for the selected environment, then any
    ``ENGINE_*`` environment variables.
    """

    env_map: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX) and key != f"{ENV_PREFIX}ENV":
            env_map[key[len(ENV_PREFIX):].lower()] = value

    file_map: Dict[str, Any] = {}
    path = config_path or Path("settings.toml")
    if path.exists():
        settings = dict(_load_toml(path).get("settings", {}))
        overlays = settings.pop("env", {})
        selected = env or os.environ.get(f"{ENV_PREFIX}ENV")
        file_map = settings
        if selected:
            file_map = {**settings, **overlays.get(selected, {})}

    merged = {**file_map, **env_map}
    return RunConfig.from_mapping(merged)


def ensure_run_directories(run_id: str, config: RunConfig) -> Dict[str, Path]:
    base = config.log_root / run_id
    shots = base / "shots"
    base.mkdir(parents=True, exist_ok=True)
    shots.mkdir(parents=True, exist_ok=True)
    return {"base": base, "shots": shots}
