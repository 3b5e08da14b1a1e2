# src/conductor_worker/config.py

"""Worker configuration resolved from code options and environment variables.

Two layers live here:
- ClientSettings: how to reach the server (URL, timeouts, rate-limit backoff).
- ConfigResolver: per-worker polling options with a four-tier env override.

Resolution order for every polling property, highest first:
1. CONDUCTOR_WORKER_<WORKERNAME>_<PROPERTY>
2. conductor.worker.<workerName>.<property>
3. CONDUCTOR_WORKER_ALL_<PROPERTY>
4. conductor.worker.all.<property>
5. value from code (per-worker override, else manager-wide option)
6. built-in default

All environment access goes through an EnvSource built once by the caller,
so nothing in this module reads os.environ behind the caller's back.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONDUCTOR"

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_CAMEL_RE = re.compile(r"[A-Z]")


@dataclass(frozen=True, slots=True)
class EnvSource:
    """Read-only view over environment variables."""

    values: Mapping[str, str]

    @staticmethod
    def from_environ(*, use_dotenv: bool = True) -> EnvSource:
        """
        Snapshot os.environ, optionally after loading a local .env file.

        Real environment variables always win over .env entries.
        """
        if use_dotenv:
            load_dotenv(override=False)
        return EnvSource(dict(os.environ))

    @staticmethod
    def empty() -> EnvSource:
        return EnvSource({})

    def get(self, name: str) -> str | None:
        return self.values.get(name)


@dataclass(frozen=True, slots=True)
class ClientSettings:
    server_url: str
    http_timeout_seconds: float
    rate_limit_retries: int
    rate_limit_delay_ms: float
    log_level: str

    @staticmethod
    def from_env(env: EnvSource | None = None) -> ClientSettings:
        env = env if env is not None else EnvSource.from_environ()

        def _str(suffix: str, default: str) -> str:
            raw = env.get(f"{ENV_PREFIX}_{suffix}")
            return default if raw is None or raw.strip() == "" else raw.strip()

        def _num(suffix: str, default: float) -> float:
            raw = env.get(f"{ENV_PREFIX}_{suffix}")
            if raw is None or raw.strip() == "":
                return default
            try:
                return float(raw)
            except ValueError:
                return default

        return ClientSettings(
            server_url=_str("SERVER_URL", "http://localhost:8080/api").rstrip("/"),
            http_timeout_seconds=max(0.1, _num("HTTP_TIMEOUT_SECONDS", 30.0)),
            rate_limit_retries=max(0, int(_num("RATE_LIMIT_RETRIES", 5))),
            rate_limit_delay_ms=max(0.0, _num("RATE_LIMIT_DELAY_MS", 1000.0)),
            log_level=_str("LOG_LEVEL", "INFO").upper(),
        )


@dataclass(frozen=True, slots=True)
class PollingOptions:
    """
    Caller-supplied polling options. Every field is optional.

    Durations (poll_interval, poll_timeout) are in milliseconds.
    """

    poll_interval: float | None = None
    concurrency: int | None = None
    domain: str | None = None
    worker_id: str | None = None
    poll_timeout: float | None = None
    paused: bool | None = None
    register_task_def: bool | None = None
    overwrite_task_def: bool | None = None
    strict_schema: bool | None = None

    def merged(self, other: PollingOptions | Mapping[str, Any] | None) -> PollingOptions:
        """Return a copy with every non-None field of `other` laid on top."""
        if other is None:
            return self
        overlay = as_polling_options(other)
        changes = {
            f.name: getattr(overlay, f.name)
            for f in fields(overlay)
            if getattr(overlay, f.name) is not None
        }
        return replace(self, **changes) if changes else self

    def set_fields(self) -> frozenset[str]:
        return frozenset(f.name for f in fields(self) if getattr(self, f.name) is not None)


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    """Fully resolved polling options for one worker. Replaced, never mutated."""

    poll_interval: float
    concurrency: int
    poll_timeout: float
    paused: bool
    register_task_def: bool
    overwrite_task_def: bool
    strict_schema: bool
    domain: str | None = None
    worker_id: str | None = None


DEFAULT_VALUES: dict[str, Any] = {
    "poll_interval": 100,
    "concurrency": 1,
    "register_task_def": False,
    "poll_timeout": 100,
    "paused": False,
    "overwrite_task_def": True,
    "strict_schema": False,
}

PROPERTY_TYPES: dict[str, type] = {
    "poll_interval": float,
    "domain": str,
    "worker_id": str,
    "concurrency": int,
    "register_task_def": bool,
    "poll_timeout": float,
    "paused": bool,
    "overwrite_task_def": bool,
    "strict_schema": bool,
}

CONFIGURABLE_PROPERTIES: tuple[str, ...] = tuple(PROPERTY_TYPES)


def to_snake_case(name: str) -> str:
    """pollInterval -> poll_interval. Already snake-case names pass through."""
    return _CAMEL_RE.sub(lambda m: "_" + m.group(0).lower(), name)


def as_polling_options(value: PollingOptions | Mapping[str, Any] | None) -> PollingOptions:
    """Accept PollingOptions or a mapping with snake- or camel-case keys."""
    if value is None:
        return PollingOptions()
    if isinstance(value, PollingOptions):
        return value
    known = set(CONFIGURABLE_PROPERTIES)
    kwargs: dict[str, Any] = {}
    for key, v in value.items():
        name = to_snake_case(str(key))
        if name not in known:
            raise TypeError(f"Unknown polling option: {key}")
        kwargs[name] = v
    return PollingOptions(**kwargs)


def _in_bounds(prop: str, value: Any) -> bool:
    if prop == "concurrency":
        return value >= 1
    if prop in ("poll_interval", "poll_timeout"):
        return value >= 0
    return True


def parse_env_value(raw: str, expected: type, *, log: logging.Logger = logger) -> Any:
    """
    Coerce a raw env string to the property's type.

    Returns None when a number cannot be parsed (the caller falls through to
    the next source).
    """
    if expected is bool:
        return raw.strip().lower() in _TRUE_VALUES
    if expected is int or expected is float:
        try:
            number = float(raw.strip())
        except ValueError:
            log.info("Cannot convert '%s' to number, ignoring invalid value", raw)
            return None
        if number != number or number in (float("inf"), float("-inf")):
            log.info("Cannot convert '%s' to number, ignoring invalid value", raw)
            return None
        if expected is int:
            if not number.is_integer():
                log.info("Cannot convert '%s' to integer, ignoring invalid value", raw)
                return None
            return int(number)
        return number
    return raw


def env_names(worker_name: str, prop: str) -> tuple[str, str, str, str]:
    """The four env variable names for a property, highest precedence first."""
    snake = to_snake_case(prop)
    return (
        f"CONDUCTOR_WORKER_{worker_name.upper()}_{snake.upper()}",
        f"conductor.worker.{worker_name}.{snake}",
        f"CONDUCTOR_WORKER_ALL_{snake.upper()}",
        f"conductor.worker.all.{snake}",
    )


class ConfigResolver:
    """Resolves WorkerConfig snapshots against one EnvSource."""

    def __init__(self, env: EnvSource | None = None, *, log: logging.Logger | None = None) -> None:
        self.env = env if env is not None else EnvSource.empty()
        self.log = log or logger

    def env_value(self, worker_name: str, prop: str) -> tuple[Any, str] | None:
        """First valid env value for a property, with the variable it came from."""
        expected = PROPERTY_TYPES[prop]
        for name in env_names(worker_name, prop):
            raw = self.env.get(name)
            if raw is None:
                continue
            value = parse_env_value(raw, expected, log=self.log)
            if value is None:
                continue
            if not _in_bounds(prop, value):
                self.log.info("Ignoring out-of-range value %s=%s", name, raw)
                continue
            self.log.debug("Using worker config: %s=%s", name, raw)
            return value, name
        return None

    def resolve(
            self,
            worker_name: str,
            options: PollingOptions | None = None,
            overrides: PollingOptions | None = None,
    ) -> WorkerConfig:
        """
        Resolve the effective config for one worker.

        `options` are the manager-wide code options, `overrides` the
        per-worker ones; both may be partially set.
        """
        code = (options or PollingOptions()).merged(overrides)
        resolved: dict[str, Any] = {}

        for prop in CONFIGURABLE_PROPERTIES:
            found = self.env_value(worker_name, prop)
            if found is not None:
                resolved[prop] = found[0]
                continue
            resolved[prop] = self._code_or_default(worker_name, prop, getattr(code, prop))

        return WorkerConfig(**resolved)

    def resolve_defaults(self, options: PollingOptions | None = None) -> WorkerConfig:
        """Code options over built-in defaults, without consulting the environment."""
        code = options or PollingOptions()
        return WorkerConfig(
            **{prop: self._code_or_default("all", prop, getattr(code, prop)) for prop in CONFIGURABLE_PROPERTIES}
        )

    def _code_or_default(self, worker_name: str, prop: str, value: Any) -> Any:
        if value is not None:
            expected = PROPERTY_TYPES[prop]
            if expected in (int, float):
                try:
                    value = expected(value)
                except (TypeError, ValueError):
                    self.log.info("Ignoring invalid %s=%r for worker %s", prop, value, worker_name)
                    value = None
                else:
                    if not _in_bounds(prop, value):
                        self.log.info("Ignoring out-of-range %s=%r for worker %s", prop, value, worker_name)
                        value = None
            elif expected is bool:
                value = bool(value)
            if value is not None:
                return value
        return DEFAULT_VALUES.get(prop)


def config_summary(worker_name: str, config: WorkerConfig, env: EnvSource | None = None) -> str:
    """
    Human-readable description of where each value came from, e.g.

        Worker 'process_order' configuration:
          poll_interval: 500 (from CONDUCTOR_WORKER_ALL_POLL_INTERVAL)
          concurrency: 5 (from code)
    """
    env = env if env is not None else EnvSource.empty()
    lines = [f"Worker '{worker_name}' configuration:"]
    for f in fields(config):
        value = getattr(config, f.name)
        if value is None:
            continue
        source = "from code"
        for name in env_names(worker_name, f.name):
            if env.get(name) is not None:
                source = f"from {name}"
                break
        lines.append(f"  {f.name}: {value} ({source})")
    return "\n".join(lines)


def config_oneline(worker_name: str, config: WorkerConfig) -> str:
    parts = [
        f"name={worker_name}",
        f"pid={os.getpid()}",
        f"status={'paused' if config.paused else 'active'}",
        f"poll_interval={config.poll_interval:g}ms",
    ]
    if config.domain is not None:
        parts.append(f"domain={config.domain}")
    parts.append(f"concurrency={config.concurrency}")
    parts.append(f"poll_timeout={config.poll_timeout:g}ms")
    parts.append(f"register_task_def={config.register_task_def}")
    return f"Conductor Worker[{', '.join(parts)}]"
