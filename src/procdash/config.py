"""Runtime configuration for procdash."""

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

ENV_PREFIX = "PROCDASH_"
MIN_TICK_INTERVAL = 0.1


def _default_dump_file() -> Path:
    return Path.home() / ".procdash" / "processes.json"


@dataclass(slots=True, frozen=True)
class DashboardConfig:
    """Dashboard settings. Defaults match a 1 Hz refresh with a one minute history."""

    tick_interval: float = 1.0
    history_len: int = 60
    max_log_lines: int = 500
    initial_log_lines: int = 100
    scroll_step: int = 10
    probe_timeout: float = 0.15
    tool_timeout: float = 5.0
    command_timeout: float = 30.0
    dump_file: Path = field(default_factory=_default_dump_file)
    supervisor_command: tuple[str, ...] = ("pmc",)
    log_file: Path | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # Frozen dataclass, so bypass __setattr__ for the floor
        object.__setattr__(self, "tick_interval", max(MIN_TICK_INTERVAL, self.tick_interval))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DashboardConfig":
        """
        Build a config from PROCDASH_* environment variables.

        Unset variables keep their defaults. A value that does not parse raises
        ValueError naming the offending variable.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        for name, convert in (
            ("tick_interval", float),
            ("history_len", int),
            ("max_log_lines", int),
            ("initial_log_lines", int),
            ("scroll_step", int),
            ("probe_timeout", float),
            ("tool_timeout", float),
            ("command_timeout", float),
        ):
            key = ENV_PREFIX + name.upper()
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            try:
                values[name] = convert(raw)
            except ValueError as exc:
                raise ValueError(f"{key}: invalid value {raw!r}") from exc

        if env.get(ENV_PREFIX + "DUMP_FILE"):
            values["dump_file"] = Path(env[ENV_PREFIX + "DUMP_FILE"]).expanduser()
        if env.get(ENV_PREFIX + "SUPERVISOR"):
            command = tuple(shlex.split(env[ENV_PREFIX + "SUPERVISOR"]))
            if command:
                values["supervisor_command"] = command
        if env.get(ENV_PREFIX + "LOG_FILE"):
            values["log_file"] = Path(env[ENV_PREFIX + "LOG_FILE"]).expanduser()
        if env.get(ENV_PREFIX + "LOG_LEVEL"):
            values["log_level"] = env[ENV_PREFIX + "LOG_LEVEL"].upper()

        return cls(**values)
