"""Configuration: frozen dataclass built from defaults, YAML, env vars and CLI args."""

import logging
import os
import sys
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def parse_tags(value: str) -> dict[str, str]:
    """Parse ``"env=prod,region=eu"`` into a dict. Pairs without '=' are skipped."""
    tags = {}
    for pair in value.split(","):
        if "=" not in pair:
            continue
        key, val = pair.split("=", 1)
        if key.strip():
            tags[key.strip()] = val.strip()
    return tags


@dataclass(frozen=True)
class Config:
    dsn: str = ""
    timeout: float = 5.0
    logger: str = "root"
    compression: bool = False
    default_tags: dict = field(default_factory=dict)
    scrub_patterns: tuple = ()
    log_level: str = "INFO"


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns an empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, ignoring it", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def split_argv(argv: list[str]) -> dict[str, str]:
    """Collect ``--key value`` / ``--key=value`` / bare ``--flag`` args."""
    args = {}
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg.startswith("--"):
            if "=" in arg:
                key, value = arg[2:].split("=", 1)
            elif i + 1 < len(argv) and not argv[i + 1].startswith("--"):
                key = arg[2:]
                value = argv[i + 1]
                i += 1
            else:
                key = arg[2:]
                value = "true"
            args[key.replace("-", "_")] = value
        i += 1
    return args


def load_config(argv: list[str] | None = None, yaml_data: dict | None = None) -> Config:
    """Build Config from defaults <- YAML <- env vars <- CLI args (highest priority).

    When *yaml_data* is None it is read from the file named by ``--config``
    or ``RAVEN_CONFIG``.
    """
    if argv is None:
        argv = sys.argv[1:]
    cli = split_argv(argv)
    if yaml_data is None:
        yaml_data = load_yaml_config(cli.get("config") or os.environ.get("RAVEN_CONFIG"))

    kwargs: dict = {
        "dsn": str(yaml_data.get("dsn", Config.dsn)),
        "timeout": float(yaml_data.get("timeout", Config.timeout)),
        "logger": str(yaml_data.get("logger", Config.logger)),
        "compression": _parse_bool(yaml_data.get("compression", Config.compression)),
        "default_tags": {
            str(k): str(v) for k, v in (yaml_data.get("tags") or {}).items()
        },
        "scrub_patterns": tuple(yaml_data.get("scrub_patterns") or ()),
        "log_level": str(yaml_data.get("log_level", Config.log_level)),
    }

    env = os.environ
    if "RAVEN_DSN" in env:
        kwargs["dsn"] = env["RAVEN_DSN"]
    if "RAVEN_TIMEOUT" in env:
        kwargs["timeout"] = float(env["RAVEN_TIMEOUT"])
    if "RAVEN_LOGGER" in env:
        kwargs["logger"] = env["RAVEN_LOGGER"]
    if "RAVEN_COMPRESSION" in env:
        kwargs["compression"] = _parse_bool(env["RAVEN_COMPRESSION"])
    if "RAVEN_TAGS" in env:
        kwargs["default_tags"] = {**kwargs["default_tags"], **parse_tags(env["RAVEN_TAGS"])}
    if "RAVEN_LOG_LEVEL" in env:
        kwargs["log_level"] = env["RAVEN_LOG_LEVEL"]

    for key, value in cli.items():
        if key in ("dsn", "logger"):
            kwargs[key] = value
        elif key == "timeout":
            kwargs[key] = float(value)
        elif key == "compression":
            kwargs[key] = _parse_bool(value)
        elif key == "tags":
            kwargs["default_tags"] = {**kwargs["default_tags"], **parse_tags(value)}
        elif key == "scrub":
            kwargs["scrub_patterns"] = tuple(p for p in value.split(",") if p)
        elif key == "log_level":
            kwargs[key] = value.upper()

    return Config(**kwargs)
