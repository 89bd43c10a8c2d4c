"""Configuration loading from CLI args, env vars, and an optional YAML file.

Precedence: CLI flag > environment variable > YAML file > defaults.
"""

import argparse
import logging
import os
import re
from dataclasses import dataclass, field

import jsonschema
import yaml

from eventlog_exporter.encoder import COMPRESSION_CODECS
from eventlog_exporter.errors import ConfigError
from eventlog_exporter.sources import DEFAULT_COMMAND

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ("Application", "Security", "Setup", "System")
OUTPUT_EXTENSION = "parquet"
WRITE_MODES = ("overwrite", "append")
SOURCES = ("evtx", "command")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

_CHANNEL_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 ._-]*$")

CONFIG_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "channels": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1,
            "uniqueItems": True,
        },
        "output_dir": {"type": "string", "minLength": 1},
        "interval": {"type": "number", "exclusiveMinimum": 0},
        "max_records": {"type": "integer", "minimum": 1},
        "source": {"enum": list(SOURCES)},
        "evtx_dir": {"type": "string", "minLength": 1},
        "command": {"type": "string", "minLength": 1},
        "command_timeout": {"type": "number", "exclusiveMinimum": 0},
        "write_mode": {"enum": list(WRITE_MODES)},
        "compression": {"enum": list(COMPRESSION_CODECS)},
        "log_level": {"enum": list(LOG_LEVELS)},
    },
}


@dataclass(frozen=True)
class ChannelSpec:
    name: str
    output_path: str


@dataclass(frozen=True)
class Config:
    channels: tuple[str, ...] = DEFAULT_CHANNELS
    output_dir: str = "EventLogs"
    interval: float = 60.0
    max_records: int = 10
    source: str = "evtx"
    evtx_dir: str = r"C:\Windows\System32\winevt\Logs"
    command: str = DEFAULT_COMMAND
    command_timeout: float = 30.0
    write_mode: str = "overwrite"
    compression: str = "snappy"
    log_level: str = "INFO"
    run_once: bool = False
    channel_specs: tuple[ChannelSpec, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        validate_config(self)
        specs = tuple(
            ChannelSpec(name, os.path.join(self.output_dir, f"{name}.{OUTPUT_EXTENSION}"))
            for name in self.channels
        )
        object.__setattr__(self, "channel_specs", specs)


def validate_config(config: Config):
    """Reject settings the scheduler cannot run with."""
    errors = []
    if not config.channels:
        errors.append("channels must not be empty")
    if len(set(config.channels)) != len(config.channels):
        errors.append("channels must be unique")
    for name in config.channels:
        if not _CHANNEL_NAME_RE.match(name):
            errors.append(f"invalid channel name: {name!r}")
    if config.interval <= 0:
        errors.append("interval must be positive")
    if config.max_records < 1:
        errors.append("max_records must be at least 1")
    if config.source not in SOURCES:
        errors.append(f"source must be one of {', '.join(SOURCES)}")
    if config.write_mode not in WRITE_MODES:
        errors.append(f"write_mode must be one of {', '.join(WRITE_MODES)}")
    if config.compression not in COMPRESSION_CODECS:
        errors.append(f"compression must be one of {', '.join(COMPRESSION_CODECS)}")
    if config.log_level not in LOG_LEVELS:
        errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")
    if errors:
        raise ConfigError("; ".join(errors))


def load_yaml_config(path: str | None) -> dict:
    """Load and validate a YAML config file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    validator = jsonschema.Draft202012Validator(CONFIG_SCHEMA)
    messages = [error.message for error in validator.iter_errors(data)]
    if messages:
        raise ConfigError(f"invalid config {path}: " + "; ".join(messages))

    logger.info("Loaded YAML config from %s", path)
    return data


def _split_channels(value: str) -> tuple[str, ...]:
    return tuple(c.strip() for c in value.split(",") if c.strip())


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export the tail of event log channels to Parquet files",
    )
    parser.add_argument("--config", default=None,
                        help="Path to YAML config file")
    parser.add_argument("--channels", default=None,
                        help="Comma-separated channel names")
    parser.add_argument("--output-dir", default=None,
                        help="Directory for <Channel>.parquet files")
    parser.add_argument("--interval", type=float, default=None,
                        help="Seconds between cycles (default: 60)")
    parser.add_argument("--max-records", type=int, default=None,
                        help="Most recent records fetched per channel (default: 10)")
    parser.add_argument("--source", choices=SOURCES, default=None,
                        help="Where entries come from (default: evtx)")
    parser.add_argument("--write-mode", choices=WRITE_MODES, default=None,
                        help="Overwrite each cycle or append a row group (default: overwrite)")
    parser.add_argument("--once", action="store_true", default=False,
                        help="Run a single cycle and exit")
    return parser


def load_config(argv=None) -> Config:
    """Build Config from YAML, env vars, then CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_cli_parser().parse_args(argv)
    yaml_data = load_yaml_config(args.config or os.environ.get("EXPORTER_CONFIG"))

    def pick(cli_value, env_key, yaml_key, default, cast=str):
        if cli_value is not None:
            return cli_value
        if env_key in os.environ:
            return cast(os.environ[env_key])
        if yaml_key in yaml_data:
            return cast(yaml_data[yaml_key])
        return default

    if args.channels is not None:
        channels = _split_channels(args.channels)
    elif "EXPORTER_CHANNELS" in os.environ:
        channels = _split_channels(os.environ["EXPORTER_CHANNELS"])
    else:
        channels = tuple(yaml_data.get("channels", Config.channels))

    try:
        return Config(
            channels=channels,
            output_dir=pick(args.output_dir, "EXPORTER_OUTPUT_DIR", "output_dir", Config.output_dir),
            interval=pick(args.interval, "EXPORTER_INTERVAL", "interval", Config.interval, float),
            max_records=pick(args.max_records, "EXPORTER_MAX_RECORDS", "max_records",
                             Config.max_records, int),
            source=pick(args.source, "EXPORTER_SOURCE", "source", Config.source),
            evtx_dir=pick(None, "EXPORTER_EVTX_DIR", "evtx_dir", Config.evtx_dir),
            command=pick(None, "EXPORTER_COMMAND", "command", Config.command),
            command_timeout=pick(None, "EXPORTER_COMMAND_TIMEOUT", "command_timeout",
                                 Config.command_timeout, float),
            write_mode=pick(args.write_mode, "EXPORTER_WRITE_MODE", "write_mode", Config.write_mode),
            compression=pick(None, "EXPORTER_COMPRESSION", "compression", Config.compression),
            log_level=pick(None, "LOG_LEVEL", "log_level", Config.log_level).upper(),
            run_once=args.once,
        )
    except ValueError as e:
        raise ConfigError(f"invalid setting: {e}") from e
