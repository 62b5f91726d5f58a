import logging
import os
import re
from argparse import ArgumentDefaultsHelpFormatter, ArgumentParser
from datetime import timedelta
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from yaml import YAMLError, safe_load

from registry_cleanup.exceptions import ConfigurationError

DEFAULT_REGISTRY = "https://hub.docker.com/v2"
DEFAULT_REGEX = "^[0-9A-Fa-f]+$"
DEFAULT_MIN_KEEP = 3
DEFAULT_MAX_AGE = "360h"
MAX_CONCURRENT_REQUESTS = 20
DEFAULT_TIMEOUT = 20
LOG_FORMAT = "[%(asctime)s] [%(levelname)-8s] |> %(message)s"

MATCH_ALL_PATTERNS = {".*", "^.*$", "^.*", ".*$"}
DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w)")
DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}
TRUTHY = {"1", "true", "yes", "on"}


def parse_duration(value: str) -> timedelta:
    """Parse durations such as `360h`, `15d`, `1h30m` or a bare number of seconds."""
    text = value.strip()
    if re.fullmatch(r"[-+]?\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    sign = -1 if text.startswith("-") else 1
    text = text.lstrip("+-")
    total = timedelta()
    position = 0
    for part in DURATION_PART.finditer(text):
        if part.start() != position:
            break
        total += float(part.group(1)) * DURATION_UNITS[part.group(2)]
        position = part.end()
    if not text or position != len(text):
        raise ValueError(f"invalid duration '{value}'")
    return sign * total


def from_env(*names: str) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def flag_from_env(*names: str) -> bool | None:
    value = from_env(*names)
    if value is None:
        return None
    return value.strip().lower() in TRUTHY


def resolve_env_reference(value: Any) -> Any:
    """Replace `__ENV: NAME` with the content of the environment variable NAME."""
    if isinstance(value, str) and value.startswith("__ENV:"):
        name = value[6:].strip()
        resolved = os.environ.get(name, "")
        if not resolved:
            raise ValueError(f"environment variable '{name}' is not set")
        return resolved
    return value


class Args(BaseModel):
    config: str | None = None
    username: str | None = None
    password: str | None = None
    repo: str | None = None
    registry: str | None = None
    insecure: bool | None = None
    regex: str | None = None
    min: int | None = None
    max: str | None = None
    verbose: bool | None = None
    dryrun: bool | None = None
    dump: bool | None = None

    @classmethod
    def from_args(cls, argv: list[str] | None = None) -> "Args":
        parser = ArgumentParser(
            prog="registry-cleanup",
            description="Clean a registry repository from lingering tags/images",
            formatter_class=ArgumentDefaultsHelpFormatter,
        )
        parser.add_argument(
            "--config",
            help="YAML file with default settings, overridden by flags and env vars",
            default=from_env("PLUGIN_CONFIG"),
        )
        parser.add_argument(
            "-u",
            "--username",
            help="Docker username [$PLUGIN_USERNAME, $DOCKER_USERNAME, $DRONE_REPO_OWNER]",
            default=from_env("PLUGIN_USERNAME", "DOCKER_USERNAME", "DRONE_REPO_OWNER"),
        )
        parser.add_argument(
            "-p",
            "--password",
            help="Docker password [$PLUGIN_PASSWORD, $DOCKER_PASSWORD]",
            default=from_env("PLUGIN_PASSWORD", "DOCKER_PASSWORD"),
        )
        parser.add_argument(
            "-r",
            "--repo",
            help="Repository to target [$PLUGIN_REPO, $DRONE_REPO]",
            default=from_env("PLUGIN_REPO", "DRONE_REPO"),
        )
        parser.add_argument(
            "--registry",
            help=f"Registry to target, {DEFAULT_REGISTRY} when unset [$PLUGIN_REGISTRY]",
            default=from_env("PLUGIN_REGISTRY"),
        )
        parser.add_argument(
            "-i",
            "--insecure",
            action="store_true",
            help="Skip TLS verification [$PLUGIN_INSECURE]",
            default=flag_from_env("PLUGIN_INSECURE"),
        )
        parser.add_argument(
            "--regex",
            help=f"Clean tags that match regex, {DEFAULT_REGEX} when unset [$PLUGIN_REGEX]",
            default=from_env("PLUGIN_REGEX"),
        )
        parser.add_argument(
            "-m",
            "--min",
            type=int,
            help=f"Minimum number of tags to keep, {DEFAULT_MIN_KEEP} when unset [$PLUGIN_MIN]",
            default=from_env("PLUGIN_MIN"),
        )
        parser.add_argument(
            "-M",
            "--max",
            help=f"Maximum age of tags, {DEFAULT_MAX_AGE} when unset [$PLUGIN_MAX]",
            default=from_env("PLUGIN_MAX"),
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Show verbose information [$PLUGIN_VERBOSE]",
            default=flag_from_env("PLUGIN_VERBOSE"),
        )
        parser.add_argument(
            "--dryrun",
            action="store_true",
            help="Log the tags that would be deleted without deleting them [$PLUGIN_DRYRUN]",
            default=flag_from_env("PLUGIN_DRYRUN"),
        )
        parser.add_argument(
            "--dump",
            action="store_true",
            help="Dump network requests [$PLUGIN_DUMP]",
            default=flag_from_env("PLUGIN_DUMP"),
        )
        args = parser.parse_args(argv)
        return cls(**vars(args))

    def overrides(self) -> dict[str, Any]:
        """Settings given on the command line or via env vars, keyed like RetentionConfig."""
        mapping = {
            "username": self.username,
            "password": self.password,
            "repository": self.repo,
            "registry_url": self.registry,
            "insecure": self.insecure,
            "name_pattern": self.regex,
            "min_keep": self.min,
            "max_age": self.max,
            "verbose": self.verbose,
            "dry_run": self.dryrun,
            "dump": self.dump,
        }
        return {key: value for key, value in mapping.items() if value is not None}


class RetentionConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    username: str = ""
    password: str = ""
    repository: str
    registry_url: str = DEFAULT_REGISTRY
    name_pattern: re.Pattern = Field(default=DEFAULT_REGEX, validate_default=True)
    min_keep: int = DEFAULT_MIN_KEEP
    max_age: timedelta = Field(default=DEFAULT_MAX_AGE, validate_default=True)
    dry_run: bool = False
    verbose: bool = False
    dump: bool = False
    insecure: bool = False
    timeout: int = DEFAULT_TIMEOUT
    proxy: str | None = None
    max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS
    log_file: Path | None = None

    @property
    def is_hub(self) -> bool:
        return self.registry_url == DEFAULT_REGISTRY

    @field_validator("username", "password", mode="before")
    @classmethod
    def handle_env_vars(cls, v: Any) -> Any:
        return resolve_env_reference(v)

    @field_validator("repository")
    @classmethod
    def strip_repository(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("repository must be set")
        return value

    @field_validator("registry_url")
    @classmethod
    def set_registry_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(
                f"invalid registry url '{value}': expected <scheme>://<host>[:port]"
            )
        return value

    @field_validator("name_pattern", mode="before")
    @classmethod
    def compile_name_pattern(cls, value: Any) -> re.Pattern:
        if isinstance(value, re.Pattern):
            value = value.pattern
        if value in MATCH_ALL_PATTERNS:
            raise ValueError(
                f"name pattern '{value}' matches every tag, refusing to clean everything"
            )
        try:
            return re.compile(value)
        except (re.error, TypeError) as err:
            raise ValueError(f"invalid name pattern '{value}': {err}") from err

    @field_validator("min_keep")
    @classmethod
    def check_min_keep(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("minimum number of tags to keep must be greater than 0")
        return value

    @field_validator("max_age", mode="before")
    @classmethod
    def parse_max_age(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip().upper().startswith("P"):
            return parse_duration(value)
        return value

    @field_validator("max_age")
    @classmethod
    def check_max_age(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("maximum age of tags must be greater than 0")
        return value

    @field_validator("max_concurrent_requests")
    @classmethod
    def set_max_concurrent_requests(cls, value: int) -> int:
        if value <= 0:
            logging.error("Max_concurrent_requests must be greater than 0. Set 10")
            return 10
        return value

    @field_validator("proxy", mode="before")
    @classmethod
    def set_proxy(cls, value: Any) -> str | None:
        if not value:
            return None
        if isinstance(value, str) and value.startswith("__ENV:"):
            value = os.environ.get(value[6:].strip(), "")
            if not value:
                return None

        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(
                "field proxy must be a valid url: <scheme>://<address>[:port]"
            )
        return value

    @field_validator("timeout")
    @classmethod
    def set_timeout(cls, value: int) -> int:
        if not 0 < value <= 120:
            logging.error("Timeout must be in range 1-120. Set 20")
            return DEFAULT_TIMEOUT
        return value

    @model_validator(mode="after")
    def require_hub_credentials(self) -> "RetentionConfig":
        if self.is_hub and not (self.username and self.password):
            raise ValueError(
                f"username and password are required to clean {DEFAULT_REGISTRY}"
            )
        return self


def first_error(err: ValidationError) -> str:
    error = err.errors()[0]
    message = error["msg"].removeprefix("Value error, ")
    location = ".".join(str(part) for part in error["loc"])
    return f"{location}: {message}" if location else message


def build_config(data: dict[str, Any]) -> RetentionConfig:
    try:
        return RetentionConfig.model_validate(data)
    except ValidationError as err:
        raise ConfigurationError(f"Invalid config: {first_error(err)}") from err


def read_config_file(path: str | Path) -> dict[str, Any]:
    try:
        with open(path, "r") as conf_file:
            data = safe_load(conf_file)
    except OSError as err:
        raise ConfigurationError(f"Cannot read config file '{path}': {err}") from err
    except YAMLError as err:
        raise ConfigurationError(f"Invalid YAML in config file '{path}': {err}") from err

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file '{path}' must contain a mapping")
    return data


def load_config(args: Args) -> RetentionConfig:
    data = read_config_file(args.config) if args.config else {}
    data.update(args.overrides())
    return build_config(data)
