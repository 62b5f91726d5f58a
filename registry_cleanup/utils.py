import base64
import logging
from datetime import datetime, timezone
from enum import StrEnum
from logging import LogRecord

import dateutil.parser

from registry_cleanup.config import LOG_FORMAT, RetentionConfig

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Colors(StrEnum):
    RED = "\033[31m"
    CRED = "\033[91m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    RESET = "\033[0m"


class ColoredFormatter(logging.Formatter):
    def __init__(self, fmt: str | None = None, *args, **kwargs) -> None:
        self.format_ = fmt
        self.FORMATS = {
            logging.WARNING: f"{Colors.YELLOW}{self.format_}{Colors.RESET}",
            logging.ERROR: f"{Colors.RED}{self.format_}{Colors.RESET}",
            logging.CRITICAL: f"{Colors.CRED}{self.format_}{Colors.RESET}",
        }
        super().__init__(fmt, *args, **kwargs)

    def format(self, record: LogRecord) -> str:
        log_fmt = self.FORMATS.get(record.levelno, self.format_)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def init_logger(config: RetentionConfig) -> None:
    logging.getLogger("httpx").disabled = not config.dump

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
    handlers: list[logging.Handler] = [stream_handler]

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        handlers=handlers,
        force=True,
    )


def true_utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse a registry timestamp; naive values are taken as UTC."""
    parsed = dateutil.parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_basic_auth(username: str, password: str) -> str:
    basic_auth = base64.standard_b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {basic_auth}"


def format_timestamp(value: datetime | None) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value else "-"
