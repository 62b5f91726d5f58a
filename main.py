import asyncio
import logging
import sys

from registry_cleanup.cleaner import cleanup_registry
from registry_cleanup.config import LOG_FORMAT, Args, load_config
from registry_cleanup.exceptions import RegistryCleanupError
from registry_cleanup.utils import init_logger


def main(argv: list[str] | None = None) -> int:
    args = Args.from_args(argv)
    try:
        config = load_config(args)
    except RegistryCleanupError as err:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logging.critical(str(err))
        return 1

    init_logger(config)
    try:
        asyncio.run(cleanup_registry(config))
    except RegistryCleanupError as err:
        logging.critical(f"Error when cleaning {config.repository}: {err}")
        logging.info("Check your configuration, urls, proxies and try again.")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
