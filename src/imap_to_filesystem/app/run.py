# src/imap_to_filesystem/app/run.py
from __future__ import annotations

import logging
import signal
from pathlib import Path
from types import FrameType
from typing import Optional

from imap_to_filesystem.app.coordinator import WatchCoordinator
from imap_to_filesystem.config.loader import AppConfig, LoggerConfig, load_config
from imap_to_filesystem.config.logging_setup import configure_logging, shutdown_logging
from imap_to_filesystem.config.paths import config_path
from imap_to_filesystem.errors import ConfigError, SessionConnectionError

# Give sessions a moment to leave IDLE and log out on shutdown.
SHUTDOWN_GRACE_SECONDS = 15.0


class _Terminate(Exception):
    pass


def _raise_terminate(_signum: int, _frame: Optional[FrameType]) -> None:
    raise _Terminate()


def load_app_config(path: Optional[Path] = None) -> AppConfig:
    return load_config(path or config_path())


def run(config: AppConfig, logger: logging.Logger) -> int:
    """Watch until shutdown. Returns the process exit code."""
    imap_config = config.require_imap()
    coordinator = WatchCoordinator(imap_config, config.filters, logger=logger)

    previous = signal.signal(signal.SIGTERM, _raise_terminate)
    try:
        coordinator.run()
        return 0
    except SessionConnectionError as exc:
        logger.error("Stopping: %s", exc)
        return 1
    except (KeyboardInterrupt, _Terminate):
        logger.info("Shutdown requested")
        return 0
    except Exception:
        logger.exception("Stopping after unexpected error")
        return 1
    finally:
        coordinator.stop()
        coordinator.join(SHUTDOWN_GRACE_SECONDS)
        signal.signal(signal.SIGTERM, previous)


def main(path: Optional[Path] = None) -> int:
    try:
        config = load_app_config(path)
        config.require_imap()
    except ConfigError as exc:
        logger = configure_logging(LoggerConfig())
        logger.error("%s", exc)
        shutdown_logging()
        return 1

    # Recreate the logger with the loaded settings.
    logger = configure_logging(config.logger)
    logger.debug("Config loaded: %d filters", len(config.filters))
    try:
        code = run(config, logger)
        if code == 0:
            logger.info("Watcher stopped.")
        return code
    finally:
        shutdown_logging()


if __name__ == "__main__":
    raise SystemExit(main())
