from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from imap_to_filesystem.app.coordinator import WatchCoordinator
from imap_to_filesystem.app.run import load_app_config
from imap_to_filesystem.config.logging_setup import configure_logging, shutdown_logging
from imap_to_filesystem.errors import ConfigError, SessionConnectionError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sweep every watched mailbox once and exit.")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    try:
        config = load_app_config(args.config)
        imap_config = config.require_imap()
    except ConfigError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1

    logger = configure_logging(config.logger)
    try:
        coordinator = WatchCoordinator(imap_config, config.filters, logger=logger)
        try:
            reports = coordinator.sweep_once()
        except SessionConnectionError as exc:
            print(f"[ERROR] {exc}", file=sys.stderr)
            return 1

        for report in reports:
            print(
                f"[sweep] mailbox={report.mailbox} filters={report.filters_searched} "
                f"matched={report.messages_matched} saved={report.files_saved} failures={report.failures}"
            )
        return 0
    finally:
        shutdown_logging()


if __name__ == "__main__":
    raise SystemExit(main())
