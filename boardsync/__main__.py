#!/usr/bin/env python3
"""
Run the board bot.

Usage:
    python -m boardsync --config config/boardsync.yaml
"""
import argparse
import sys

from .config import BoardConfig, ConfigError
from .telegram_bridge import BoardBot

DEFAULT_CONFIG = "~/.config/boardsync/config.yaml"


def main(argv=None):
    parser = argparse.ArgumentParser(description="Kanban board Telegram bot")
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG})",
    )
    args = parser.parse_args(argv)

    try:
        cfg = BoardConfig.load(args.config)
        cfg.bot_token()
    except ConfigError as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return 1

    BoardBot(cfg).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
