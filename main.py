#!/usr/bin/env python3
"""
Start the quiz kiosk Discord bot.

The bot token comes from DISCORD_BOT_TOKEN, or from ``bot.token`` in the
config file when the variable is unset. Copy config.example.json to
config.json to get started.

Usage:
    python main.py [--config PATH] [--log-level LEVEL]
"""

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from quiz_kiosk.bot import run_bot, setup_logging

TOKEN_ENV_VAR = "DISCORD_BOT_TOKEN"
PLACEHOLDER_TOKEN = "YOUR_DISCORD_BOT_TOKEN_HERE"


def read_config(path: Path) -> Dict[str, Any]:
    """Read the JSON config; any problem aborts startup with a readable message."""
    if not path.exists():
        raise SystemExit(f"❌ {path} not found. Copy config.example.json to {path.name} and set your bot token.")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"❌ Invalid JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise SystemExit(f"❌ Could not read {path}: {exc}") from exc
    if not isinstance(config, dict):
        raise SystemExit(f"❌ {path} must contain a JSON object")
    return config


def resolve_token(config: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None) -> str:
    """The environment variable wins over the config file."""
    environ = os.environ if environ is None else environ
    token = environ.get(TOKEN_ENV_VAR) or (config.get('bot') or {}).get('token')
    if not token or token == PLACEHOLDER_TOKEN:
        raise SystemExit(
            f"❌ Discord bot token not configured. Set {TOKEN_ENV_VAR} "
            f"or fill in bot.token in the config file."
        )
    return token


def log_level_from(name: Any, default: int = logging.INFO) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the quiz kiosk Discord bot.")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.json"),
        help="Path to the JSON config file (default: config.json)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level from the config file",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _build_arg_parser().parse_args(argv)
    config = read_config(args.config)

    log_config = config.get('logging') or {}
    setup_logging(
        log_config.get('log_directory', './logs/'),
        log_level_from(args.log_level or log_config.get('level', 'INFO')),
    )
    token = resolve_token(config)

    print("🤖 Starting Quiz Kiosk Bot...")
    try:
        asyncio.run(run_bot(token, config))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")


if __name__ == "__main__":
    main()
