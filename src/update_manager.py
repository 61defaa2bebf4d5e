#!/usr/bin/env python3
"""Command line entry point for the self-updater.

Commands:
1. apply - run one check-and-apply cycle
2. check - report whether an update is available
3. watch - check periodically and offer to apply
"""
import argparse
import logging
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional

from selfupdate_engine import __version__ as ENGINE_VERSION
from selfupdate_engine.config import DEFAULT_CONFIG_FILE, ConfigError, InstallationConfig, load_config
from selfupdate_engine.engine import UpdateEngine
from selfupdate_engine.process import launch_detached
from selfupdate_engine.utils import setup_logging


logger = logging.getLogger('selfupdate_engine')

LOG_FILE_NAME = 'application.log'
DEFAULT_WATCH_INTERVAL = 30


def load(config_path: Path) -> Optional[InstallationConfig]:
    """Load configuration and switch logging to the configured logs folder.

    Returns:
        The configuration, or None if it could not be loaded
    """
    setup_logging()

    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.error(str(e))
        return None

    setup_logging(config.logs_folder / LOG_FILE_NAME)
    logger.info(f"Self-updater {ENGINE_VERSION} using configuration {config_path}")
    return config


def launch_apply(config_path: Path) -> subprocess.Popen:
    """Start 'apply' as a detached process so the caller can exit."""
    command = [sys.executable, '-m', 'update_manager', 'apply', '--config', str(Path(config_path).absolute())]
    return launch_detached(command)


def cmd_apply(args: argparse.Namespace) -> int:
    config = load(args.config)
    if config is None:
        return 1

    engine = UpdateEngine(config)
    return 0 if engine.run() else 1


def cmd_check(args: argparse.Namespace) -> int:
    config = load(args.config)
    if config is None:
        return 1

    notification = UpdateEngine(config).check()
    if notification.available:
        print(f"Update found! Version {notification.version} is available "
              f"(current: {notification.current_version}).")
    else:
        print(f"No updates found (current: {notification.current_version}).")
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    config = load(args.config)
    if config is None:
        return 1

    engine = UpdateEngine(config)

    while True:
        print("Checking for updates...")
        notification = engine.check()

        if notification.available:
            answer = input(
                f"Update found! Version {notification.version} is available. "
                f"Would you like to update now? (y/n): "
            )
            if answer.strip().lower() == 'y':
                print("Launching update manager...")
                launch_apply(args.config)
                return 0
            print(f"Update cancelled by user. Checking again in {args.interval} seconds.")
        else:
            print(f"No updates found. Checking again in {args.interval} seconds.")

        time.sleep(args.interval)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='selfupdate-manager', description=__doc__.splitlines()[0])
    parser.add_argument('--version', action='version', version=ENGINE_VERSION)
    subparsers = parser.add_subparsers(dest='command', required=True)

    for name, handler, help_text in (
        ('apply', cmd_apply, 'run one check-and-apply cycle'),
        ('check', cmd_check, 'report whether an update is available'),
        ('watch', cmd_watch, 'check periodically and offer to apply'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('--config', type=Path, default=Path(DEFAULT_CONFIG_FILE),
                         help=f'configuration file (default: {DEFAULT_CONFIG_FILE})')
        sub.set_defaults(handler=handler)
        if name == 'watch':
            sub.add_argument('--interval', type=float, default=DEFAULT_WATCH_INTERVAL,
                             help='seconds between checks')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        return args.handler(args)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.critical(f"An unexpected error occurred: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
