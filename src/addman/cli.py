# src/addman/cli.py

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from rich.markup import escape

from addman import log_utils
from addman.config import (
    AddonManagerConfig,
    get_config_path,
    load_config,
    prepare_dirs,
    save_config,
)
from addman.exceptions import ConfigurationError
from addman.sync.orchestrator import SyncOrchestrator, SyncSummary
from addman.utils import format_release_date, get_app_version

EXIT_OK = 0
EXIT_UPDATE_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _load_or_exit(config_path: Optional[str]) -> AddonManagerConfig:
    """
    Load the configuration, exiting with EXIT_CONFIG_ERROR when it is unusable.
    """
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        log_utils.logger.error(f"Configuration error: {escape(str(e))}")
        sys.exit(EXIT_CONFIG_ERROR)


def _log_unmanaged(config: AddonManagerConfig) -> None:
    if not config.unmanaged_addons:
        return
    log_utils.logger.info("Unmanaged addons (update these by hand):")
    for name, url in config.unmanaged_addons.items():
        log_utils.logger.info(f"  {escape(name)}: {escape(url)}")


def run_update(
    config_path: Optional[str] = None,
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> int:
    """
    Update every configured add-on and write the configuration back.

    The configuration is saved once after the run, whatever the individual
    add-on outcomes were.

    Returns:
        int: EXIT_OK, or EXIT_UPDATE_FAILED when any add-on failed.
    """
    config = _load_or_exit(config_path)

    level = log_level or config.log_level
    if level:
        log_utils.set_log_level(level)
    if log_dir:
        log_utils.add_file_logging(Path(log_dir), level or "INFO")

    try:
        prepare_dirs(config)
    except ConfigurationError as e:
        log_utils.logger.error(f"Configuration error: {escape(str(e))}")
        return EXIT_CONFIG_ERROR

    summary: Optional[SyncSummary] = None
    try:
        orchestrator = SyncOrchestrator(
            config.addons,
            config.update_info,
            config.extract_dir,
            cache_dir=config.cache_dir,
            net_tasks=config.effective_net_tasks,
            disk_tasks=config.effective_disk_tasks,
            github_token=config.github_token,
        )
        summary = orchestrator.run()
    finally:
        try:
            save_config(config)
        except ConfigurationError as e:
            log_utils.logger.error(f"Could not save configuration: {escape(str(e))}")

    _log_unmanaged(config)
    if summary is not None and not summary.ok:
        return EXIT_UPDATE_FAILED
    return EXIT_OK


def show_config(config_path: Optional[str] = None) -> int:
    """Print the normalized configuration."""
    config = _load_or_exit(config_path)

    print(f"Config file: {config.path}")
    print(f"Addons dir: {config.extract_dir}")
    if config.cache_dir:
        print(f"Cache dir: {config.cache_dir}")
    print(
        f"Tasks: {config.effective_net_tasks} net, {config.effective_disk_tasks} disk"
    )
    print()

    for addon in config.addons:
        flags = " (skip)" if addon.skip else ""
        print(f"{addon.name} [{addon.strategy.name.lower()}]{flags}")
        if addon.include_dirs:
            print(f"  include: {', '.join(addon.include_dirs)}")
        if addon.exclude_dirs:
            print(f"  exclude: {', '.join(addon.exclude_dirs)}")
        info = addon.update_info
        if info.version:
            print(f"  version: {info.version}")
            print(f"  updated: {format_release_date(info.updated_on)}")
        if info.ref_sha:
            print(f"  ref: {info.ref_sha}")
        if info.extracted_dirs:
            print(f"  dirs: {', '.join(info.extracted_dirs)}")

    if config.unmanaged_addons:
        print()
        print("Unmanaged addons:")
        for name, url in config.unmanaged_addons.items():
            print(f"  {name}: {url}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="addman",
        description="addman - keep GitHub-hosted game add-ons up to date",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Command to update add-ons
    update_parser = subparsers.add_parser(
        "update", help="Check for and install add-on updates"
    )
    update_parser.add_argument(
        "--config",
        metavar="PATH",
        help=f"Configuration file (default: {get_config_path()})",
    )
    update_parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Log level, e.g. DEBUG or INFO (overrides LogLevel in the config)",
    )
    update_parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Also write a rotating log file to this directory",
    )

    # Command to display the configuration
    show_parser = subparsers.add_parser(
        "show", help="Display the normalized configuration"
    )
    show_parser.add_argument("--config", metavar="PATH", help="Configuration file")

    # Command to display version
    subparsers.add_parser("version", help="Display addman version")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the addman command-line interface.

    Dispatches the `update`, `show` and `version` subcommands and exits with
    the subcommand's status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "update":
        sys.exit(run_update(args.config, args.log_level, args.log_dir))
    elif args.command == "show":
        sys.exit(show_config(args.config))
    elif args.command == "version":
        print(f"addman v{get_app_version()}")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
