"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from aipmirror.catalog import Amendment, always_confirm, run
from aipmirror.config import Config, load_config


def prompt_confirm(type_key: str, amendment: Amendment) -> bool:
    """Ask on the terminal; a closed or empty stdin counts as "no"."""
    try:
        answer = input(f"Proceed with downloading {type_key} data for effective date {amendment.effective_date}? (y/n): ")
    except EOFError:
        logging.warning("No answer on stdin for %s; use --yes for unattended runs", type_key)
        return False
    return answer.strip().lower() == "y"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """CLI options."""
    parser = argparse.ArgumentParser(description="Mirror the PANSA eAIP VFR/IFR document catalogs")
    parser.add_argument("--config", help="Path to config YAML file")
    parser.add_argument("--output-dir", help="Root directory for the mirror")
    parser.add_argument(
        "--catalog",
        action="append",
        metavar="TYPE",
        help="Catalog to mirror (e.g. VFR, IFR); repeatable, default all configured",
    )
    parser.add_argument("--language", help="Menu language code, e.g. pl-PL")
    parser.add_argument("--concurrency", type=int, help="Parallel downloads (1 = sequential)")
    parser.add_argument("--download-log", help="Write per-document results to this TSV file")
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask before mirroring each catalog")
    parser.add_argument("--dry-run", action="store_true", help="Create folders and list documents without downloading")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Load the config file (if any) and apply command-line overrides."""
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            raise SystemExit(f"config file not found: {config_path}")
        config = load_config(config_path)
    else:
        config = Config()

    if args.output_dir:
        config.output_dir = args.output_dir
    if args.language:
        config.language = args.language
    if args.concurrency is not None:
        config.concurrency = max(1, args.concurrency)
    if args.download_log:
        config.download_log = args.download_log
    if args.dry_run:
        config.dry_run = True
    if args.catalog:
        wanted = [name.upper() for name in args.catalog]
        unknown = [name for name in wanted if name not in config.catalogs]
        if unknown:
            raise SystemExit(f"unknown catalog(s): {', '.join(unknown)}; known: {', '.join(config.catalogs)}")
        config.catalogs = {name: config.catalogs[name] for name in wanted}
    return config


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        config = build_config(args)
    except ValueError as exc:
        raise SystemExit(f"invalid config: {exc}") from exc
    confirm = always_confirm if args.yes else prompt_confirm
    raise SystemExit(asyncio.run(run(config, confirm)))


if __name__ == "__main__":
    main()
