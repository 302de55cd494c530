# Copyright 2025 hca-check contributors
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.
"""CLI entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

from hca_check.bandwidth import analyze_bandwidth, load_report_samples
from hca_check.config import load_config
from hca_check.display import build_display_records
from hca_check.output import (
    render_bandwidth_tables,
    render_precheck_table,
    write_report_json,
    write_report_markdown,
    write_summary_json,
)
from hca_check.precheck import NoTargetsError, Prechecker
from hca_check.probe import load_probes, save_probes

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser."""

    parser = argparse.ArgumentParser(description="hca-check")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["INFO", "DEBUG", "WARN"],
        help="log level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    precheck = subparsers.add_parser("precheck", help="check HCA health on all configured hosts")
    precheck.add_argument("--config", required=True, help="path to YAML config")
    precheck.add_argument("--out-dir", help="directory for precheck_summary.json")
    precheck.add_argument(
        "--output-format",
        default="table",
        choices=["table", "json", "both"],
        help="output format (default: table)",
    )
    precheck.add_argument(
        "--load-probes",
        type=str,
        help="load probe results from JSON file instead of running ssh",
    )
    precheck.add_argument(
        "--save-probes",
        type=str,
        help="save collected probe results to JSON file for later offline use",
    )

    analyze = subparsers.add_parser("analyze", help="analyze collected bandwidth reports")
    analyze.add_argument("--config", required=True, help="path to YAML config")
    analyze.add_argument("--reports-dir", help="reports directory (default: report.dir)")
    analyze.add_argument("--out-dir", help="directory for bandwidth_report.json")
    analyze.add_argument(
        "--markdown",
        action="store_true",
        help="also write bandwidth_report.md (requires --out-dir)",
    )
    return parser


def configure_logging(level: str) -> None:
    """Configure logging."""

    logging.basicConfig(level=getattr(logging, level), format="%(levelname)s %(message)s")


def run_precheck(args: argparse.Namespace) -> int:
    """Run the precheck subcommand."""

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        _LOGGER.error("Invalid input: %s", exc)
        return 3

    checker = Prechecker(config, logger=_LOGGER.getChild("precheck"))
    try:
        if args.load_probes:
            _LOGGER.info("Loading probe results from %s", args.load_probes)
            probes = load_probes(args.load_probes)
        else:
            probes = checker.collect()
    except NoTargetsError as exc:
        _LOGGER.error("%s", exc)
        return 3
    except (OSError, ValueError) as exc:
        _LOGGER.error("Invalid input: %s", exc)
        return 3

    if args.save_probes:
        save_probes(args.save_probes, probes)
        _LOGGER.info("Saved probe results to %s", args.save_probes)

    try:
        summary = checker.summarize_probes(probes)
    except NoTargetsError as exc:
        _LOGGER.error("%s", exc)
        return 3

    if args.output_format in ("table", "both"):
        print(f"=== Precheck Results - {time.strftime('%H:%M:%S')} ===\n")
        records = build_display_records(summary)
        print(render_precheck_table(records, summary, color=sys.stdout.isatty()))

    if args.output_format in ("json", "both"):
        if args.out_dir:
            out_dir = Path(args.out_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            write_summary_json(out_dir / "precheck_summary.json", summary)
        else:
            _LOGGER.warning(
                "--output-format %s needs --out-dir to write JSON", args.output_format
            )

    return 0 if summary.check_passed else 2


def run_analyze(args: argparse.Namespace) -> int:
    """Run the analyze subcommand."""

    try:
        config = load_config(args.config)
        client, server = load_report_samples(args.reports_dir or config.reports_dir)
    except (OSError, ValueError) as exc:
        _LOGGER.error("Invalid input: %s", exc)
        return 3

    report = analyze_bandwidth(client, server, config.stream_type)
    print(render_bandwidth_tables(report, color=sys.stdout.isatty()))

    if args.out_dir:
        out_dir = Path(args.out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        write_report_json(out_dir / "bandwidth_report.json", report)
        if args.markdown:
            write_report_markdown(out_dir / "bandwidth_report.md", report, config.speed)
            _LOGGER.info("Markdown report written to %s", out_dir / "bandwidth_report.md")
    elif args.markdown:
        _LOGGER.warning("--markdown needs --out-dir")

    return 0 if report.all_ok() else 2


def main(argv: Sequence[str] | None = None) -> int:
    """Run hca-check."""

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "precheck":
        return run_precheck(args)
    return run_analyze(args)


if __name__ == "__main__":
    raise SystemExit(main())
