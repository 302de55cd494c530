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
"""Output rendering for precheck summaries and bandwidth reports."""

from __future__ import annotations

import io
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Sequence

from rich import box
from rich.console import Console, RenderableType
from rich.table import Table
from rich.text import Text

from hca_check.display import RICH_STYLE_BY_STYLE, ColoredField, DisplayRecord
from hca_check.models import STATUS_OK, BandwidthReport, DeviceBandwidth, PrecheckSummary
from hca_check.precheck import STYLE_ERROR, STYLE_SUCCESS, STYLE_WARNING

CONSOLE_WIDTH = 200

_PRECHECK_HEADER = (
    "Serial Number",
    "Hostname",
    "HCA",
    "Physical State",
    "Logical State",
    "Speed",
    "FW Version",
    "Board ID",
    "Status",
)


def summary_to_dict(summary: PrecheckSummary) -> dict[str, Any]:
    """Convert a precheck summary into its JSON representation."""

    return {
        "total_hcas": summary.total_hcas,
        "healthy_count": summary.healthy_count,
        "unhealthy_count": summary.unhealthy_count,
        "error_count": summary.error_count,
        "all_healthy": summary.all_healthy,
        "all_speeds_same": summary.all_speeds_same,
        "check_passed": summary.check_passed,
        "results": [asdict(record) for record in summary.results],
        "speed_stats": dict(summary.speed_stats),
        "fw_ver_stats": dict(summary.fw_ver_stats),
        "board_id_stats": dict(summary.board_id_stats),
    }


def report_to_dict(report: BandwidthReport) -> dict[str, Any]:
    """Convert a bandwidth report into its JSON representation."""

    return {
        "stream_type": report.stream_type,
        "theoretical_bw_per_client": report.theoretical_bw_per_client,
        "total_server_bw": report.total_server_bw,
        "client_count": report.client_count,
        "client_data": _bandwidth_group(report.client_data, "actual_bw"),
        "server_data": _bandwidth_group(report.server_data, "rx_bw"),
    }


def _bandwidth_group(
    group: dict[str, dict[str, DeviceBandwidth]], measured_key: str
) -> dict[str, dict[str, dict[str, Any]]]:
    return {
        hostname: {
            device: {
                "hostname": item.hostname,
                "device": item.device,
                measured_key: item.actual_bw,
                "theoretical_bw": item.theoretical_bw,
                "delta": item.delta,
                "delta_percent": item.delta_percent,
                "status": item.status,
            }
            for device, item in sorted(devices.items())
        }
        for hostname, devices in sorted(group.items())
    }


def write_summary_json(path: str | Path, summary: PrecheckSummary) -> None:
    """Write precheck summary JSON."""

    _write_json(path, summary_to_dict(summary))


def write_report_json(path: str | Path, report: BandwidthReport) -> None:
    """Write bandwidth report JSON."""

    _write_json(path, report_to_dict(report))


def _write_json(path: str | Path, data: Any) -> None:
    with Path(path).open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2, ensure_ascii=False)
        handle.write("\n")


def render_precheck_table(
    records: Sequence[DisplayRecord], summary: PrecheckSummary, color: bool = True
) -> str:
    """Render display records as a text table followed by a summary line.

    Consecutive rows of the same host show the hostname only once, and a
    section line separates hosts.
    """

    table = _new_table(_PRECHECK_HEADER)
    last_hostname = None
    for record in records:
        hostname = record.hostname
        if hostname == last_hostname:
            hostname = ""
        else:
            if last_hostname is not None:
                table.add_section()
            last_hostname = record.hostname
        table.add_row(
            Text(record.serial_number),
            Text(hostname),
            Text(record.hca),
            Text(record.phys_state),
            Text(record.state),
            record.speed.text(),
            record.fw_ver.text(),
            record.board_id.text(),
            record.status.text(),
        )

    summary_line = Text.assemble(
        "Summary: ",
        (f"{summary.healthy_count} healthy", RICH_STYLE_BY_STYLE[STYLE_SUCCESS]),
        ", ",
        (f"{summary.unhealthy_count} unhealthy", RICH_STYLE_BY_STYLE[STYLE_ERROR]),
        ", ",
        (f"{summary.error_count} errors", RICH_STYLE_BY_STYLE[STYLE_WARNING]),
        f" (Total: {summary.total_hcas} HCAs)",
    )
    return _render([table, Text(""), summary_line], color)


def render_bandwidth_tables(report: BandwidthReport, color: bool = True) -> str:
    """Render client and server bandwidth tables."""

    renderables: list[RenderableType] = [
        Text(f"=== Network Performance Analysis ({report.stream_type}) ==="),
        Text(""),
    ]
    for title, group, measured in (
        ("CLIENT DATA (TX)", report.client_data, "TX (Gbps)"),
        ("SERVER DATA (RX)", report.server_data, "RX (Gbps)"),
    ):
        table = _new_table(("Hostname", "Device", measured, "SPEC (Gbps)", "DELTA", "Status"))
        _add_bandwidth_rows(table, group)
        renderables.extend([Text(title), table, Text("")])

    renderables.append(
        Text(
            "Theoretical BW per client: "
            f"{_format_optional(report.theoretical_bw_per_client)} Gbps "
            f"(Total server BW: {report.total_server_bw:.2f} Gbps / "
            f"{report.client_count} clients)"
        )
    )
    return _render(renderables, color)


def _add_bandwidth_rows(table: Table, group: dict[str, dict[str, DeviceBandwidth]]) -> None:
    for position, hostname in enumerate(sorted(group)):
        if position:
            table.add_section()
        for index, device in enumerate(sorted(group[hostname])):
            item = group[hostname][device]
            style = STYLE_SUCCESS if item.status == STATUS_OK else STYLE_ERROR
            table.add_row(
                Text(hostname if index == 0 else ""),
                Text(device),
                Text(f"{item.actual_bw:.2f}"),
                Text(f"{item.theoretical_bw:.2f}"),
                Text(f"{item.delta:+.2f} ({item.delta_percent:+.1f}%)"),
                ColoredField(item.status, style).text(),
            )


def _new_table(header: Sequence[str]) -> Table:
    table = Table(box=box.ASCII, header_style="bold")
    for title in header:
        table.add_column(title, no_wrap=True)
    return table


def _render(renderables: Sequence[RenderableType], color: bool) -> str:
    buffer = io.StringIO()
    console = Console(
        file=buffer,
        force_terminal=color,
        color_system="standard" if color else None,
        width=CONSOLE_WIDTH,
        highlight=False,
    )
    for renderable in renderables:
        console.print(renderable)
    return buffer.getvalue().rstrip("\n")


def write_report_markdown(path: str | Path, report: BandwidthReport, speed: float = 0.0) -> None:
    """Write the bandwidth report as Markdown tables."""

    lines = ["# Network Performance Analysis", ""]
    lines.append(f"Stream type: {report.stream_type}")
    if speed:
        lines.append(f"Nominal link speed: {speed:g} Gbps")
    lines.append("")
    lines.append(
        f"Theoretical BW per client: {_format_optional(report.theoretical_bw_per_client)} Gbps "
        f"(Total server BW: {report.total_server_bw:.2f} Gbps / {report.client_count} clients)"
    )
    for title, group, measured in (
        ("Client Data (TX)", report.client_data, "TX (Gbps)"),
        ("Server Data (RX)", report.server_data, "RX (Gbps)"),
    ):
        lines.extend(["", f"## {title}", ""])
        lines.append(f"| Hostname | Device | {measured} | SPEC (Gbps) | DELTA | Status |")
        lines.append("|----------|--------|-----------|-------------|-------|--------|")
        for hostname in sorted(group):
            for device in sorted(group[hostname]):
                item = group[hostname][device]
                lines.append(
                    f"| {hostname} | {device} | {item.actual_bw:.2f} | "
                    f"{item.theoretical_bw:.2f} | {item.delta:+.2f} ({item.delta_percent:+.1f}%) "
                    f"| {item.status} |"
                )

    with Path(path).open("w", encoding="utf-8") as handle:
        handle.write("\n".join(lines))
        handle.write("\n")


def _format_optional(value: float | None) -> str:
    return "N/A" if value is None else f"{value:.2f}"
