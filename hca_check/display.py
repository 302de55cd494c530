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
"""Presentation records for precheck results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rich.text import Text

from hca_check.models import NOT_AVAILABLE, DeviceRecord, PrecheckSummary
from hca_check.precheck import (
    STYLE_ERROR,
    STYLE_NORMAL,
    STYLE_SUCCESS,
    STYLE_WARNING,
    classify_drift,
    classify_speed,
)

STATUS_HEALTHY = "[+] HEALTHY"
STATUS_UNHEALTHY = "[X] UNHEALTHY"
STATUS_ERROR = "[!] ERROR"

RICH_STYLE_BY_STYLE = {
    STYLE_SUCCESS: "green",
    STYLE_WARNING: "yellow",
    STYLE_ERROR: "red",
}

_CSS_BY_STYLE = {
    STYLE_SUCCESS: "text-success",
    STYLE_WARNING: "text-warning",
    STYLE_ERROR: "text-danger",
}


@dataclass(frozen=True)
class ColoredField:
    """A display value paired with its classification."""

    value: str
    style: str = STYLE_NORMAL

    def rich_style(self) -> str:
        return RICH_STYLE_BY_STYLE.get(self.style, "")

    def text(self) -> Text:
        """Return the value as rich Text carrying the terminal color."""

        return Text(self.value, style=self.rich_style())

    def css_class(self) -> str:
        return _CSS_BY_STYLE.get(self.style, "")


@dataclass(frozen=True)
class DisplayRecord:
    """Read-only view of a DeviceRecord for terminal and web rendering."""

    hostname: str
    hca: str
    serial_number: str
    phys_state: str
    state: str
    speed: ColoredField
    fw_ver: ColoredField
    board_id: ColoredField
    status: ColoredField

    def as_dict(self) -> dict[str, Any]:
        """Serialize with value and style for each colored field."""

        data: dict[str, Any] = {
            "hostname": self.hostname,
            "hca": self.hca,
            "serial_number": self.serial_number,
            "phys_state": self.phys_state,
            "state": self.state,
        }
        for name in ("speed", "fw_ver", "board_id", "status"):
            colored: ColoredField = getattr(self, name)
            data[name] = {
                "value": colored.value,
                "style": colored.style,
                "class": colored.css_class(),
            }
        return data


def build_display_records(summary: PrecheckSummary) -> list[DisplayRecord]:
    """Project summary results into display records sorted by host and HCA."""

    records = sorted(summary.results, key=lambda item: (item.hostname, item.hca))
    return [_to_display(record, summary) for record in records]


def _to_display(record: DeviceRecord, summary: PrecheckSummary) -> DisplayRecord:
    if record.error:
        unavailable = ColoredField(NOT_AVAILABLE)
        return DisplayRecord(
            hostname=record.hostname,
            hca=record.hca,
            serial_number=NOT_AVAILABLE,
            phys_state=NOT_AVAILABLE,
            state=NOT_AVAILABLE,
            speed=unavailable,
            fw_ver=unavailable,
            board_id=unavailable,
            status=ColoredField(STATUS_ERROR, STYLE_WARNING),
        )

    if record.is_healthy:
        status = ColoredField(STATUS_HEALTHY, STYLE_SUCCESS)
    else:
        status = ColoredField(STATUS_UNHEALTHY, STYLE_ERROR)
    return DisplayRecord(
        hostname=record.hostname,
        hca=record.hca,
        serial_number=record.serial_number or NOT_AVAILABLE,
        phys_state=record.phys_state,
        state=record.state,
        speed=_field(record.speed, classify_speed(record.speed, summary.speed_stats)),
        fw_ver=_field(record.fw_ver, classify_drift(record.fw_ver, summary.fw_ver_stats)),
        board_id=_field(
            record.board_id, classify_drift(record.board_id, summary.board_id_stats)
        ),
        status=status,
    )


def _field(value: str, style: str) -> ColoredField:
    if not value:
        return ColoredField(NOT_AVAILABLE)
    return ColoredField(value, style)
