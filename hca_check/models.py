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
"""Data models for hca-check."""

from __future__ import annotations

from dataclasses import dataclass, field

# Remote probes render unreadable attributes as this literal. Real hardware
# reporting the text "ERROR" would be indistinguishable from a read failure.
ERROR_SENTINEL = "ERROR"
NOT_AVAILABLE = "N/A"

ROLE_CLIENT = "client"
ROLE_SERVER = "server"

STATUS_OK = "OK"
STATUS_NOT_OK = "NOT OK"


@dataclass(frozen=True)
class HostTarget:
    """Host to probe and the HCAs configured for it across all roles."""

    hostname: str
    hcas: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandResult:
    """Outcome of running a command on a remote host."""

    output: str
    error: str | None = None


@dataclass(frozen=True)
class HcaProbe:
    """Raw HCA attributes as emitted by the remote probe command."""

    name: str
    phys_state: str = ""
    state: str = ""
    speed: str = ""
    fw_ver: str = ""
    board_id: str = ""

    def has_error(self) -> bool:
        return ERROR_SENTINEL in (
            self.phys_state,
            self.state,
            self.speed,
            self.fw_ver,
            self.board_id,
        )


@dataclass(frozen=True)
class HostProbe:
    """Parsed probe output for a single host."""

    hostname: str
    serial: str = ""
    hcas: tuple[HcaProbe, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class DeviceRecord:
    """Normalized per-HCA precheck result."""

    hostname: str
    hca: str = ""
    phys_state: str = ""
    state: str = ""
    speed: str = ""
    fw_ver: str = ""
    board_id: str = ""
    serial_number: str = ""
    is_healthy: bool = False
    error: str = ""


@dataclass(frozen=True)
class PrecheckSummary:
    """Fleet-wide precheck verdict and statistics."""

    total_hcas: int
    healthy_count: int
    unhealthy_count: int
    error_count: int
    all_healthy: bool
    all_speeds_same: bool
    check_passed: bool
    results: tuple[DeviceRecord, ...]
    speed_stats: dict[str, int] = field(default_factory=dict)
    fw_ver_stats: dict[str, int] = field(default_factory=dict)
    board_id_stats: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class BandwidthSample:
    """Bandwidth summed over all report files of one (hostname, device)."""

    hostname: str
    device: str
    bw_sum: float
    count: int
    role: str


@dataclass(frozen=True)
class DeviceBandwidth:
    """Measured vs theoretical bandwidth for one device."""

    hostname: str
    device: str
    actual_bw: float
    theoretical_bw: float
    delta: float
    delta_percent: float
    status: str


@dataclass(frozen=True)
class BandwidthReport:
    """Bandwidth analysis for a benchmark stream."""

    stream_type: str
    theoretical_bw_per_client: float | None = None
    total_server_bw: float = 0.0
    client_count: int = 0
    client_data: dict[str, dict[str, DeviceBandwidth]] = field(default_factory=dict)
    server_data: dict[str, dict[str, DeviceBandwidth]] = field(default_factory=dict)

    def all_ok(self) -> bool:
        """Return True when every client and server device is within tolerance."""

        for group in (self.client_data, self.server_data):
            for devices in group.values():
                if any(item.status != STATUS_OK for item in devices.values()):
                    return False
        return True
