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
"""Benchmark report loading and expected-vs-actual bandwidth analysis."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from hca_check.config import STREAM_P2P
from hca_check.models import (
    ROLE_CLIENT,
    ROLE_SERVER,
    STATUS_NOT_OK,
    STATUS_OK,
    BandwidthReport,
    BandwidthSample,
    DeviceBandwidth,
)

_LOGGER = logging.getLogger(__name__)

# Percentage deviation from the theoretical bandwidth tolerated before a
# device is flagged.
DELTA_PERCENT_THRESHOLD = 20.0

_ROLE_PREFIXES = {"c": ROLE_CLIENT, "s": ROLE_SERVER}

SampleMap = dict[str, dict[str, BandwidthSample]]


def parse_report_filename(filename: str) -> tuple[str, str, str] | None:
    """Extract (role, hostname, device) from a report file name.

    Names look like ``report_c_<host>_mlx5_0_<suffix>.json``; the device is
    rebuilt from the two parts following the hostname.
    """

    if not filename.endswith(".json"):
        return None
    parts = filename[: -len(".json")].split("_")
    if len(parts) < 5 or parts[0] != "report":
        return None
    role = _ROLE_PREFIXES.get(parts[1])
    if role is None:
        return None
    return role, parts[2], f"{parts[3]}_{parts[4]}"


def load_report_samples(reports_dir: str | Path) -> tuple[SampleMap, SampleMap]:
    """Sum ``results.BW_average`` per (hostname, device) for each role.

    Returns ``(client_samples, server_samples)``. Files that cannot be read or
    decoded are skipped with a warning.
    """

    root = Path(reports_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"reports directory not found: {root}")

    totals: dict[tuple[str, str, str], tuple[float, int]] = {}
    for path in sorted(root.rglob("*.json")):
        parsed = parse_report_filename(path.name)
        if parsed is None:
            _LOGGER.debug("Skipping unrecognized report file %s", path)
            continue
        try:
            bandwidth = _read_bw_average(path)
        except (OSError, ValueError) as exc:
            _LOGGER.warning("Skipping report %s: %s", path, exc)
            continue
        bw_sum, count = totals.get(parsed, (0.0, 0))
        totals[parsed] = (bw_sum + bandwidth, count + 1)

    samples: dict[str, SampleMap] = {ROLE_CLIENT: {}, ROLE_SERVER: {}}
    for (role, hostname, device), (bw_sum, count) in totals.items():
        samples[role].setdefault(hostname, {})[device] = BandwidthSample(
            hostname=hostname,
            device=device,
            bw_sum=bw_sum,
            count=count,
            role=role,
        )
    _LOGGER.info(
        "Loaded reports for %s client and %s server hosts",
        len(samples[ROLE_CLIENT]),
        len(samples[ROLE_SERVER]),
    )
    return samples[ROLE_CLIENT], samples[ROLE_SERVER]


def _read_bw_average(path: Path) -> float:
    with path.open(encoding="utf-8") as handle:
        data = json.load(handle)
    results = data.get("results") if isinstance(data, dict) else None
    value = results.get("BW_average") if isinstance(results, dict) else None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("missing numeric results.BW_average")
    return float(value)


def analyze_bandwidth(
    client_samples: SampleMap,
    server_samples: SampleMap,
    stream_type: str,
) -> BandwidthReport:
    """Compare each device's measured bandwidth against the per-client share.

    The theoretical share is the total server receive bandwidth divided by
    the number of distinct client hosts. It stays unset without clients.
    """

    if stream_type == STREAM_P2P:
        _LOGGER.warning("Bandwidth analysis is not implemented for p2p streams")
        return BandwidthReport(stream_type=stream_type)

    total_server_bw = sum(
        sample.bw_sum for devices in server_samples.values() for sample in devices.values()
    )
    client_count = len(client_samples)
    theoretical: float | None = None
    if client_count > 0:
        theoretical = total_server_bw / client_count

    return BandwidthReport(
        stream_type=stream_type,
        theoretical_bw_per_client=theoretical,
        total_server_bw=total_server_bw,
        client_count=client_count,
        client_data=_compare(client_samples, theoretical or 0.0),
        server_data=_compare(server_samples, theoretical or 0.0),
    )


def _compare(samples: SampleMap, theoretical: float) -> dict[str, dict[str, DeviceBandwidth]]:
    result: dict[str, dict[str, DeviceBandwidth]] = {}
    for hostname, devices in samples.items():
        result[hostname] = {
            device: evaluate_device(hostname, device, sample.bw_sum, theoretical)
            for device, sample in devices.items()
        }
    return result


def evaluate_device(
    hostname: str, device: str, actual: float, theoretical: float
) -> DeviceBandwidth:
    """Compute delta, delta percent and OK/NOT OK status for one device."""

    delta = actual - theoretical
    delta_percent = (delta / theoretical) * 100 if theoretical > 0 else 0.0
    status = STATUS_NOT_OK if abs(delta_percent) > DELTA_PERCENT_THRESHOLD else STATUS_OK
    return DeviceBandwidth(
        hostname=hostname,
        device=device,
        actual_bw=actual,
        theoretical_bw=theoretical,
        delta=delta,
        delta_percent=delta_percent,
        status=status,
    )
