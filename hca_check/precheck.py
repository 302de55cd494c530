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
"""Fleet precheck: record normalization, aggregation and outlier rules."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from hca_check.config import Config, build_host_targets
from hca_check.models import DeviceRecord, HostProbe, PrecheckSummary
from hca_check.normalize import clean_state, is_healthy
from hca_check.probe import (
    Executor,
    SSHExecutor,
    build_host_commands,
    collect_host_probes,
)

_LOGGER = logging.getLogger(__name__)

STYLE_NORMAL = "normal"
STYLE_SUCCESS = "success"
STYLE_WARNING = "warning"
STYLE_ERROR = "error"


class NoTargetsError(ValueError):
    """Raised when the configuration names no host or HCA to probe."""


def to_device_records(probes: Iterable[HostProbe]) -> list[DeviceRecord]:
    """Flatten host probes into one record per (hostname, hca).

    A host that failed before yielding any HCA contributes a single record
    carrying only the hostname and the error.
    """

    records: list[DeviceRecord] = []
    for probe in probes:
        if probe.error and not probe.hcas:
            records.append(DeviceRecord(hostname=probe.hostname, error=probe.error))
            continue
        for hca in probe.hcas:
            records.append(
                DeviceRecord(
                    hostname=probe.hostname,
                    hca=hca.name,
                    phys_state=clean_state(hca.phys_state),
                    state=clean_state(hca.state),
                    speed=hca.speed,
                    fw_ver=hca.fw_ver,
                    board_id=hca.board_id,
                    serial_number=probe.serial,
                    is_healthy=is_healthy(hca.phys_state, hca.state),
                    error=probe.error,
                )
            )
    return records


def summarize(records: Iterable[DeviceRecord]) -> PrecheckSummary:
    """Aggregate device records into the fleet verdict."""

    results = tuple(sorted(records, key=lambda item: (item.hostname, item.hca)))
    clean = [record for record in results if not record.error]

    error_count = len(results) - len(clean)
    healthy_count = sum(1 for record in clean if record.is_healthy)
    unhealthy_count = len(clean) - healthy_count

    speed_stats = _frequency(record.speed for record in clean)
    all_healthy = healthy_count == len(results)
    all_speeds_same = len(speed_stats) <= 1
    return PrecheckSummary(
        total_hcas=len(results),
        healthy_count=healthy_count,
        unhealthy_count=unhealthy_count,
        error_count=error_count,
        all_healthy=all_healthy,
        all_speeds_same=all_speeds_same,
        check_passed=all_healthy and all_speeds_same,
        results=results,
        speed_stats=speed_stats,
        fw_ver_stats=_frequency(record.fw_ver for record in clean),
        board_id_stats=_frequency(record.board_id for record in clean),
    )


def _frequency(values: Iterable[str]) -> dict[str, int]:
    """Count non-empty values."""

    return dict(Counter(value for value in values if value))


def classify_speed(value: str, stats: dict[str, int]) -> str:
    """Tag the majority link speed as success and minority speeds as error.

    When every value is unique there is no majority and the value stays
    normal.
    """

    if not value:
        return STYLE_NORMAL
    count = stats.get(value, 0)
    highest = max(stats.values(), default=0)
    if count == highest and highest > 1:
        return STYLE_SUCCESS
    if count < highest:
        return STYLE_ERROR
    return STYLE_NORMAL


def classify_drift(value: str, stats: dict[str, int]) -> str:
    """Tag firmware or board values that differ from the most common one."""

    if not value:
        return STYLE_NORMAL
    if stats.get(value, 0) < max(stats.values(), default=0):
        return STYLE_WARNING
    return STYLE_NORMAL


class Prechecker:
    """Probe every configured host and summarize HCA health."""

    def __init__(
        self,
        config: Config,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or _LOGGER
        if executor is None:
            executor = SSHExecutor(
                user=config.ssh.user,
                private_key=config.ssh.private_key,
                timeout=config.ssh.timeout_seconds,
            )
        self._executor = executor

    def collect(self) -> list[HostProbe]:
        """Probe all targets and return the raw per-host results."""

        targets = build_host_targets(self._config)
        if not targets or not any(target.hcas for target in targets):
            raise NoTargetsError("No hosts configured in config file")
        self._logger.info(
            "Probing %s HCAs on %s hosts",
            sum(len(target.hcas) for target in targets),
            len(targets),
        )
        commands = build_host_commands(targets)
        return collect_host_probes(commands, self._executor, logger=self._logger)

    def run(self) -> PrecheckSummary:
        """Run the full precheck pipeline."""

        return self.summarize_probes(self.collect())

    def summarize_probes(self, probes: Iterable[HostProbe]) -> PrecheckSummary:
        records = to_device_records(probes)
        if not records:
            raise NoTargetsError("No host results to summarize")
        summary = summarize(records)
        self._logger.info(
            "Precheck %s: %s healthy, %s unhealthy, %s errors (total %s)",
            "passed" if summary.check_passed else "failed",
            summary.healthy_count,
            summary.unhealthy_count,
            summary.error_count,
            summary.total_hcas,
        )
        return summary
