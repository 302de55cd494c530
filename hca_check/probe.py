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
"""HCA probing over SSH: command building, execution and output parsing."""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from hca_check.models import ERROR_SENTINEL, CommandResult, HcaProbe, HostProbe, HostTarget
from hca_check.normalize import trim_serial

_LOGGER = logging.getLogger(__name__)

SERIAL_PATH = "/sys/class/dmi/id/product_serial"
IB_CLASS_DIR = "/sys/class/infiniband"

# JSON key -> sysfs path relative to the HCA directory
HCA_ATTRIBUTE_PATHS: tuple[tuple[str, str], ...] = (
    ("phys_state", "ports/1/phys_state"),
    ("state", "ports/1/state"),
    ("speed", "ports/1/rate"),
    ("fw_ver", "fw_ver"),
    ("board_id", "board_id"),
)

OUTPUT_EXCERPT_LIMIT = 200

Executor = Callable[[str, str], CommandResult]


def build_host_commands(targets: Iterable[HostTarget]) -> dict[str, str]:
    """Build one shell command per host that prints the probe JSON document."""

    return {target.hostname: build_probe_command(target.hcas) for target in targets}


def build_probe_command(hcas: Iterable[str]) -> str:
    """Build a shell command emitting serial and HCA attributes as JSON.

    Every attribute read falls back to the error sentinel so one missing
    sysfs file never fails the whole command.
    """

    entries = []
    for hca in hcas:
        fields = [rf"\"name\":\"{hca}\""]
        for key, relative in HCA_ATTRIBUTE_PATHS:
            fields.append(_read_field(key, f"{IB_CLASS_DIR}/{hca}/{relative}"))
        entries.append("{" + ",".join(fields) + "}")
    serial = _read_field("serial", SERIAL_PATH)
    return 'echo "{' + serial + r",\"hcas\":[" + ",".join(entries) + ']}"'


def _read_field(key: str, path: str) -> str:
    return rf"\"{key}\":\"$(cat {path} 2>/dev/null || echo {ERROR_SENTINEL})\""


class SSHExecutor:
    """Run commands on remote hosts through the ssh CLI."""

    def __init__(
        self,
        user: str | None = None,
        private_key: str | None = None,
        timeout: float | None = None,
        ssh_cmd: str = "ssh",
    ) -> None:
        self._user = user
        self._private_key = private_key
        self._timeout = timeout
        self._ssh_cmd = ssh_cmd

    def build_command(self, hostname: str, command: str) -> list[str]:
        """Build the ssh argument list for a remote command."""

        args = [
            self._ssh_cmd,
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "LogLevel=ERROR",
        ]
        if self._private_key:
            args.extend(["-i", self._private_key])
        target = hostname
        if self._user and "@" not in hostname:
            target = f"{self._user}@{hostname}"
        args.extend([target, command])
        return args

    def __call__(self, hostname: str, command: str) -> CommandResult:
        args = self.build_command(hostname, command)
        _LOGGER.debug("Running ssh on %s: %s", hostname, " ".join(args))
        try:
            result = subprocess.run(
                args,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            _LOGGER.error("ssh to %s timed out after %ss", hostname, self._timeout)
            return CommandResult("", f"timed out after {self._timeout}s")
        except OSError as exc:
            _LOGGER.error("Failed to run ssh for %s: %s", hostname, exc)
            return CommandResult("", str(exc))

        if result.returncode != 0:
            output = result.stdout.strip()
            _LOGGER.error("ssh to %s exited with status %s", hostname, result.returncode)
            detail = f"exit status {result.returncode}"
            if output:
                detail = f"{detail}: {_excerpt(output)}"
            return CommandResult(result.stdout, detail)
        return CommandResult(result.stdout)


def parse_host_output(hostname: str, result: CommandResult) -> HostProbe:
    """Turn a command outcome into a HostProbe. Never raises."""

    if result.error is not None:
        return HostProbe(hostname=hostname, error=f"SSH execution failed: {result.error}")

    output = result.output.strip()
    try:
        serial, hcas = _decode_probe_payload(output)
    except ValueError as exc:
        _LOGGER.error("Failed to parse probe output from %s: %s", hostname, exc)
        return HostProbe(
            hostname=hostname,
            error=f"Failed to parse JSON output: {exc}. Output: {_excerpt(output)}",
        )

    error = ""
    if serial == ERROR_SENTINEL:
        error = "Failed to read serial number"
    for hca in hcas:
        if hca.has_error():
            if not error:
                error = f"Failed to read some HCA attributes for {hca.name}"
            break

    probe = HostProbe(hostname=hostname, serial=trim_serial(serial), hcas=hcas, error=error)
    _LOGGER.debug("Parsed probe data for %s: %s", hostname, probe)
    return probe


def _decode_probe_payload(output: str) -> tuple[str, tuple[HcaProbe, ...]]:
    """Decode and shape-check the probe JSON document."""

    data = json.loads(output)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    serial = data.get("serial", "")
    if not isinstance(serial, str):
        raise ValueError("field 'serial' must be a string")
    raw_hcas = data.get("hcas")
    if raw_hcas is None:
        raw_hcas = []
    if not isinstance(raw_hcas, list):
        raise ValueError("field 'hcas' must be an array")
    return serial, tuple(_decode_hca(entry) for entry in raw_hcas)


def _decode_hca(entry: Any) -> HcaProbe:
    if not isinstance(entry, dict):
        raise ValueError("'hcas' entries must be objects")
    values: dict[str, str] = {}
    for key in ("name",) + tuple(key for key, _ in HCA_ATTRIBUTE_PATHS):
        value = entry.get(key, "")
        if not isinstance(value, str):
            raise ValueError(f"field {key!r} must be a string")
        values[key] = value
    return HcaProbe(**values)


def _excerpt(text: str) -> str:
    if len(text) <= OUTPUT_EXCERPT_LIMIT:
        return text
    return text[:OUTPUT_EXCERPT_LIMIT] + "..."


def collect_host_probes(
    host_commands: Mapping[str, str],
    executor: Executor,
    logger: logging.Logger | None = None,
) -> list[HostProbe]:
    """Run every host command concurrently, then parse the collected results.

    One thread is started per host. Workers only gather command results;
    parsing happens once all threads are joined. The returned order is
    completion order; callers sort as needed.
    """

    log = logger or _LOGGER
    results: list[tuple[str, CommandResult]] = []
    lock = threading.Lock()

    def worker(hostname: str, command: str) -> None:
        try:
            result = executor(hostname, command)
        except Exception as exc:  # noqa: BLE001
            log.exception("Executor failed for %s", hostname)
            result = CommandResult("", str(exc))
        with lock:
            results.append((hostname, result))

    threads = [
        threading.Thread(target=worker, args=(hostname, command), name=f"probe-{hostname}")
        for hostname, command in host_commands.items()
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    probes: list[HostProbe] = []
    for hostname, result in results:
        probe = parse_host_output(hostname, result)
        if probe.error:
            log.warning("Probe of %s reported: %s", hostname, probe.error)
        probes.append(probe)
    log.info("Collected probe results from %s hosts", len(probes))
    return probes


def save_probes(path: str | Path, probes: list[HostProbe]) -> None:
    """Save host probes to a JSON file for later offline analysis."""

    data = [asdict(probe) for probe in sorted(probes, key=lambda item: item.hostname)]
    with Path(path).open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2, ensure_ascii=False)
        handle.write("\n")


def load_probes(path: str | Path) -> list[HostProbe]:
    """Load host probes previously written by save_probes.

    Raises ``ValueError`` naming the file when an entry has the wrong shape.
    """

    with Path(path).open(encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array")

    probes: list[HostProbe] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("hostname"):
            raise ValueError(f"{path} has a probe entry without hostname")
        try:
            probes.append(_decode_saved_probe(item))
        except ValueError as exc:
            raise ValueError(f"{path} entry {item['hostname']!r}: {exc}") from exc
    return probes


def _decode_saved_probe(item: dict[str, Any]) -> HostProbe:
    hostname = item["hostname"]
    if not isinstance(hostname, str):
        raise ValueError("field 'hostname' must be a string")
    for key in ("serial", "error"):
        if not isinstance(item.get(key, ""), str):
            raise ValueError(f"field {key!r} must be a string")
    raw_hcas = item.get("hcas")
    if raw_hcas is None:
        raw_hcas = []
    if not isinstance(raw_hcas, list):
        raise ValueError("field 'hcas' must be an array")
    return HostProbe(
        hostname=hostname,
        serial=item.get("serial", ""),
        hcas=tuple(_decode_hca(entry) for entry in raw_hcas),
        error=item.get("error", ""),
    )
