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
"""Tests for probe command building, execution and parsing."""

import json
import subprocess
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest

from hca_check import probe as probe_module
from hca_check.models import CommandResult, HcaProbe, HostProbe, HostTarget
from hca_check.probe import (
    SSHExecutor,
    build_host_commands,
    build_probe_command,
    collect_host_probes,
    load_probes,
    parse_host_output,
    save_probes,
)


def _hca_payload(name: str, **overrides: str) -> dict[str, str]:
    payload = {
        "name": name,
        "phys_state": "5: LinkUp",
        "state": "4: ACTIVE",
        "speed": "200 Gb/sec (2X NDR)",
        "fw_ver": "28.39.1002",
        "board_id": "MT_0000000838",
    }
    payload.update(overrides)
    return payload


def _output(serial: str, *hcas: dict[str, str]) -> CommandResult:
    return CommandResult(json.dumps({"serial": serial, "hcas": list(hcas)}))


def test_build_probe_command_reads_sysfs_with_sentinel_fallback() -> None:
    command = build_probe_command(["mlx5_0"])

    assert command.startswith('echo "{')
    assert command.endswith(']}"')
    assert r"\"serial\":\"$(cat /sys/class/dmi/id/product_serial 2>/dev/null || echo ERROR)\"" in (
        command
    )
    assert r"\"name\":\"mlx5_0\"" in command
    assert "/sys/class/infiniband/mlx5_0/ports/1/phys_state" in command
    assert "/sys/class/infiniband/mlx5_0/ports/1/state" in command
    assert "/sys/class/infiniband/mlx5_0/ports/1/rate" in command
    assert "/sys/class/infiniband/mlx5_0/fw_ver" in command
    assert "/sys/class/infiniband/mlx5_0/board_id" in command
    assert command.count("|| echo ERROR") == 6


def test_build_probe_command_without_hcas_emits_empty_array() -> None:
    command = build_probe_command([])

    assert command.endswith(r"\"hcas\":[]}" + '"')


def test_build_host_commands_one_per_host() -> None:
    targets = [HostTarget("gpu01", ("mlx5_0",)), HostTarget("gpu02", ("mlx5_0", "mlx5_1"))]

    commands = build_host_commands(targets)

    assert set(commands) == {"gpu01", "gpu02"}
    assert commands["gpu02"].count(r"\"name\":") == 2


def test_parse_host_output_success() -> None:
    result = _output("MT12345-ABCDEF", _hca_payload("mlx5_0"), _hca_payload("mlx5_1"))

    probe = parse_host_output("gpu01", result)

    assert probe.error == ""
    assert probe.serial == "ABCDEF"
    assert [hca.name for hca in probe.hcas] == ["mlx5_0", "mlx5_1"]
    assert probe.hcas[0].phys_state == "5: LinkUp"


def test_parse_host_output_transport_failure() -> None:
    probe = parse_host_output("gpu01", CommandResult("", "exit status 255"))

    assert probe.error == "SSH execution failed: exit status 255"
    assert probe.hcas == ()


def test_parse_host_output_invalid_json() -> None:
    probe = parse_host_output("gpu01", CommandResult("bash: cat: permission denied"))

    assert probe.error.startswith("Failed to parse JSON output:")
    assert "Output: bash: cat: permission denied" in probe.error
    assert probe.hcas == ()


def test_parse_host_output_bounds_output_excerpt() -> None:
    probe = parse_host_output("gpu01", CommandResult("x" * 1000))

    assert probe.error.endswith("x" * 200 + "...")
    assert "x" * 201 not in probe.error


def test_parse_host_output_wrong_shape() -> None:
    probe = parse_host_output("gpu01", CommandResult(json.dumps({"serial": "S", "hcas": {}})))

    assert "'hcas' must be an array" in probe.error
    assert probe.hcas == ()


def test_parse_host_output_serial_error_keeps_devices() -> None:
    probe = parse_host_output("gpu01", _output("ERROR", _hca_payload("mlx5_0")))

    assert probe.error == "Failed to read serial number"
    assert probe.serial == "ERROR"
    assert len(probe.hcas) == 1


def test_parse_host_output_names_first_failing_hca_only() -> None:
    result = _output(
        "SERIAL",
        _hca_payload("mlx5_0"),
        _hca_payload("mlx5_1", fw_ver="ERROR"),
        _hca_payload("mlx5_2", board_id="ERROR"),
    )

    probe = parse_host_output("gpu01", result)

    assert probe.error == "Failed to read some HCA attributes for mlx5_1"
    assert len(probe.hcas) == 3


def test_parse_host_output_serial_error_takes_precedence() -> None:
    result = _output("ERROR", _hca_payload("mlx5_0", speed="ERROR"))

    probe = parse_host_output("gpu01", result)

    assert probe.error == "Failed to read serial number"


def test_parse_host_output_empty_hca_list() -> None:
    probe = parse_host_output("gpu01", _output("SERIAL"))

    assert probe.error == ""
    assert probe.hcas == ()


def test_collect_host_probes_isolates_failures() -> None:
    hosts = [f"gpu0{index}" for index in range(1, 6)]

    def executor(hostname: str, command: str) -> CommandResult:
        if hostname == "gpu03":
            return CommandResult("", "connection refused")
        return _output(f"SN-{hostname}", _hca_payload("mlx5_0"), _hca_payload("mlx5_1"))

    probes = collect_host_probes({host: "cmd" for host in hosts}, executor)

    by_host = {probe.hostname: probe for probe in probes}
    assert sorted(by_host) == hosts
    assert by_host["gpu03"].error == "SSH execution failed: connection refused"
    assert by_host["gpu03"].hcas == ()
    for host in hosts:
        if host != "gpu03":
            assert by_host[host].error == ""
            assert len(by_host[host].hcas) == 2
            assert by_host[host].serial == host


def test_collect_host_probes_runs_hosts_concurrently() -> None:
    barrier = threading.Barrier(3, timeout=5)

    def executor(hostname: str, command: str) -> CommandResult:
        barrier.wait()
        return _output("SERIAL")

    probes = collect_host_probes({"a": "cmd", "b": "cmd", "c": "cmd"}, executor)

    assert sorted(probe.hostname for probe in probes) == ["a", "b", "c"]


def test_collect_host_probes_records_executor_exceptions() -> None:
    def executor(hostname: str, command: str) -> CommandResult:
        if hostname == "bad":
            raise RuntimeError("boom")
        return _output("SERIAL", _hca_payload("mlx5_0"))

    probes = collect_host_probes({"good": "cmd", "bad": "cmd"}, executor)

    by_host = {probe.hostname: probe for probe in probes}
    assert by_host["bad"].error == "SSH execution failed: boom"
    assert by_host["good"].error == ""


def test_ssh_executor_builds_command_with_user_and_key() -> None:
    executor = SSHExecutor(user="root", private_key="/keys/id_rsa")

    args = executor.build_command("gpu01", "echo hi")

    assert args == [
        "ssh",
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "LogLevel=ERROR",
        "-i",
        "/keys/id_rsa",
        "root@gpu01",
        "echo hi",
    ]


def test_ssh_executor_keeps_explicit_user_in_hostname() -> None:
    args = SSHExecutor(user="root").build_command("admin@gpu01", "true")

    assert "admin@gpu01" in args
    assert "root@admin@gpu01" not in args


def test_ssh_executor_reports_non_zero_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args, **kwargs):  # type: ignore[no-untyped-def]
        return SimpleNamespace(returncode=255, stdout="Connection refused\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = SSHExecutor()("gpu01", "true")

    assert result.error == "exit status 255: Connection refused"


def test_ssh_executor_reports_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise subprocess.TimeoutExpired(cmd="ssh", timeout=kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = SSHExecutor(timeout=5)("gpu01", "true")

    assert result.error == "timed out after 5s"


def test_ssh_executor_returns_output_on_success(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_run(args, **kwargs):  # type: ignore[no-untyped-def]
        captured["args"] = args
        captured["timeout"] = kwargs["timeout"]
        return SimpleNamespace(returncode=0, stdout='{"serial":"S","hcas":[]}\n')

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = SSHExecutor(timeout=30.0)("gpu01", "echo")

    assert result.error is None
    assert result.output.strip() == '{"serial":"S","hcas":[]}'
    assert captured["args"][-2:] == ["gpu01", "echo"]
    assert captured["timeout"] == 30.0


def test_save_and_load_probes(tmp_path: Path) -> None:
    probes = [
        HostProbe(
            hostname="gpu02",
            serial="ABCDEF",
            hcas=(HcaProbe("mlx5_0", "5: LinkUp", "4: ACTIVE", "200", "28.1", "MT_1"),),
        ),
        HostProbe(hostname="gpu01", error="SSH execution failed: timeout"),
    ]

    probe_path = tmp_path / "probes.json"
    save_probes(probe_path, probes)

    loaded = load_probes(probe_path)

    assert [probe.hostname for probe in loaded] == ["gpu01", "gpu02"]
    assert loaded[0] == probes[1]
    assert loaded[1] == probes[0]


def test_load_probes_requires_hostname(tmp_path: Path) -> None:
    probe_path = tmp_path / "probes.json"
    probe_path.write_text('[{"serial": "S"}]', encoding="utf-8")

    with pytest.raises(ValueError, match="without hostname"):
        load_probes(probe_path)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ('[{"hostname": "gpu01", "hcas": ["mlx5_0"]}]', "entries must be objects"),
        ('[{"hostname": "gpu01", "hcas": {"name": "mlx5_0"}}]', "'hcas' must be an array"),
        ('[{"hostname": "gpu01", "hcas": [{"name": 5}]}]', "'name' must be a string"),
        ('[{"hostname": "gpu01", "serial": 7}]', "'serial' must be a string"),
    ],
)
def test_load_saved_results_rejects_malformed_entries(
    tmp_path: Path, payload: str, message: str
) -> None:
    saved_path = tmp_path / "probes.json"
    saved_path.write_text(payload, encoding="utf-8")

    with pytest.raises(ValueError, match=message) as excinfo:
        load_probes(saved_path)

    assert str(saved_path) in str(excinfo.value)


def test_load_saved_results_ignores_unknown_hca_keys(tmp_path: Path) -> None:
    saved_path = tmp_path / "probes.json"
    saved_path.write_text(
        '[{"hostname": "gpu01", "hcas": [{"name": "mlx5_0", "bogus": "x"}]}]',
        encoding="utf-8",
    )

    (loaded,) = load_probes(saved_path)

    assert loaded.hcas == (HcaProbe("mlx5_0", "", "", "", "", ""),)


def test_collect_parses_after_all_hosts_finish(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    finished: list[str] = []
    parsed_after: list[int] = []

    def executor(hostname: str, command: str) -> CommandResult:
        finished.append(hostname)
        return _output("SERIAL")

    original = probe_module.parse_host_output

    def recording_parse(hostname: str, result: CommandResult) -> HostProbe:
        parsed_after.append(len(finished))
        return original(hostname, result)

    monkeypatch.setattr(probe_module, "parse_host_output", recording_parse)

    collected = collect_host_probes({"a": "cmd", "b": "cmd", "c": "cmd"}, executor)

    assert parsed_after == [3, 3, 3]
    assert sorted(item.hostname for item in collected) == ["a", "b", "c"]
