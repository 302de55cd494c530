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
"""YAML configuration parsing and probe target building."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from hca_check.models import HostTarget

STREAM_FULLMESH = "fullmesh"
STREAM_INCAST = "incast"
STREAM_P2P = "p2p"
_STREAM_TYPES = (STREAM_FULLMESH, STREAM_INCAST, STREAM_P2P)

DEFAULT_SSH_TIMEOUT = 30.0
DEFAULT_REPORTS_DIR = "reports"


@dataclass(frozen=True)
class RoleConfig:
    """Hosts and HCAs taking part in one benchmark role."""

    hostnames: tuple[str, ...] = ()
    hcas: tuple[str, ...] = ()


@dataclass(frozen=True)
class SSHConfig:
    """SSH transport settings."""

    user: str | None = None
    private_key: str | None = None
    timeout_seconds: float | None = DEFAULT_SSH_TIMEOUT


@dataclass(frozen=True)
class Config:
    """hca-check configuration."""

    stream_type: str = STREAM_INCAST
    speed: float = 0.0
    server: RoleConfig = field(default_factory=RoleConfig)
    client: RoleConfig = field(default_factory=RoleConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    reports_dir: str = DEFAULT_REPORTS_DIR


def load_config(path: str | Path) -> Config:
    """Load a YAML configuration file."""

    with Path(path).open(encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ValueError(f"{path} is not valid YAML: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return parse_config(raw, source=str(path))


def parse_config(raw: dict[str, Any], source: str = "<config>") -> Config:
    """Build a Config from an already-decoded mapping."""

    stream_type = str(raw.get("stream_type") or STREAM_INCAST).strip().lower()
    if stream_type not in _STREAM_TYPES:
        raise ValueError(
            f"{source} has unsupported stream_type {stream_type!r}; "
            f"expected one of: {', '.join(_STREAM_TYPES)}"
        )

    speed = raw.get("speed") or 0
    if isinstance(speed, bool) or not isinstance(speed, (int, float)):
        raise ValueError(f"{source} has non-numeric speed: {speed!r}")

    ssh_raw = _section(raw, "ssh", source)
    timeout = ssh_raw.get("timeout_seconds", DEFAULT_SSH_TIMEOUT)
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        raise ValueError(f"{source} has invalid ssh.timeout_seconds: {timeout!r}")

    report_raw = _section(raw, "report", source)
    return Config(
        stream_type=stream_type,
        speed=float(speed),
        server=_parse_role(raw, "server", source),
        client=_parse_role(raw, "client", source),
        ssh=SSHConfig(
            user=_optional_str(ssh_raw.get("user")),
            private_key=_optional_str(ssh_raw.get("private_key")),
            timeout_seconds=float(timeout) if timeout is not None else None,
        ),
        reports_dir=_optional_str(report_raw.get("dir")) or DEFAULT_REPORTS_DIR,
    )


def build_host_targets(config: Config) -> list[HostTarget]:
    """Merge server and client roles into one target per host.

    A host named by several roles is probed once, for the union of the HCAs
    of those roles. First-seen order is kept for hosts and HCAs.
    """

    hcas_by_host: dict[str, list[str]] = {}
    for role in (config.server, config.client):
        for hostname in role.hostnames:
            hcas = hcas_by_host.setdefault(hostname, [])
            for hca in role.hcas:
                if hca not in hcas:
                    hcas.append(hca)
    return [HostTarget(hostname, tuple(hcas)) for hostname, hcas in hcas_by_host.items()]


def _section(raw: dict[str, Any], key: str, source: str) -> dict[str, Any]:
    """Return a nested mapping, treating a missing section as empty."""

    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{source} section {key!r} must be a mapping")
    return value


def _parse_role(raw: dict[str, Any], key: str, source: str) -> RoleConfig:
    section = _section(raw, key, source)
    return RoleConfig(
        hostnames=_string_list(section.get("hostname"), f"{key}.hostname", source),
        hcas=_string_list(section.get("hca"), f"{key}.hca", source),
    )


def _string_list(value: Any, key: str, source: str) -> tuple[str, ...]:
    """Validate a list of non-empty strings."""

    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValueError(f"{source} key {key!r} must be a list of strings")
    items: list[str] = []
    for item in value:
        text = str(item).strip() if item is not None else ""
        if not text:
            raise ValueError(f"{source} key {key!r} has empty entries")
        items.append(text)
    return tuple(items)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
