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
"""Normalization utilities and the HCA health rule."""

from __future__ import annotations

_PHYS_STATE_UP = "LinkUp"
_STATE_ACTIVE = "ACTIVE"


def clean_state(raw_state: str) -> str:
    """Strip a leading status code such as ``"5: "`` from a state string."""

    _, colon, label = raw_state.partition(":")
    if not colon:
        return raw_state
    return label.strip()


def trim_serial(raw_serial: str) -> str:
    """Drop vendor prefixes from a serial number, keeping the last hyphen part."""

    if "-" not in raw_serial:
        return raw_serial
    return raw_serial.rsplit("-", 1)[-1]


def is_healthy(phys_state: str, state: str) -> bool:
    """Return True when the port is physically up and logically active.

    Works on raw or cleaned strings alike. The error sentinel matches neither
    label, so unreadable ports classify as unhealthy.
    """

    return _PHYS_STATE_UP in phys_state and _STATE_ACTIVE in state
