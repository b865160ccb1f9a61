# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/execution/interface.py
from __future__ import annotations

from typing import Protocol

from ..inventory.models import Host
from .result import CommandSpec, OperationResult


class CommandExecutor(Protocol):
    """
    Contract for running an operation on one host.

    Implementations raise UnreachableHost when the host cannot be contacted
    and CommandFailed when the command exits non-zero and the CommandSpec is not
    marked ignore_errors.
    """

    def execute(self, host: Host, operation: CommandSpec) -> OperationResult: ...

    def close(self) -> None: ...
