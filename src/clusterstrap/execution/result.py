# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/execution/result.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CommandSpec:
    """
    A single remote operation. Commands that mutate host state should be
    written so that re-running them is harmless.
    """
    command: str
    sudo: bool = True
    ignore_errors: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    description: str = ""

    def label(self) -> str:
        return self.description or self.command.splitlines()[0][:60]


@dataclass(frozen=True)
class OperationResult:
    host: str
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, lines: int = 50) -> List[str]:
        out = self.stdout.splitlines()
        return out[-lines:] if lines > 0 else []
