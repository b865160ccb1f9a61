# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from dataclasses import dataclass


@dataclass(frozen=True)
class ExecutionContext:
    """
    controls how commands are executed
    """

    dry_run: bool = False
    connect_timeout: float = 20.0
    connect_retries: int = 3
    connect_delay: float = 10.0
