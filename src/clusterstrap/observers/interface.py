# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/observers/interface.py
from __future__ import annotations
from typing import Protocol, runtime_checkable
from .events import BaseEvent


@runtime_checkable
class Observer(Protocol):
    """
    Receives every lifecycle event of a run. notify() is called from pool
    threads but never concurrently; EventBus serializes delivery.
    """

    def notify(self, event: BaseEvent) -> None: ...
