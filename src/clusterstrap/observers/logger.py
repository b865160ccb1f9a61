# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/observers/logger.py
from __future__ import annotations
import logging
from .events import BaseEvent, ControlPlaneTimedOut, HostStepFailed, WorkerJoinFailed

_WARN_EVENTS = (HostStepFailed, WorkerJoinFailed, ControlPlaneTimedOut)


class LoggerObserver:
    """Mirrors events into the run log; failures at WARNING, the rest at DEBUG."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "run_id"))
        level = logging.WARNING if isinstance(event, _WARN_EVENTS) else logging.DEBUG
        self.logger.log(level, "[EVENT] %s: %s", etype, msg)
