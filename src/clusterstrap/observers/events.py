# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    cluster: str      # control host name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(cluster: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a run context with a fresh timestamp."""
    return {**ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    command: str
    hosts: List[str]

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    state: str
    exit_code: int
    ready: List[str]
    failed: List[str]
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str
    hosts: List[str]

@dataclass(frozen=True)
class PhaseCompleted(BaseEvent):
    phase: str
    succeeded: List[str]
    failed: List[str]

@dataclass(frozen=True)
class HostStepFailed(BaseEvent):
    host: str
    phase: str
    error: str


# ---------------------------------------------------------------------
# Control plane & token
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ControlPlaneReady(BaseEvent):
    host: str
    attempts: int

@dataclass(frozen=True)
class ControlPlaneTimedOut(BaseEvent):
    host: str
    timeout_s: float

@dataclass(frozen=True)
class TokenRetrieved(BaseEvent):
    host: str


# ---------------------------------------------------------------------
# Workers & convergence
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WorkerJoined(BaseEvent):
    host: str
    attempts: int

@dataclass(frozen=True)
class WorkerJoinFailed(BaseEvent):
    host: str
    error: str
    log_lines: int

@dataclass(frozen=True)
class ConvergencePolled(BaseEvent):
    attempt: int
    ready: List[str]
    not_ready: List[str]

@dataclass(frozen=True)
class WorkloadApplied(BaseEvent):
    name: str
    node_port: int
