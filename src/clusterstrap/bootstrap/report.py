# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/bootstrap/report.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..errors import Cancelled, ControlPlaneFailed, ConvergenceTimeout, InvalidTopology
from ..inventory.models import Cluster, Role

EXIT_OK = 0
EXIT_INVALID_TOPOLOGY = 1
EXIT_CONTROL_PLANE = 2
EXIT_CONVERGENCE_TIMEOUT = 3
EXIT_PARTIAL_FAILURE = 4
EXIT_CANCELLED = 130


class RunState(str, Enum):
    INIT = "Init"
    PACKAGES_INSTALLED = "PackagesInstalled"
    FIREWALL_CONFIGURED = "FirewallConfigured"
    CONTROL_PLANE_STARTING = "ControlPlaneStarting"
    CONTROL_PLANE_READY = "ControlPlaneReady"
    TOKEN_RETRIEVED = "TokenRetrieved"
    WORKERS_JOINING = "WorkersJoining"
    CONVERGED = "Converged"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class HostStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    NOT_READY = "not-ready"    # survived every step but never reported Ready
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class HostOutcome:
    name: str
    role: Role
    status: HostStatus = HostStatus.PENDING
    failed_phase: Optional[str] = None
    error: Optional[str] = None
    diagnostics: List[str] = field(default_factory=list)


@dataclass
class RunReport:
    command: str
    state: RunState = RunState.INIT
    outcomes: Dict[str, HostOutcome] = field(default_factory=dict)
    last_phase: RunState = RunState.INIT
    failure: Optional[Exception] = None

    @classmethod
    def for_cluster(cls, cluster: Cluster, command: str) -> "RunReport":
        outcomes = {h.name: HostOutcome(name=h.name, role=h.role) for h in cluster.all_hosts()}
        return cls(command=command, outcomes=outcomes)

    def hosts_with(self, *statuses: HostStatus) -> List[str]:
        return [o.name for o in self.outcomes.values() if o.status in statuses]

    @property
    def ready_hosts(self) -> List[str]:
        return self.hosts_with(HostStatus.READY)

    @property
    def failed_hosts(self) -> List[str]:
        return self.hosts_with(HostStatus.FAILED)

    @property
    def error(self) -> Optional[str]:
        return str(self.failure) if self.failure is not None else None

    @property
    def exit_code(self) -> int:
        if self.state is RunState.CONVERGED:
            return EXIT_PARTIAL_FAILURE if self.failed_hosts else EXIT_OK
        if self.state is RunState.CANCELLED or isinstance(self.failure, Cancelled):
            return EXIT_CANCELLED
        if isinstance(self.failure, InvalidTopology):
            return EXIT_INVALID_TOPOLOGY
        if isinstance(self.failure, ConvergenceTimeout):
            return EXIT_CONVERGENCE_TIMEOUT
        if isinstance(self.failure, ControlPlaneFailed):
            return EXIT_CONTROL_PLANE
        return EXIT_CONTROL_PLANE if self.state is RunState.FAILED else EXIT_OK

    def summary(self) -> str:
        counts = {s: len(self.hosts_with(s)) for s in HostStatus}
        return (
            f"state={self.state.value} "
            + " ".join(f"{s.value}={n}" for s, n in counts.items() if n)
        )

    def render(self) -> List[str]:
        """Per-host table, with the captured log tail under each failed host."""
        width = max([len(n) for n in self.outcomes] + [4])
        lines = [f"{'HOST':<{width}}  {'ROLE':<7}  {'STATUS':<9}  DETAIL"]
        for o in self.outcomes.values():
            detail = ""
            if o.error:
                detail = f"{o.failed_phase}: {o.error}" if o.failed_phase else o.error
            lines.append(f"{o.name:<{width}}  {o.role.value:<7}  {o.status.value:<9}  {detail}".rstrip())
            for d in o.diagnostics:
                lines.append(f"{'':<{width}}  | {d}")
        lines.append(self.summary())
        if self.failure is not None:
            lines.append(f"error: {self.failure}")
        return lines
