# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/bootstrap/orchestrator.py
from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..errors import (
    Cancelled,
    ClusterstrapError,
    CommandFailed,
    ControlPlaneFailed,
    ControlPlaneTimeout,
    ConvergenceTimeout,
    PollTimeout,
    UnreachableHost,
)
from ..execution.interface import CommandExecutor
from ..execution.result import CommandSpec, OperationResult
from ..inventory.models import Cluster, Host
from ..observers.dispatcher import EventBus
from ..observers.events import (
    ControlPlaneReady,
    ControlPlaneTimedOut,
    ConvergencePolled,
    HostStepFailed,
    PhaseCompleted,
    PhaseStarted,
    RunStarted,
    RunSummary,
    TokenRetrieved,
    WorkerJoinFailed,
    WorkerJoined,
    WorkloadApplied,
    new_ctx,
    stamp,
)
from . import commands
from .poller import ConvergenceState, parse_node_status, poll_until
from .report import HostStatus, RunReport, RunState
from .token import TokenStore

log = logging.getLogger("clusterstrap")


@dataclass
class BootstrapOptions:
    max_workers: int = 10
    control_plane_timeout: float = 300.0
    control_plane_interval: float = 5.0
    convergence_retries: int = 10
    convergence_delay: float = 30.0
    join_retries: int = 0           # worker joins are terminal per worker unless raised
    join_retry_delay: float = 10.0
    agent_log_lines: int = 50
    token_wait_timeout: float = 60.0
    deploy_workload: bool = False


class BootstrapOrchestrator:
    """
    Drives a cluster through

        Init -> PackagesInstalled -> FirewallConfigured -> ControlPlaneStarting
             -> ControlPlaneReady -> TokenRetrieved -> WorkersJoining -> Converged

    Per-host steps within a phase run concurrently and each phase is a
    barrier. A failing worker is recorded and skipped by later phases; a
    failing control host ends the run. bootstrap() and join() always return a
    RunReport; whole-run failures are carried in report.failure.
    """

    def __init__(
        self,
        cluster: Cluster,
        executor: CommandExecutor,
        options: Optional[BootstrapOptions] = None,
        observers: Optional[List] = None,
        cancel: Optional[threading.Event] = None,
        run_id: Optional[str] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.cluster = cluster
        self.executor = executor
        self.options = options or BootstrapOptions()
        self.cancel = cancel or threading.Event()
        self.token = TokenStore()
        self.bus = EventBus(observers or [])
        self.run_ctx = new_ctx(cluster=cluster.control.name, run_id=run_id)
        # pauses wait on the cancel event so Ctrl-C cuts them short
        self._sleep = sleep or self.cancel.wait
        self._abort = threading.Event()
        self._report_lock = threading.Lock()
        self.report = RunReport.for_cluster(cluster, command="bootstrap")

    # ------------------ helpers ------------------

    def _emit(self, event_cls, **data) -> None:
        self.bus.emit(event_cls(**stamp(self.run_ctx), **data))

    def _transition(self, state: RunState) -> None:
        log.info("[cluster] %s -> %s", self.report.last_phase.value, state.value)
        self.report.last_phase = state
        self.report.state = state

    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise Cancelled(f"run cancelled after {self.report.last_phase.value}")

    def _exec(self, host: Host, spec: CommandSpec) -> OperationResult:
        # stop issuing new commands once the run is cancelled or aborted
        if self.cancel.is_set() or self._abort.is_set():
            raise Cancelled(f"not running '{spec.label()}' on {host.name}")
        return self.executor.execute(host, spec)

    def _is_failed(self, host: Host) -> bool:
        return self.report.outcomes[host.name].status is HostStatus.FAILED

    def _alive(self, hosts: List[Host]) -> List[Host]:
        return [h for h in hosts if not self._is_failed(h)]

    def _fail_host(self, host: Host, phase: str, error: Exception, diagnostics: Optional[List[str]] = None) -> None:
        with self._report_lock:
            outcome = self.report.outcomes[host.name]
            outcome.status = HostStatus.FAILED
            outcome.failed_phase = phase
            outcome.error = str(error)
            if diagnostics:
                outcome.diagnostics = list(diagnostics)
        log.error("[%s] %s failed: %s", host.name, phase, error)
        self._emit(HostStepFailed, host=host.name, phase=phase, error=str(error))

    def _run_phase(self, phase: RunState, hosts: List[Host], step: Callable[[Host], None]) -> None:
        """
        Run `step` for every surviving host on a bounded pool and wait for all
        of them. Raises ControlPlaneFailed if the control host failed.
        """
        alive = self._alive(hosts)
        names = [h.name for h in alive]
        self._emit(PhaseStarted, phase=phase.value, hosts=names)
        log.info("[cluster] %s: %d host(s)", phase.value, len(alive))

        succeeded: List[str] = []
        failed: List[str] = []
        if alive:
            workers = max(1, min(self.options.max_workers, len(alive)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clusterstrap") as pool:
                futures = {pool.submit(step, h): h for h in alive}
                for fut in as_completed(futures):
                    host = futures[fut]
                    try:
                        fut.result()
                        succeeded.append(host.name)
                    except Cancelled as e:
                        log.info("[%s] %s skipped: %s", host.name, phase.value, e)
                        with self._report_lock:
                            self.report.outcomes[host.name].status = HostStatus.SKIPPED
                    except ClusterstrapError as e:
                        failed.append(host.name)
                        if host.is_control:
                            self._abort.set()
                        self._fail_host(host, phase.value, e)

        self._emit(PhaseCompleted, phase=phase.value, succeeded=sorted(succeeded), failed=sorted(failed))

        if self.cluster.control.name in failed:
            err = self.report.outcomes[self.cluster.control.name].error
            raise ControlPlaneFailed(f"control host '{self.cluster.control.name}' failed during {phase.value}: {err}")
        self._check_cancel()

    def _control_step(self, phase: RunState, spec: CommandSpec) -> OperationResult:
        control = self.cluster.control
        try:
            return self._exec(control, spec)
        except Cancelled:
            raise
        except ClusterstrapError as e:
            self._fail_host(control, phase.value, e)
            raise ControlPlaneFailed(f"control host '{control.name}' failed to {spec.label()}: {e}") from e

    # ------------------ per-host steps ------------------

    def _install_packages(self, host: Host) -> None:
        self._exec(host, commands.install_packages())

    def _configure_firewall(self, host: Host) -> None:
        for spec in commands.firewall_rules(host):
            self._exec(host, spec)

    def _collect_agent_logs(self, worker: Host) -> List[str]:
        try:
            result = self._exec(worker, commands.agent_logs(self.options.agent_log_lines))
        except ClusterstrapError as e:
            log.warning("[%s] could not collect k3s-agent logs: %s", worker.name, e)
            return []
        return result.tail(self.options.agent_log_lines)

    def _join_worker(self, worker: Host) -> None:
        token = self.token.get(timeout=self.options.token_wait_timeout)
        spec = commands.join_agent(self.cluster, worker, token)
        attempts = 0
        while True:
            attempts += 1
            try:
                self._exec(worker, spec)
                break
            except CommandFailed as e:
                if attempts <= self.options.join_retries:
                    log.info("[%s] join failed (attempt %d), retrying in %ss",
                             worker.name, attempts, self.options.join_retry_delay)
                    self._sleep(self.options.join_retry_delay)
                    continue
                diagnostics = self._collect_agent_logs(worker)
                with self._report_lock:
                    self.report.outcomes[worker.name].diagnostics = diagnostics
                self._emit(WorkerJoinFailed, host=worker.name, error=str(e), log_lines=len(diagnostics))
                raise
        log.info("[%s] joined %s", worker.name, self.cluster.server_url)
        self._emit(WorkerJoined, host=worker.name, attempts=attempts)

    # ------------------ global steps ------------------

    def _lost_control_host(self, phase: RunState, error: UnreachableHost) -> ControlPlaneFailed:
        control = self.cluster.control
        self._fail_host(control, phase.value, error)
        return ControlPlaneFailed(f"lost control host '{control.name}' during {phase.value}: {error}")

    def _wait_control_plane(self) -> None:
        control = self.cluster.control
        opts = self.options
        # first check is immediate; the last one lands on the deadline
        retries = math.ceil(opts.control_plane_timeout / max(opts.control_plane_interval, 0.001)) + 1

        try:
            attempts = poll_until(
                lambda attempt: attempt if self._exec(control, commands.readiness_marker()).ok else None,
                lambda attempt: attempt is not None,
                retries=retries,
                delay=opts.control_plane_interval,
                cancel=self.cancel,
                sleep=self._sleep,
                label="control plane readiness",
            )
        except UnreachableHost as e:
            raise self._lost_control_host(RunState.CONTROL_PLANE_STARTING, e) from e
        except PollTimeout as e:
            err = ControlPlaneTimeout(
                f"{commands.KUBECONFIG_PATH} did not appear on '{control.name}' "
                f"after {e.attempts} checks"
            )
            self._fail_host(control, RunState.CONTROL_PLANE_STARTING.value, err)
            self._emit(ControlPlaneTimedOut, host=control.name, timeout_s=opts.control_plane_timeout)
            raise err from e

        self._emit(ControlPlaneReady, host=control.name, attempts=attempts)
        self._transition(RunState.CONTROL_PLANE_READY)

    def _start_control_plane(self) -> None:
        self._transition(RunState.CONTROL_PLANE_STARTING)
        log.info("[%s] starting k3s server %s", self.cluster.control.name, self.cluster.runtime_version)
        self._control_step(RunState.CONTROL_PLANE_STARTING, commands.start_server(self.cluster))
        self._control_step(RunState.CONTROL_PLANE_STARTING, commands.enable_server())
        self._wait_control_plane()

    def _retrieve_token(self) -> None:
        result = self._control_step(RunState.CONTROL_PLANE_READY, commands.read_token())
        try:
            self.token.set(result.stdout)
        except ValueError as e:
            self._fail_host(self.cluster.control, RunState.CONTROL_PLANE_READY.value, e)
            raise ControlPlaneFailed(f"empty join token on '{self.cluster.control.name}'") from e
        self._emit(TokenRetrieved, host=self.cluster.control.name)
        self._transition(RunState.TOKEN_RETRIEVED)

    def _join_workers(self) -> None:
        self._transition(RunState.WORKERS_JOINING)
        self._run_phase(RunState.WORKERS_JOINING, self.cluster.workers, self._join_worker)

    def query_status(self, hosts: Optional[List[Host]] = None, attempt: int = 0) -> ConvergenceState:
        result = self._exec(self.cluster.control, commands.node_status())
        nodes = parse_node_status(result.stdout)
        return ConvergenceState.from_nodes(nodes, hosts or self.cluster.all_hosts(), attempt)

    def _await_convergence(self) -> None:
        expected = self._alive(self.cluster.all_hosts())
        names = [h.name for h in expected]

        def query(attempt: int) -> ConvergenceState:
            state = self.query_status(expected, attempt)
            self._emit(
                ConvergencePolled,
                attempt=attempt,
                ready=sorted(state.ready),
                not_ready=sorted(state.not_ready),
            )
            return state

        try:
            state = poll_until(
                query,
                lambda s: s.converged(names),
                retries=self.options.convergence_retries,
                delay=self.options.convergence_delay,
                cancel=self.cancel,
                sleep=self._sleep,
                label="cluster convergence",
            )
        except UnreachableHost as e:
            raise self._lost_control_host(RunState.WORKERS_JOINING, e) from e
        except PollTimeout as e:
            last: Optional[ConvergenceState] = e.last_state
            ready = last.ready if last is not None else frozenset()
            for name in names:
                self.report.outcomes[name].status = HostStatus.READY if name in ready else HostStatus.NOT_READY
            missing = sorted(set(names) - set(ready))
            raise ConvergenceTimeout(
                f"{len(missing)} host(s) not Ready after {e.attempts} checks: {', '.join(missing)}",
                last,
            ) from e

        for name in names:
            self.report.outcomes[name].status = HostStatus.READY
        log.info("[cluster] all %d host(s) Ready after %d check(s)", len(names), state.attempt)
        self._transition(RunState.CONVERGED)

    def _apply_workload(self) -> None:
        self._control_step(RunState.CONVERGED, commands.apply_workload())
        log.info("[cluster] applied %s (NodePort %d)", commands.WORKLOAD_NAME, commands.WORKLOAD_NODE_PORT)
        self._emit(WorkloadApplied, name=commands.WORKLOAD_NAME, node_port=commands.WORKLOAD_NODE_PORT)

    # ------------------ run drivers ------------------

    def _bootstrap_steps(self) -> None:
        hosts = self.cluster.all_hosts()
        self._check_cancel()
        self._run_phase(RunState.PACKAGES_INSTALLED, hosts, self._install_packages)
        self._transition(RunState.PACKAGES_INSTALLED)
        self._run_phase(RunState.FIREWALL_CONFIGURED, hosts, self._configure_firewall)
        self._transition(RunState.FIREWALL_CONFIGURED)
        self._start_control_plane()
        self._check_cancel()
        self._retrieve_token()
        self._check_cancel()
        self._join_workers()
        self._await_convergence()
        if self.options.deploy_workload:
            self._apply_workload()

    def _join_steps(self) -> None:
        workers = self.cluster.workers
        self._check_cancel()
        self._wait_control_plane()
        self._run_phase(RunState.PACKAGES_INSTALLED, workers, self._install_packages)
        self._run_phase(RunState.FIREWALL_CONFIGURED, workers, self._configure_firewall)
        self._retrieve_token()
        self._check_cancel()
        self._join_workers()
        self._await_convergence()

    def _run(self, command: str, steps: Callable[[], None]) -> RunReport:
        self.report.command = command
        self._emit(RunStarted, command=command, hosts=[h.name for h in self.cluster.all_hosts()])
        try:
            steps()
        except Cancelled as e:
            log.warning("[cluster] %s", e)
            self.report.failure = e
            self.report.state = RunState.CANCELLED
        except (ControlPlaneFailed, ConvergenceTimeout) as e:
            log.error("[cluster] %s", e)
            self.report.failure = e
            self.report.state = RunState.FAILED

        report = self.report
        self._emit(
            RunSummary,
            state=report.state.value,
            exit_code=report.exit_code,
            ready=report.ready_hosts,
            failed=report.failed_hosts,
            error=report.error,
        )
        log.info("[cluster] %s", report.summary())
        return report

    def bootstrap(self) -> RunReport:
        """Full bring-up: packages, firewall, control plane, token, workers, convergence."""
        return self._run("bootstrap", self._bootstrap_steps)

    def join(self) -> RunReport:
        """Join workers to an already running control plane."""
        return self._run("join", self._join_steps)

    def status(self) -> ConvergenceState:
        return self.query_status()
