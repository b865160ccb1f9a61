import threading

from clusterstrap.bootstrap.orchestrator import BootstrapOptions, BootstrapOrchestrator
from clusterstrap.bootstrap.report import HostStatus, RunState
from clusterstrap.errors import (
    Cancelled,
    ControlPlaneFailed,
    ControlPlaneTimeout,
    ConvergenceTimeout,
    UnreachableHost,
)
from clusterstrap.observers.events import RunSummary, TokenRetrieved

from fakes import TOKEN, Capture, FakeExecutor, make_cluster, no_sleep, nodes_output


def _orch(cluster, ex, observers=None, cancel=None, **opts):
    options = BootstrapOptions(
        control_plane_interval=1,
        control_plane_timeout=3,
        convergence_retries=3,
        convergence_delay=1,
        **opts,
    )
    return BootstrapOrchestrator(
        cluster, ex, options=options, observers=observers, cancel=cancel, sleep=no_sleep,
    )


# ----------------- happy paths -----------------

def test_bootstrap_three_nodes_converges():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    report = _orch(cluster, ex).bootstrap()

    assert report.state is RunState.CONVERGED
    assert {n: o.status for n, o in report.outcomes.items()} == {
        "a": HostStatus.READY,
        "b": HostStatus.READY,
        "c": HostStatus.READY,
    }
    assert report.exit_code == 0
    # exactly one server start, on the control host
    assert ex.count("sh -s - server") == 1
    assert any("sh -s - server" in c for c in ex.commands_for("a"))
    assert ex.count("node-token") == 1


def test_bootstrap_without_workers_converges():
    cluster = make_cluster(workers=())
    ex = FakeExecutor(cluster)
    report = _orch(cluster, ex).bootstrap()

    assert report.state is RunState.CONVERGED
    assert report.ready_hosts == ["a"]
    assert ex.count("sh -s - agent") == 0
    assert report.exit_code == 0


def test_phases_run_in_order_on_control_host():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    _orch(cluster, ex).bootstrap()

    cmds = ex.commands_for("a")
    idx = lambda needle: next(i for i, c in enumerate(cmds) if needle in c)
    assert idx("apt-get install") < idx("ufw --force enable") < idx("sh -s - server")
    assert idx("sh -s - server") < idx("test -f /etc/rancher/k3s/k3s.yaml") < idx("node-token")
    assert idx("node-token") < idx("get nodes")


def test_firewall_allows_precede_enable_on_every_host():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    _orch(cluster, ex).bootstrap()

    for name in ("a", "b", "c"):
        cmds = [c for c in ex.commands_for(name) if c.startswith("ufw")]
        enable = next(i for i, c in enumerate(cmds) if "--force enable" in c)
        allows = [i for i, c in enumerate(cmds) if c.startswith("ufw allow")]
        assert allows and max(allows) < enable

    control_rules = " ".join(ex.commands_for("a"))
    worker_rules = " ".join(ex.commands_for("b"))
    assert "ufw allow 6443/tcp" in control_rules
    assert "ufw allow 2379/tcp" in control_rules
    assert "ufw allow 6443/tcp" not in worker_rules
    assert "ufw allow 8472/tcp" in worker_rules


def test_workers_join_with_shared_token_and_own_address():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    _orch(cluster, ex).bootstrap()

    for worker in cluster.workers:
        spec = next(s for s in ex.specs_for(worker.name) if "sh -s - agent" in s.command)
        assert spec.env["K3S_TOKEN"] == TOKEN
        assert spec.env["K3S_URL"] == "https://10.0.0.1:6443"
        assert spec.env["K3S_NODE_IP"] == worker.address
        assert f"--node-ip={worker.address}" in spec.command
        assert spec.env["INSTALL_K3S_VERSION"] == cluster.runtime_version


def test_deploy_workload_applies_manifest_after_convergence():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    cap = Capture()
    report = _orch(cluster, ex, observers=[cap], deploy_workload=True).bootstrap()

    assert report.exit_code == 0
    apply_cmd = next(c for c in ex.commands_for("a") if "apply -f -" in c)
    assert "kind: DaemonSet" in apply_cmd
    assert "nodePort: 30080" in apply_cmd
    assert "WorkloadApplied" in cap.kinds()


# ----------------- worker isolation -----------------

def test_worker_join_failure_is_isolated_and_reported():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("c", "sh -s - agent", rc=1, stderr="[ERROR] agent failed")
    ex.on("c", "journalctl -u k3s-agent", stdout="line1\nline2\nk3s-agent: connection refused\n")

    report = _orch(cluster, ex).bootstrap()

    assert report.state is RunState.CONVERGED
    assert report.outcomes["a"].status is HostStatus.READY
    assert report.outcomes["b"].status is HostStatus.READY
    c = report.outcomes["c"]
    assert c.status is HostStatus.FAILED
    assert c.failed_phase == "WorkersJoining"
    assert c.diagnostics[-1] == "k3s-agent: connection refused"
    assert report.exit_code == 4
    # the sibling still joined
    assert "b" in ex.joined


def test_worker_join_retry_extension_point():
    cluster = make_cluster(workers=("b",))
    ex = FakeExecutor(cluster)
    ex.on("b", "sh -s - agent", rc=1, times=1)

    report = _orch(cluster, ex, join_retries=1).bootstrap()

    assert report.exit_code == 0
    assert ex.count("sh -s - agent") == 2


def test_worker_package_failure_skips_later_phases():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("b", "apt-get", rc=100, stderr="E: Unable to locate package")

    report = _orch(cluster, ex).bootstrap()

    assert report.state is RunState.CONVERGED
    assert report.outcomes["b"].status is HostStatus.FAILED
    assert report.outcomes["b"].failed_phase == "PackagesInstalled"
    assert not any(c.startswith("ufw") for c in ex.commands_for("b"))
    assert not any("sh -s - agent" in c for c in ex.commands_for("b"))
    assert report.exit_code == 4


def test_unreachable_worker_is_isolated():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("c", "", exc=UnreachableHost("c", "timed out"))

    report = _orch(cluster, ex).bootstrap()

    assert report.outcomes["c"].status is HostStatus.FAILED
    assert "unreachable" in report.outcomes["c"].error
    assert report.ready_hosts == ["a", "b"]
    assert report.exit_code == 4


# ----------------- control host failures -----------------

def test_control_package_failure_aborts_run():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "apt-get", rc=1)

    report = _orch(cluster, ex).bootstrap()

    assert report.state is RunState.FAILED
    assert isinstance(report.failure, ControlPlaneFailed)
    assert report.outcomes["a"].status is HostStatus.FAILED
    assert ex.count("sh -s - server") == 0
    assert ex.count("ufw") == 0
    assert report.exit_code == 2


def test_control_plane_timeout_is_fatal():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "test -f /etc/rancher/k3s/k3s.yaml", rc=1)
    cap = Capture()

    report = _orch(cluster, ex, observers=[cap]).bootstrap()

    assert isinstance(report.failure, ControlPlaneTimeout)
    assert report.exit_code == 2
    # timeout 3s at 1s interval: checks at 0, 1, 2 and 3s
    assert ex.count("test -f /etc/rancher/k3s/k3s.yaml") == 4
    assert ex.count("node-token") == 0
    assert ex.count("sh -s - agent") == 0
    assert "ControlPlaneTimedOut" in cap.kinds()


def test_control_plane_ready_after_a_few_checks():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "test -f /etc/rancher/k3s/k3s.yaml", rc=1, times=2)

    report = _orch(cluster, ex).bootstrap()

    assert report.exit_code == 0
    assert ex.count("test -f /etc/rancher/k3s/k3s.yaml") == 3


def test_server_install_failure_is_fatal():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "sh -s - server", rc=1, stderr="download failed")

    report = _orch(cluster, ex).bootstrap()

    assert report.exit_code == 2
    assert report.outcomes["a"].failed_phase == "ControlPlaneStarting"
    assert ex.count("sh -s - agent") == 0


def test_empty_token_is_a_control_plane_failure():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "node-token", stdout="\n")

    report = _orch(cluster, ex).bootstrap()

    assert report.exit_code == 2
    assert ex.count("sh -s - agent") == 0


# ----------------- convergence -----------------

def test_convergence_timeout_reports_partial_readiness():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "get nodes", stdout=nodes_output({"a": "Ready", "b": "Ready", "c": "NotReady"}, cluster))

    report = _orch(cluster, ex).bootstrap()

    assert isinstance(report.failure, ConvergenceTimeout)
    assert report.exit_code == 3
    assert ex.count("get nodes") == 3
    assert report.outcomes["a"].status is HostStatus.READY
    assert report.outcomes["b"].status is HostStatus.READY
    assert report.outcomes["c"].status is HostStatus.NOT_READY


def test_convergence_stops_at_first_ready_check():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "get nodes", stdout=nodes_output({"a": "Ready", "b": "NotReady"}, cluster), times=1)

    report = _orch(cluster, ex).bootstrap()

    assert report.exit_code == 0
    assert ex.count("get nodes") == 2


def test_failed_status_query_is_retried():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "get nodes", rc=1, stderr="The connection to the server was refused", times=1)

    report = _orch(cluster, ex).bootstrap()

    assert report.exit_code == 0
    assert ex.count("get nodes") == 2


def test_losing_control_host_while_converging_aborts():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "get nodes", exc=UnreachableHost("a", "connection reset by peer"))

    report = _orch(cluster, ex).bootstrap()

    assert report.state is RunState.FAILED
    assert isinstance(report.failure, ControlPlaneFailed)
    assert report.exit_code == 2
    assert ex.count("get nodes") == 1
    assert report.outcomes["a"].status is HostStatus.FAILED
    assert "connection reset by peer" in report.outcomes["a"].error


# ----------------- token & events -----------------

def test_token_created_once_and_never_published():
    cluster = make_cluster(workers=("b", "c", "d", "e"))
    ex = FakeExecutor(cluster)
    cap = Capture()
    orch = _orch(cluster, ex, observers=[cap], max_workers=4)

    report = orch.bootstrap()

    assert report.exit_code == 0
    assert orch.token.get(timeout=0) == TOKEN
    assert sum(isinstance(e, TokenRetrieved) for e in cap.events) == 1
    assert all(TOKEN not in repr(e) for e in cap.events)


def test_run_emits_lifecycle_events():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    cap = Capture()
    _orch(cluster, ex, observers=[cap]).bootstrap()

    kinds = cap.kinds()
    assert kinds[0] == "RunStarted"
    assert kinds[-1] == "RunSummary"
    assert "ControlPlaneReady" in kinds
    assert kinds.count("WorkerJoined") == 2
    summary = cap.events[-1]
    assert isinstance(summary, RunSummary)
    assert summary.state == "Converged"
    assert summary.exit_code == 0


# ----------------- cancellation -----------------

def test_cancel_before_start_issues_no_commands():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    cancel = threading.Event()
    cancel.set()

    report = _orch(cluster, ex, cancel=cancel).bootstrap()

    assert report.state is RunState.CANCELLED
    assert isinstance(report.failure, Cancelled)
    assert report.exit_code == 130
    assert ex.calls == []


def test_cancel_during_phase_stops_before_next_phase():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    cancel = threading.Event()

    def cancel_then_succeed(host, op):
        cancel.set()
        return 0, "", ""

    ex.on_call("a", "apt-get", cancel_then_succeed)

    report = _orch(cluster, ex, cancel=cancel).bootstrap()

    assert report.state is RunState.CANCELLED
    assert ex.count("ufw") == 0
    assert ex.count("sh -s - server") == 0


def test_cancel_cuts_convergence_delay_short():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    cancel = threading.Event()

    def cancel_and_report_not_ready(host, op):
        cancel.set()
        return 0, nodes_output({"a": "Ready", "b": "NotReady", "c": "NotReady"}, cluster), ""

    ex.on_call("a", "get nodes", cancel_and_report_not_ready)
    # no injected sleep: pauses wait on the cancel event
    options = BootstrapOptions(convergence_retries=10, convergence_delay=3600)

    report = BootstrapOrchestrator(cluster, ex, options=options, cancel=cancel).bootstrap()

    assert report.state is RunState.CANCELLED
    assert report.exit_code == 130
    assert ex.count("get nodes") == 1


# ----------------- join & status -----------------

def test_join_against_running_control_plane():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)

    report = _orch(cluster, ex).join()

    assert report.command == "join"
    assert report.exit_code == 0
    assert ex.count("sh -s - server") == 0
    assert not any("apt-get" in c for c in ex.commands_for("a"))
    assert ex.joined == {"b", "c"}


def test_join_fails_when_control_plane_is_not_running():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "test -f /etc/rancher/k3s/k3s.yaml", rc=1)

    report = _orch(cluster, ex).join()

    assert report.exit_code == 2
    assert isinstance(report.failure, ControlPlaneTimeout)
    assert ex.count("test -f /etc/rancher/k3s/k3s.yaml") == 4
    assert ex.count("sh -s - agent") == 0


def test_join_waits_for_control_plane_within_timeout():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "test -f /etc/rancher/k3s/k3s.yaml", rc=1, times=1)
    slept = []
    options = BootstrapOptions(control_plane_timeout=60, control_plane_interval=5, convergence_delay=0)

    report = BootstrapOrchestrator(cluster, ex, options=options, sleep=slept.append).join()

    assert report.exit_code == 0
    assert ex.count("test -f /etc/rancher/k3s/k3s.yaml") == 2
    assert slept[0] == 5
    assert ex.joined == {"b", "c"}


def test_status_reports_ready_hosts():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("a", "get nodes", stdout=nodes_output({"a": "Ready", "b": "NotReady"}, cluster))

    state = _orch(cluster, ex).status()

    assert state.ready == {"a"}
    assert state.not_ready == {"b", "c"}
    assert not state.converged(["a", "b", "c"])


def test_render_lists_hosts_and_diagnostics():
    cluster = make_cluster()
    ex = FakeExecutor(cluster)
    ex.on("c", "sh -s - agent", rc=1)
    ex.on("c", "journalctl", stdout="boom\n")

    lines = _orch(cluster, ex).bootstrap().render()

    text = "\n".join(lines)
    assert "a" in lines[1] and "ready" in lines[1]
    assert "| boom" in text
    assert "state=Converged" in text
