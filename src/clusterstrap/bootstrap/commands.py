# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/bootstrap/commands.py
"""
Shell commands for each bootstrap step. Everything that mutates a host is
written to be safe to re-run: apt-get install and ufw allow are no-ops when
already applied, and the k3s installer reconciles an existing install.
"""
from __future__ import annotations

import textwrap
from typing import List

from ..execution.result import CommandSpec
from ..inventory.models import Cluster, Host, Role

INSTALLER_URL = "https://get.k3s.io"
KUBECONFIG_PATH = "/etc/rancher/k3s/k3s.yaml"
NODE_TOKEN_PATH = "/var/lib/rancher/k3s/server/node-token"
API_PORT = 6443

PACKAGES = ("curl", "python3-pip", "ufw")

CONTROL_PORTS = (
    6443,   # Kubernetes API
    8472,   # flannel VXLAN
    10250,  # kubelet
    2379,   # etcd client
    2380,   # etcd peer
    80,     # HTTP
    30080,  # NodePort
)
WORKER_PORTS = (8472, 10250, 80, 30080)

WORKLOAD_NAME = "http-server"
WORKLOAD_NODE_PORT = 30080


def install_packages() -> CommandSpec:
    pkgs = " ".join(PACKAGES)
    return CommandSpec(
        command=f"apt-get update -y && DEBIAN_FRONTEND=noninteractive apt-get install -y {pkgs}",
        description="install packages",
    )


def firewall_ports(role: Role) -> tuple:
    return CONTROL_PORTS if role is Role.CONTROL else WORKER_PORTS


def firewall_rules(host: Host) -> List[CommandSpec]:
    """
    Allow rules first, then enable the filter, so a host is never left
    enabled without its SSH/API ports open.
    """
    specs = [
        CommandSpec(command=f"ufw allow {port}/tcp", description=f"allow {port}/tcp")
        for port in firewall_ports(host.role)
    ]
    specs.append(CommandSpec(command="ufw allow OpenSSH", description="allow ssh"))
    specs.append(
        CommandSpec(
            command="ufw default allow && ufw --force enable",
            description="enable firewall",
        )
    )
    return specs


def start_server(cluster: Cluster) -> CommandSpec:
    ip = cluster.control.address
    return CommandSpec(
        command=(
            f"curl -sfL {INSTALLER_URL} | sh -s - server"
            f" --node-external-ip {ip}"
            f" --flannel-backend={cluster.flannel_backend}"
            f" --advertise-address={ip}"
            f" --bind-address={ip}"
            f" --node-ip={ip}"
        ),
        env={"INSTALL_K3S_VERSION": cluster.runtime_version},
        description="install k3s server",
    )


def enable_server() -> CommandSpec:
    return CommandSpec(command="systemctl enable --now k3s", description="enable k3s")


def readiness_marker() -> CommandSpec:
    return CommandSpec(
        command=f"test -f {KUBECONFIG_PATH}",
        ignore_errors=True,
        description="check control plane readiness marker",
    )


def read_token() -> CommandSpec:
    return CommandSpec(command=f"cat {NODE_TOKEN_PATH}", description="read join token")


def join_agent(cluster: Cluster, worker: Host, token: str) -> CommandSpec:
    return CommandSpec(
        command=(
            f"curl -sfL {INSTALLER_URL} | sh -s - agent"
            f" --flannel-backend={cluster.flannel_backend}"
            f" --node-ip={worker.address}"
        ),
        env={
            "INSTALL_K3S_VERSION": cluster.runtime_version,
            "K3S_URL": cluster.server_url,
            "K3S_TOKEN": token,
            "K3S_NODE_IP": worker.address,
        },
        description="join k3s agent",
    )


def agent_logs(lines: int = 50) -> CommandSpec:
    return CommandSpec(
        command=f"journalctl -u k3s-agent -n {lines} --no-pager",
        ignore_errors=True,
        description="collect k3s-agent logs",
    )


def node_status() -> CommandSpec:
    return CommandSpec(
        command=f"k3s kubectl --kubeconfig {KUBECONFIG_PATH} get nodes -o wide --no-headers",
        description="query node status",
    )


def workload_manifest(image: str = "python:3.9-slim") -> str:
    return textwrap.dedent(f"""\
        apiVersion: apps/v1
        kind: DaemonSet
        metadata:
          name: {WORKLOAD_NAME}
          labels:
            app: {WORKLOAD_NAME}
        spec:
          selector:
            matchLabels:
              app: {WORKLOAD_NAME}
          template:
            metadata:
              labels:
                app: {WORKLOAD_NAME}
            spec:
              hostNetwork: true
              containers:
              - name: {WORKLOAD_NAME}
                image: {image}
                command: ["python3"]
                args: ["/opt/http_server.py"]
                ports:
                - containerPort: 80
                volumeMounts:
                - name: {WORKLOAD_NAME}-script
                  mountPath: /opt/http_server.py
              volumes:
              - name: {WORKLOAD_NAME}-script
                hostPath:
                  path: /opt/http_server.py
                  type: File
        ---
        apiVersion: v1
        kind: Service
        metadata:
          name: {WORKLOAD_NAME}-service
        spec:
          selector:
            app: {WORKLOAD_NAME}
          ports:
            - protocol: TCP
              port: 80
              targetPort: 80
              nodePort: {WORKLOAD_NODE_PORT}
          type: NodePort
        """)


def apply_workload() -> CommandSpec:
    manifest = workload_manifest()
    return CommandSpec(
        command=(
            f"k3s kubectl --kubeconfig {KUBECONFIG_PATH} apply -f - <<'EOF'\n"
            f"{manifest}EOF"
        ),
        description="apply demo workload",
    )
