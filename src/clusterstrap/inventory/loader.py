# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/inventory/loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.loader import load_config
from ..config.models import HostDefaults, HostSpec, InventoryFile
from ..errors import ConfigError, InvalidTopology
from .models import Cluster, Host, Role

log = logging.getLogger("clusterstrap")

CONTROL_GROUPS = ("master", "control", "controllers", "server", "servers")
WORKER_GROUPS = ("worker", "workers", "agent", "agents", "nodes")


def _parse_ini_line(line: str) -> Tuple[str, Dict[str, str]]:
    parts = line.split()
    facts: Dict[str, str] = {}
    for p in parts[1:]:
        if "=" in p:
            k, v = p.split("=", 1)
            facts[k] = v
    return parts[0], facts


def _port(value: str, where: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{where}: ansible_port must be a number, got '{value}'") from None


def read_ini_inventory(inv_path: Path) -> InventoryFile:
    """
    Parse an Ansible-style INI inventory, e.g.

        [master]
        k3s-1 ansible_host=10.0.0.1

        [worker]
        k3s-2 ansible_host=10.0.0.2 ansible_user=ubuntu

        [all:vars]
        ansible_user=root
        k3s_version=v1.26.1+k3s1

    Hosts without ansible_host connect by their inventory name.
    """
    try:
        text = inv_path.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read {inv_path}: {e}") from e

    section: Optional[str] = None
    hosts: List[HostSpec] = []
    group_vars: Dict[str, str] = {}

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith(";"):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            continue
        if section == "all:vars":
            if "=" in line:
                k, v = line.split("=", 1)
                group_vars[k.strip()] = v.strip()
            continue

        if section in CONTROL_GROUPS:
            role = "control"
        elif section in WORKER_GROUPS:
            role = "worker"
        else:
            continue

        name, facts = _parse_ini_line(line)
        hosts.append(
            HostSpec(
                name=name,
                role=role,
                address=facts.get("ansible_host", name),
                username=facts.get("ansible_user"),
                port=_port(facts["ansible_port"], f"{inv_path}: host {name}") if "ansible_port" in facts else None,
                password=facts.get("ansible_password"),
                pkey_path=facts.get("ansible_ssh_private_key_file"),
            )
        )

    defaults = HostDefaults(
        username=group_vars.get("ansible_user", "root"),
        port=_port(group_vars.get("ansible_port", "22"), f"{inv_path}: [all:vars]"),
        password=group_vars.get("ansible_password"),
        pkey_path=group_vars.get("ansible_ssh_private_key_file"),
    )
    cluster: Dict[str, str] = {}
    if "k3s_version" in group_vars:
        cluster["runtime_version"] = group_vars["k3s_version"]
    if "flannel_backend" in group_vars:
        cluster["flannel_backend"] = group_vars["flannel_backend"]

    return InventoryFile.model_validate(
        {"cluster": cluster, "defaults": defaults.model_dump(), "hosts": [h.model_dump() for h in hosts]}
    )


def _to_host(spec: HostSpec, defaults: HostDefaults) -> Host:
    if not spec.address:
        raise InvalidTopology(f"host '{spec.name}' has no address")
    pkey = spec.pkey_path or defaults.pkey_path
    return Host(
        name=spec.name,
        role=Role(spec.role),
        address=spec.address,
        username=spec.username or defaults.username,
        port=spec.port or defaults.port,
        password=spec.password or defaults.password,
        pkey_path=Path(pkey).expanduser() if pkey else None,
        reachable=spec.reachable,
    )


def build_cluster(inv: InventoryFile, *, runtime_version: Optional[str] = None) -> Cluster:
    """
    Turn a validated inventory into a Cluster. Raises InvalidTopology unless
    there is exactly one control host and host names are unique.
    """
    seen = set()
    for spec in inv.hosts:
        if spec.name in seen:
            raise InvalidTopology(f"duplicate host name '{spec.name}'")
        seen.add(spec.name)

    hosts = [_to_host(spec, inv.defaults) for spec in inv.hosts]
    controls = [h for h in hosts if h.role is Role.CONTROL]
    if len(controls) != 1:
        names = ", ".join(h.name for h in controls) or "none"
        raise InvalidTopology(f"expected exactly one control host, found {len(controls)} ({names})")

    return Cluster(
        control=controls[0],
        workers=[h for h in hosts if h.role is Role.WORKER],
        runtime_version=runtime_version or inv.cluster.runtime_version,
        flannel_backend=inv.cluster.flannel_backend,
    )


def load_inventory(path: str | Path, *, runtime_version: Optional[str] = None) -> Cluster:
    """
    Load a YAML (.yaml/.yml) or INI inventory and validate its topology.
    No remote operation happens here.
    """
    path = Path(path)
    if path.suffix in (".yaml", ".yml"):
        inv = load_config(path)
    else:
        inv = read_ini_inventory(path)

    cluster = build_cluster(inv, runtime_version=runtime_version)
    log.debug(
        "inventory %s: control=%s workers=%s runtime=%s",
        path, cluster.control.name, [w.name for w in cluster.workers], cluster.runtime_version,
    )
    return cluster
