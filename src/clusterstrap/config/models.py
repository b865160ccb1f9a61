# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/config/models.py

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from ..inventory.models import DEFAULT_FLANNEL_BACKEND, DEFAULT_RUNTIME_VERSION


class HostDefaults(BaseModel):
    """Connection facts shared by every host unless overridden."""
    username: str = "root"
    port: int = 22
    password: Optional[str] = None
    pkey_path: Optional[str] = None


class HostSpec(BaseModel):
    name: str
    role: Literal["control", "worker"]
    address: Optional[str] = None
    username: Optional[str] = None
    port: Optional[int] = None
    password: Optional[str] = None
    pkey_path: Optional[str] = None
    reachable: bool = True


class ClusterSettings(BaseModel):
    runtime_version: str = DEFAULT_RUNTIME_VERSION
    flannel_backend: str = DEFAULT_FLANNEL_BACKEND


class InventoryFile(BaseModel):
    cluster: ClusterSettings = ClusterSettings()
    defaults: HostDefaults = HostDefaults()
    hosts: List[HostSpec] = Field(default_factory=list)
