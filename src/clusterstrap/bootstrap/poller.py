# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/bootstrap/poller.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple, Type, TypeVar

from ..errors import Cancelled, CommandFailed, PollTimeout
from ..inventory.models import Host

log = logging.getLogger("clusterstrap")

T = TypeVar("T")


@dataclass(frozen=True)
class NodeStatus:
    name: str
    ready: bool
    internal_ip: Optional[str] = None


@dataclass(frozen=True)
class ConvergenceState:
    ready: FrozenSet[str] = field(default_factory=frozenset)
    not_ready: FrozenSet[str] = field(default_factory=frozenset)
    attempt: int = 0

    def converged(self, expected: Iterable[str]) -> bool:
        return set(expected) <= self.ready

    @classmethod
    def from_nodes(cls, nodes: List[NodeStatus], hosts: Iterable[Host], attempt: int = 0) -> "ConvergenceState":
        """
        Match reported nodes to inventory hosts by node name or internal IP
        (workers join with --node-ip set to their inventory address).
        """
        ready, not_ready = set(), set()
        for h in hosts:
            match = [n for n in nodes if n.name == h.name or n.internal_ip == h.address]
            if any(n.ready for n in match):
                ready.add(h.name)
            else:
                not_ready.add(h.name)
        return cls(ready=frozenset(ready), not_ready=frozenset(not_ready), attempt=attempt)


def parse_node_status(text: str) -> List[NodeStatus]:
    """
    Parse `kubectl get nodes [-o wide] --no-headers` output.

    A STATUS of "Ready" or "Ready,SchedulingDisabled" counts as ready;
    "NotReady" and "Unknown" do not.
    """
    nodes: List[NodeStatus] = []
    for raw in text.splitlines():
        parts = raw.split()
        if len(parts) < 2 or parts[0] == "NAME":
            continue
        conditions = parts[1].split(",")
        ip = parts[5] if len(parts) > 5 else None
        nodes.append(NodeStatus(name=parts[0], ready="Ready" in conditions, internal_ip=ip))
    return nodes


def poll_until(
    query: Callable[[int], T],
    predicate: Callable[[T], bool],
    *,
    retries: int,
    delay: float,
    cancel: Optional[threading.Event] = None,
    retry_on: Tuple[Type[Exception], ...] = (CommandFailed,),
    sleep: Optional[Callable[[float], object]] = None,
    label: str = "condition",
) -> T:
    """
    Call query(attempt) up to `retries` times with a constant `delay` between
    attempts, returning the first result that satisfies `predicate`.

    Errors listed in `retry_on` count as a failed attempt; anything else
    propagates. Raises PollTimeout with the last observed result when the
    budget is exhausted, and Cancelled if `cancel` is set. Without an explicit
    `sleep`, the pause waits on `cancel` so a cancel cuts it short.
    """
    if sleep is None:
        sleep = cancel.wait if cancel is not None else time.sleep
    last: Optional[T] = None
    for attempt in range(1, retries + 1):
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"cancelled while waiting for {label}")
        try:
            last = query(attempt)
        except retry_on as e:
            log.debug("%s: attempt %d/%d errored: %s", label, attempt, retries, e)
        else:
            if predicate(last):
                log.debug("%s: satisfied on attempt %d/%d", label, attempt, retries)
                return last
            log.debug("%s: not yet (attempt %d/%d)", label, attempt, retries)
        if attempt < retries:
            sleep(delay)
    raise PollTimeout(last, retries)
