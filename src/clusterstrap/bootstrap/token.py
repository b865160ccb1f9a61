# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/bootstrap/token.py
from __future__ import annotations

import threading
from typing import Optional

from ..errors import TokenAlreadySet, TokenUnavailable


class TokenStore:
    """
    Write-once holder for the cluster join token.

    The control-plane step calls set() exactly once; worker tasks call get(),
    which blocks until the value exists. Writes after the first raise.
    """

    def __init__(self) -> None:
        self._value: Optional[str] = None
        self._ready = threading.Event()
        self._lock = threading.Lock()

    def set(self, value: str) -> None:
        value = value.strip()
        if not value:
            raise ValueError("join token must not be empty")
        with self._lock:
            if self._ready.is_set():
                raise TokenAlreadySet("join token already set for this run")
            self._value = value
            self._ready.set()

    def get(self, timeout: Optional[float] = None) -> str:
        if not self._ready.wait(timeout):
            raise TokenUnavailable(f"join token not available after {timeout}s")
        return self._value  # type: ignore[return-value]

    @property
    def is_set(self) -> bool:
        return self._ready.is_set()

    def __repr__(self) -> str:
        return f"TokenStore(set={self.is_set})"
