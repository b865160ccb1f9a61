# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .execution.result import OperationResult


class ClusterstrapError(RuntimeError):
    """Base class for cluster bootstrap failures."""


class ConfigError(ClusterstrapError):
    """Raised when a configuration or inventory file cannot be read or validated."""


class InvalidTopology(ConfigError):
    """Raised when the inventory does not describe exactly one control host."""


class UnreachableHost(ClusterstrapError):
    def __init__(self, host: str, reason: str = ""):
        self.host = host
        self.reason = reason
        super().__init__(f"host '{host}' is unreachable" + (f": {reason}" if reason else ""))


class CommandFailed(ClusterstrapError):
    def __init__(self, host: str, exit_code: int, result: Optional["OperationResult"] = None):
        self.host = host
        self.exit_code = exit_code
        self.result = result
        detail = ""
        if result is not None and result.stderr.strip():
            detail = f": {result.stderr.strip().splitlines()[-1]}"
        super().__init__(f"command failed on '{host}' (rc={exit_code}){detail}")


class ControlPlaneFailed(ClusterstrapError):
    """The control host failed a step; nothing downstream can proceed."""


class ControlPlaneTimeout(ControlPlaneFailed):
    """The control plane readiness marker never appeared."""


class TokenAlreadySet(ClusterstrapError):
    """Raised on a second write to the join token store."""


class TokenUnavailable(ClusterstrapError):
    """Raised when a reader gives up waiting for the join token."""


class PollTimeout(ClusterstrapError):
    def __init__(self, last_state, attempts: int):
        self.last_state = last_state
        self.attempts = attempts
        super().__init__(f"condition not met after {attempts} attempts")


class ConvergenceTimeout(ClusterstrapError):
    def __init__(self, message: str, state=None):
        self.state = state
        super().__init__(message)


class Cancelled(ClusterstrapError):
    """The run was cancelled by the operator."""
