"""
Exception types raised while deploying or destroying the intercept topology.
"""

from typing import List, Optional, Tuple


class HijackError(Exception):
    """Base class for all tproxy_hijacker errors."""


class ConfigError(HijackError):
    """Raised when a configuration document cannot be read or parsed."""


class FirewallInitError(HijackError):
    """
    Raised when the firewall mechanism cannot be initialized, usually because
    iptables is missing or the caller lacks the required privileges.
    """

    def __init__(self, message: str = "Failed to initialize firewall", detail: Optional[str] = None):
        self.detail = detail
        full = message
        if detail:
            full = f"{message}: {detail}"
        super().__init__(full)


class FirewallOperationError(HijackError):
    """Raised when a single chain or rule operation is rejected by iptables."""

    def __init__(
        self,
        operation: str,
        table: str,
        chain: Optional[str] = None,
        rule: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        self.operation = operation
        self.table = table
        self.chain = chain
        self.rule = rule
        self.detail = detail
        target = f"{table}/{chain}" if chain else table
        full = f"{operation} failed on {target}"
        if rule:
            full = f"{full} [{rule}]"
        if detail:
            full = f"{full}: {detail}"
        super().__init__(full)


class SystemCommandError(HijackError):
    """Raised when a routing or sysctl command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: Optional[int] = None, detail: Optional[str] = None):
        self.command = command
        self.exit_code = exit_code
        self.detail = detail
        full = f"Command failed [exit={exit_code}]: {command}"
        if detail:
            full = f"{full}: {detail}"
        super().__init__(full)


class DeployError(HijackError):
    """Raised when deploy aborts; names the stage whose operation failed."""

    def __init__(self, stage: str, cause: Exception):
        self.stage = stage
        self.cause = cause
        super().__init__(f"deploy failed at stage '{stage}': {cause}")


class DestroyError(HijackError):
    """Raised after a best-effort destroy in which one or more steps failed."""

    def __init__(self, failures: List[Tuple[str, Exception]]):
        self.failures = failures
        summary = "; ".join(f"{stage}: {error}" for stage, error in failures)
        super().__init__(f"destroy finished with {len(failures)} failure(s): {summary}")

    @property
    def stages(self) -> List[str]:
        return [stage for stage, _ in self.failures]


__all__ = [
    "HijackError",
    "ConfigError",
    "FirewallInitError",
    "FirewallOperationError",
    "SystemCommandError",
    "DeployError",
    "DestroyError",
]
