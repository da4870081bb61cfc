"""
Core module for tproxy-hijacker.
"""

from .config import HijackConfig
from .errors import (
    ConfigError,
    DeployError,
    DestroyError,
    FirewallInitError,
    FirewallOperationError,
    HijackError,
    SystemCommandError,
)
from .rules import OperationKind, RuleOperation

__all__ = [
    "HijackConfig",
    "OperationKind",
    "RuleOperation",
    "HijackError",
    "ConfigError",
    "FirewallInitError",
    "FirewallOperationError",
    "SystemCommandError",
    "DeployError",
    "DestroyError",
]
