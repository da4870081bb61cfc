"""
tproxy-hijacker - transparent TCP interception with iptables TPROXY

Installs and removes the mangle-table chains, firewall marks and policy
route that let a local proxy intercept TCP flows on an interface without
rewriting their destination address.
"""

__version__ = "0.1.0"

from .compiler.topology import compile_deploy, compile_destroy
from .core.config import HijackConfig
from .core.errors import DeployError, DestroyError, FirewallInitError, HijackError
from .core.rules import OperationKind, RuleOperation
from .enforcement.hijacker import DeploymentStatus, DeployResult, Hijacker

__all__ = [
    "HijackConfig",
    "Hijacker",
    "DeployResult",
    "DeploymentStatus",
    "RuleOperation",
    "OperationKind",
    "compile_deploy",
    "compile_destroy",
    "HijackError",
    "FirewallInitError",
    "DeployError",
    "DestroyError",
]
