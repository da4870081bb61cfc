"""
Collaborators that execute firewall, routing and sysctl changes.
"""

from .base import CommandResult, CommandRunner, FirewallSession, SystemEffector
from .iproute import IprouteEffector
from .iptables import IptablesSession
from .runners import LocalRunner, SSHRunner, get_runner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "FirewallSession",
    "SystemEffector",
    "IptablesSession",
    "IprouteEffector",
    "LocalRunner",
    "SSHRunner",
    "get_runner",
]
