"""
Applies and removes the intercept topology.
"""

from .hijacker import DeploymentStatus, DeployResult, Hijacker, plan_commands

__all__ = [
    "Hijacker",
    "DeployResult",
    "DeploymentStatus",
    "plan_commands",
]
