"""
Rule compiler for the intercept topology.
"""

from .topology import (
    CUSTOM_CHAINS,
    ENTRY_HOOKS,
    chain_rules,
    compile_deploy,
    compile_destroy,
    deploy_stages,
)

__all__ = [
    "CUSTOM_CHAINS",
    "ENTRY_HOOKS",
    "chain_rules",
    "compile_deploy",
    "compile_destroy",
    "deploy_stages",
]
