"""
Declarative firewall operations produced by the rule compiler.
"""

import shlex
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class OperationKind(str, Enum):
    """Kinds of firewall operation."""

    CREATE_CHAIN = "create-chain"
    APPEND_RULE = "append-rule"
    DELETE_CHAIN = "delete-chain"
    FLUSH_TABLE = "flush-table"


class RuleOperation(BaseModel):
    """A single firewall action against one table (and usually one chain)."""

    model_config = {"frozen": True}

    kind: OperationKind
    table: str
    chain: Optional[str] = None
    rule: Optional[str] = None
    stage: str = ""

    @classmethod
    def create_chain(cls, table: str, chain: str, stage: str = "") -> "RuleOperation":
        """Create a user-defined chain."""
        return cls(kind=OperationKind.CREATE_CHAIN, table=table, chain=chain, stage=stage)

    @classmethod
    def append(cls, table: str, chain: str, rule: str, stage: str = "") -> "RuleOperation":
        """Append a rule to the end of a chain."""
        return cls(
            kind=OperationKind.APPEND_RULE,
            table=table,
            chain=chain,
            rule=rule,
            stage=stage,
        )

    @classmethod
    def flush_table(cls, table: str, stage: str = "") -> "RuleOperation":
        """Flush every chain of a table."""
        return cls(kind=OperationKind.FLUSH_TABLE, table=table, stage=stage)

    @classmethod
    def delete_chains(cls, table: str, stage: str = "") -> "RuleOperation":
        """Delete every user-defined chain of a table."""
        return cls(kind=OperationKind.DELETE_CHAIN, table=table, stage=stage)

    def is_append(self) -> bool:
        return self.kind == OperationKind.APPEND_RULE

    def jump_target(self) -> Optional[str]:
        """Return the ``-j`` target of an append operation, if any."""
        if not self.rule:
            return None
        parts = shlex.split(self.rule)
        if "-j" in parts:
            idx = parts.index("-j") + 1
            if idx < len(parts):
                return parts[idx]
        return None

    def to_argv(self) -> List[str]:
        """Render the iptables argument vector for this operation."""
        argv = ["iptables", "-t", self.table]
        if self.kind == OperationKind.CREATE_CHAIN:
            argv.extend(["-N", self.chain or ""])
        elif self.kind == OperationKind.APPEND_RULE:
            argv.extend(["-A", self.chain or ""])
            argv.extend(shlex.split(self.rule or ""))
        elif self.kind == OperationKind.FLUSH_TABLE:
            argv.append("-F")
        elif self.kind == OperationKind.DELETE_CHAIN:
            argv.append("-X")
            if self.chain:
                argv.append(self.chain)
        return argv

    def to_command(self) -> str:
        """Render the operation as a single iptables command line."""
        return " ".join(self.to_argv())

    def __str__(self) -> str:
        return self.to_command()
