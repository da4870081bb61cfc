"""
Base classes for the collaborators the hijacker drives.

A CommandRunner executes commands on the target host. A FirewallSession
issues chain and rule operations against a named table, and a SystemEffector
changes kernel tunables and policy routing. Tests substitute in-memory
implementations of the latter two.
"""

import shlex
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel

from ..core.logging_config import get_logger
from ..core.rules import OperationKind, RuleOperation

logger = get_logger(__name__)


class CommandResult(BaseModel):
    """Result of executing a command on the target host."""

    command: str
    success: bool
    output: str
    error: Optional[str] = None
    exit_code: Optional[int] = None
    execution_time: float


class ConfigurationItem(BaseModel):
    """One line of an ``iptables-save`` dump."""

    type: str  # "chain" or "firewall_rule"
    content: str
    line_number: Optional[int] = None
    section: Optional[str] = None
    raw_config: str


class CommandRunner(ABC):
    """
    Executes commands on the host whose firewall is being changed.

    With ``dry_run`` set, mutating commands are recorded and reported as
    successful without being executed; read-only queries still run so that
    existence checks reflect the real state.
    """

    def __init__(self, timeout: int = 30, dry_run: bool = False):
        self.timeout = timeout
        self.dry_run = dry_run
        self.history: List[CommandResult] = []

    def connect(self) -> bool:
        """Prepare the runner for use."""
        return True

    def close(self) -> None:
        """Release any resources held by the runner."""

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def target(self) -> str:
        return "localhost"

    def run(
        self, argv: List[str], mutating: bool = True, input_data: Optional[str] = None
    ) -> CommandResult:
        """Run a command given as an argument vector."""
        command = shlex.join(argv)
        if self.dry_run and mutating:
            result = CommandResult(
                command=command,
                success=True,
                output=f"DRY RUN: Would execute: {command}",
                exit_code=0,
                execution_time=0.0,
            )
        else:
            start_time = time.time()
            result = self._execute(argv, input_data)
            result.execution_time = time.time() - start_time

        logger.debug("Executing command on %s: %s", self.target, command)
        logger.debug("Result: success=%s, exit_code=%s", result.success, result.exit_code)
        if result.error:
            logger.debug("Error: %s", result.error)

        if mutating:
            self.history.append(result)
        return result

    def write_file(self, path: str, content: str) -> CommandResult:
        """Write ``content`` to ``path`` on the target host."""
        command = f"echo {shlex.quote(content)} > {shlex.quote(path)}"
        if self.dry_run:
            result = CommandResult(
                command=command,
                success=True,
                output=f"DRY RUN: Would execute: {command}",
                exit_code=0,
                execution_time=0.0,
            )
        else:
            start_time = time.time()
            result = self._write(path, content)
            result.execution_time = time.time() - start_time

        logger.debug("Writing %s on %s: success=%s", path, self.target, result.success)
        self.history.append(result)
        return result

    @property
    def executed_commands(self) -> List[str]:
        return [result.command for result in self.history]

    @abstractmethod
    def _execute(self, argv: List[str], input_data: Optional[str]) -> CommandResult:
        """Execute a command for real."""
        pass

    @abstractmethod
    def _write(self, path: str, content: str) -> CommandResult:
        """Write a file for real."""
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.target})"

    def __repr__(self) -> str:
        return self.__str__()


class FirewallSession(ABC):
    """Chain and rule operations against a named firewall table."""

    @abstractmethod
    def new_chain(self, table: str, chain: str) -> None:
        pass

    @abstractmethod
    def append(self, table: str, chain: str, rule: str) -> None:
        pass

    @abstractmethod
    def flush_table(self, table: str) -> None:
        pass

    @abstractmethod
    def delete_table(self, table: str) -> None:
        """Delete every user-defined chain of ``table``."""
        pass

    @abstractmethod
    def chain_exists(self, table: str, chain: str) -> bool:
        pass

    @abstractmethod
    def exists(self, table: str, chain: str, rule: str) -> bool:
        pass

    @abstractmethod
    def save(self, table: str) -> str:
        """Return the ``iptables-save`` dump of ``table``."""
        pass

    def probe(self, table: str) -> None:
        """Raise FirewallInitError if the table cannot be manipulated."""

    def apply(self, operation: RuleOperation) -> None:
        """Execute a compiled operation."""
        if operation.kind == OperationKind.CREATE_CHAIN:
            self.new_chain(operation.table, operation.chain)
        elif operation.kind == OperationKind.APPEND_RULE:
            self.append(operation.table, operation.chain, operation.rule)
        elif operation.kind == OperationKind.FLUSH_TABLE:
            self.flush_table(operation.table)
        elif operation.kind == OperationKind.DELETE_CHAIN:
            self.delete_table(operation.table)
        else:
            raise ValueError(f"Unsupported operation kind: {operation.kind}")

    def is_applied(self, operation: RuleOperation) -> bool:
        """Check whether a create-chain or append operation is already in place."""
        if operation.kind == OperationKind.CREATE_CHAIN:
            return self.chain_exists(operation.table, operation.chain)
        if operation.kind == OperationKind.APPEND_RULE:
            return self.exists(operation.table, operation.chain, operation.rule)
        return False


class SystemEffector(ABC):
    """Kernel tunables and policy routing needed by TPROXY."""

    @abstractmethod
    def set_tunable(self, name: str, value: int) -> None:
        """Set a sysctl such as ``net.ipv4.fwmark_reflect``."""
        pass

    @abstractmethod
    def policy_rule_exists(self, mark: int, table_id: int) -> bool:
        pass

    @abstractmethod
    def add_policy_rule(self, mark: int, table_id: int) -> None:
        pass

    @abstractmethod
    def delete_policy_rule(self, mark: int, table_id: int) -> None:
        pass

    @abstractmethod
    def add_local_route(self, table_id: int) -> None:
        """Route every destination locally through ``lo`` in ``table_id``."""
        pass

    @abstractmethod
    def delete_local_route(self, table_id: int) -> None:
        pass
