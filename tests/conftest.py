"""
Shared test fixtures: in-memory collaborators that record what the
hijacker asks them to do instead of touching kernel state.
"""

from typing import Dict, List, Optional, Tuple

import pytest

from tproxy_hijacker.core.config import HijackConfig
from tproxy_hijacker.core.errors import FirewallOperationError, SystemCommandError
from tproxy_hijacker.devices.base import (
    CommandResult,
    CommandRunner,
    FirewallSession,
    SystemEffector,
)

BUILTIN_CHAINS = ("PREROUTING", "INPUT", "FORWARD", "OUTPUT", "POSTROUTING")


class RecordingFirewall(FirewallSession):
    """Stateful stand-in for iptables that logs every call."""

    def __init__(self, fail_on_append: Optional[int] = None, fail_on: Tuple[str, ...] = ()):
        self.tables: Dict[str, Dict[str, List[str]]] = {}
        self.calls: List[Tuple] = []
        self.fail_on_append = fail_on_append
        self.fail_on = fail_on
        self.append_count = 0

    def _table(self, table: str) -> Dict[str, List[str]]:
        if table not in self.tables:
            self.tables[table] = {chain: [] for chain in BUILTIN_CHAINS}
        return self.tables[table]

    def new_chain(self, table, chain):
        self.calls.append(("new_chain", table, chain))
        if "new_chain" in self.fail_on:
            raise FirewallOperationError("new_chain", table, chain, detail="injected")
        chains = self._table(table)
        if chain in chains:
            raise FirewallOperationError("new_chain", table, chain, detail="Chain already exists.")
        chains[chain] = []

    def append(self, table, chain, rule):
        self.append_count += 1
        self.calls.append(("append", table, chain, rule))
        if self.fail_on_append is not None and self.append_count == self.fail_on_append:
            raise FirewallOperationError("append", table, chain, rule, detail="injected")
        chains = self._table(table)
        if chain not in chains:
            raise FirewallOperationError("append", table, chain, rule, detail="No chain/target/match by that name.")
        chains[chain].append(rule)

    def flush_table(self, table):
        self.calls.append(("flush_table", table))
        if "flush_table" in self.fail_on:
            raise FirewallOperationError("flush_table", table, detail="injected")
        for rules in self._table(table).values():
            rules.clear()

    def delete_table(self, table):
        self.calls.append(("delete_table", table))
        if "delete_table" in self.fail_on:
            raise FirewallOperationError("delete_table", table, detail="injected")
        chains = self._table(table)
        for chain in [c for c in chains if c not in BUILTIN_CHAINS]:
            del chains[chain]

    def chain_exists(self, table, chain):
        return chain in self._table(table)

    def exists(self, table, chain, rule):
        return rule in self._table(table).get(chain, [])

    def save(self, table):
        lines = [f"*{table}"]
        chains = self._table(table)
        for chain in chains:
            policy = "ACCEPT" if chain in BUILTIN_CHAINS else "-"
            lines.append(f":{chain} {policy} [0:0]")
        for chain, rules in chains.items():
            for rule in rules:
                lines.append(f"-A {chain} {rule}")
        lines.append("COMMIT")
        return "\n".join(lines) + "\n"

    def calls_named(self, name: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == name]


class RecordingEffector(SystemEffector):
    """Stateful stand-in for ip and /proc/sys."""

    def __init__(self, fail_on: Tuple[str, ...] = ()):
        self.tunables: Dict[str, int] = {}
        self.policy_rules: List[Tuple[int, int]] = []
        self.local_routes: List[int] = []
        self.calls: List[Tuple] = []
        self.fail_on = fail_on

    def _maybe_fail(self, name: str):
        if name in self.fail_on:
            raise SystemCommandError(name, 2, "injected")

    def set_tunable(self, name, value):
        self.calls.append(("set_tunable", name, value))
        self._maybe_fail("set_tunable")
        self.tunables[name] = value

    def policy_rule_exists(self, mark, table_id):
        return (mark, table_id) in self.policy_rules

    def add_policy_rule(self, mark, table_id):
        self.calls.append(("add_policy_rule", mark, table_id))
        self._maybe_fail("add_policy_rule")
        self.policy_rules.append((mark, table_id))

    def delete_policy_rule(self, mark, table_id):
        self.calls.append(("delete_policy_rule", mark, table_id))
        self._maybe_fail("delete_policy_rule")
        if (mark, table_id) not in self.policy_rules:
            raise SystemCommandError("ip rule del", 2, "No such file or directory")
        self.policy_rules.remove((mark, table_id))

    def add_local_route(self, table_id):
        self.calls.append(("add_local_route", table_id))
        self._maybe_fail("add_local_route")
        if table_id not in self.local_routes:
            self.local_routes.append(table_id)

    def delete_local_route(self, table_id):
        self.calls.append(("delete_local_route", table_id))
        self._maybe_fail("delete_local_route")
        if table_id not in self.local_routes:
            raise SystemCommandError("ip route del", 2, "No such process")
        self.local_routes.remove(table_id)

    def calls_named(self, name: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == name]


class ScriptedRunner(CommandRunner):
    """Runner that answers commands from a list of (prefix, result) pairs."""

    def __init__(self, responses=None, dry_run: bool = False):
        super().__init__(dry_run=dry_run)
        self.responses = responses or []
        self.argvs: List[List[str]] = []
        self.writes: List[Tuple[str, str]] = []

    def _execute(self, argv, input_data):
        self.argvs.append(argv)
        command = " ".join(argv)
        for prefix, (success, output, error) in self.responses:
            if command.startswith(prefix):
                return CommandResult(
                    command=command,
                    success=success,
                    output=output,
                    error=error,
                    exit_code=0 if success else 1,
                    execution_time=0.0,
                )
        return CommandResult(
            command=command, success=True, output="", exit_code=0, execution_time=0.0
        )

    def _write(self, path, content):
        self.writes.append((path, content))
        return CommandResult(
            command=f"echo {content} > {path}",
            success=True,
            output="",
            exit_code=0,
            execution_time=0.0,
        )


@pytest.fixture
def config() -> HijackConfig:
    return HijackConfig(
        interface_name="eth0",
        proxy_port=17000,
        redirect_port=9080,
        route_table_id=133,
        ignore_mark=68,
        divert_mark=1,
    )


@pytest.fixture
def firewall() -> RecordingFirewall:
    return RecordingFirewall()


@pytest.fixture
def effector() -> RecordingEffector:
    return RecordingEffector()
