"""
The Hijacker applies and removes the intercept topology on a host.
"""

import shlex
from itertools import groupby
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..compiler.topology import (
    CUSTOM_CHAINS,
    ENTRY_HOOKS,
    chain_rules,
    compile_deploy,
    compile_destroy,
)
from ..core.config import HijackConfig
from ..core.errors import DeployError, DestroyError, FirewallInitError, HijackError
from ..core.logging_config import get_logger, log_error, log_success
from ..core.rules import RuleOperation
from ..devices.base import CommandRunner, FirewallSession, SystemEffector
from ..devices.iproute import (
    IprouteEffector,
    local_route_argv,
    policy_rule_argv,
    tunable_path,
)
from ..devices.iptables import IptablesSession, parse_configuration
from ..devices.runners import LocalRunner

logger = get_logger(__name__)

# Let replies and accepted sockets inherit the firewall mark of the packet
# that created them, so TPROXY'd connections keep routing through the proxy.
MARK_TUNABLES = ("net.ipv4.fwmark_reflect", "net.ipv4.tcp_fwmark_accept")

STAGE_SYSCTL = "sysctl"
STAGE_ROUTING = "routing"


class DeployResult(BaseModel):
    """Summary of a completed deploy."""

    table: str
    stages: List[str] = []
    operations_applied: int = 0
    operations_skipped: int = 0
    dry_run: bool = False


class DeploymentStatus(BaseModel):
    """What of the topology is currently present in the kernel."""

    table: str
    chains_present: List[str] = []
    chains_missing: List[str] = []
    hooks_present: List[str] = []
    hooks_missing: List[str] = []
    rule_counts: Dict[str, int] = {}
    expected_rule_counts: Dict[str, int] = {}
    policy_rule_present: bool = False

    @property
    def chains_incomplete(self) -> List[str]:
        """Present chains holding fewer or more rules than the topology defines."""
        return [
            chain
            for chain in self.chains_present
            if self.rule_counts.get(chain, 0) != self.expected_rule_counts.get(chain, 0)
        ]

    @property
    def is_deployed(self) -> bool:
        return (
            not self.chains_missing
            and not self.hooks_missing
            and not self.chains_incomplete
            and self.policy_rule_present
        )

    @property
    def is_partial(self) -> bool:
        return not self.is_deployed and bool(
            self.chains_present or self.hooks_present or self.policy_rule_present
        )


def plan_commands(config: HijackConfig) -> List[str]:
    """Every command a deploy of ``config`` issues on a clean host, in order."""
    commands = [
        f"echo 1 > {tunable_path(name)}" for name in MARK_TUNABLES
    ]
    commands.append(
        shlex.join(policy_rule_argv("add", config.divert_mark, config.route_table_id))
    )
    commands.append(shlex.join(local_route_argv("replace", config.route_table_id)))
    commands.extend(op.to_command() for op in compile_deploy(config))
    return commands


class Hijacker:
    """
    Deploys and destroys the TPROXY topology described by a HijackConfig.

    No applied state is kept in memory; the kernel's firewall and routing
    tables are the system of record.
    """

    def __init__(
        self,
        config: HijackConfig,
        session: FirewallSession,
        effector: SystemEffector,
        runner: Optional[CommandRunner] = None,
    ):
        self.config = config
        self.session = session
        self.effector = effector
        self.runner = runner

    @classmethod
    def build(
        cls,
        config: HijackConfig,
        runner: Optional[CommandRunner] = None,
        dry_run: bool = False,
    ) -> "Hijacker":
        """
        Create a Hijacker driving iptables and ip on the runner's host.

        Raises:
            FirewallInitError: the host cannot be reached, or iptables is
                missing or not usable with the current privileges.
        """
        if runner is None:
            runner = LocalRunner(dry_run=dry_run)
        elif dry_run and not runner.dry_run:
            # a dry-run request is never downgraded by the runner passed in
            runner.dry_run = True

        if not runner.connect():
            raise FirewallInitError(f"Cannot connect to {runner.target}")

        session = IptablesSession(runner)
        if not runner.dry_run:
            session.probe(config.table)

        return cls(config, session, IprouteEffector(runner), runner=runner)

    @property
    def dry_run(self) -> bool:
        return bool(self.runner and self.runner.dry_run)

    def _stage(self, stage: str, step: Callable[[], None]) -> None:
        logger.info("Deploy stage: %s", stage)
        try:
            step()
        except HijackError as e:
            log_error(f"Stage '{stage}' failed: {e}", logger)
            raise DeployError(stage, e) from e

    def _enable_tunables(self) -> None:
        for name in MARK_TUNABLES:
            self.effector.set_tunable(name, 1)

    def _install_routing(self) -> None:
        mark, table_id = self.config.divert_mark, self.config.route_table_id
        if self.effector.policy_rule_exists(mark, table_id):
            logger.debug("Policy rule fwmark %s lookup %s already present", mark, table_id)
        else:
            self.effector.add_policy_rule(mark, table_id)
        self.effector.add_local_route(table_id)

    def _apply_operations(self, operations: List[RuleOperation], result: DeployResult) -> None:
        for operation in operations:
            if self.session.is_applied(operation):
                logger.debug("Already present, skipping: %s", operation)
                result.operations_skipped += 1
                continue
            self.session.apply(operation)
            result.operations_applied += 1

    def deploy(self) -> DeployResult:
        """
        Apply the full topology.

        Stages run in order: kernel tunables, policy routing, chain creation,
        entry hooks, then the population of each custom chain. Operations
        already present are skipped, so a repeated deploy adds nothing. The
        first failure aborts with a DeployError naming its stage; operations
        applied before it are left in place.
        """
        result = DeployResult(table=self.config.table, dry_run=self.dry_run)
        logger.info(
            "Deploying TPROXY topology on %s (proxy port %s, redirect port %s)",
            self.config.interface_name,
            self.config.proxy_port,
            self.config.redirect_port,
        )

        self._stage(STAGE_SYSCTL, self._enable_tunables)
        result.stages.append(STAGE_SYSCTL)
        self._stage(STAGE_ROUTING, self._install_routing)
        result.stages.append(STAGE_ROUTING)

        for stage, group in groupby(compile_deploy(self.config), key=lambda op: op.stage):
            operations = list(group)
            self._stage(stage, lambda: self._apply_operations(operations, result))
            result.stages.append(stage)

        log_success(
            f"Topology deployed ({result.operations_applied} applied, "
            f"{result.operations_skipped} already present)",
            logger,
        )
        return result

    def destroy(self) -> None:
        """
        Remove the topology.

        Flushes the table and deletes its user-defined chains, removes the
        local route and policy rule, then resets the kernel tunables. Every
        step is attempted even when an earlier one fails; failures are
        collected and raised together as a DestroyError.
        """
        mark, table_id = self.config.divert_mark, self.config.route_table_id
        steps: List[Tuple[str, Callable[[], None]]] = []

        for operation in compile_destroy(self.config):
            steps.append((operation.stage, lambda op=operation: self.session.apply(op)))
        steps.append((STAGE_ROUTING, lambda: self.effector.delete_local_route(table_id)))
        steps.append((STAGE_ROUTING, lambda: self.effector.delete_policy_rule(mark, table_id)))
        for name in MARK_TUNABLES:
            steps.append((STAGE_SYSCTL, lambda name=name: self.effector.set_tunable(name, 0)))

        failures: List[Tuple[str, Exception]] = []
        for stage, step in steps:
            try:
                step()
            except HijackError as e:
                logger.warning("Destroy step in stage '%s' failed: %s", stage, e)
                failures.append((stage, e))

        if failures:
            raise DestroyError(failures)
        log_success("Topology destroyed", logger)

    def plan(self) -> List[str]:
        """Commands a deploy would issue on a host without the topology."""
        return plan_commands(self.config)

    def status(self) -> DeploymentStatus:
        """Inspect the live table and policy routing for the topology."""
        table = self.config.table
        items = parse_configuration(self.session.save(table))

        chains = {item.content for item in items if item.type == "chain"}
        rule_counts: Dict[str, int] = {}
        hook_targets: Dict[str, List[str]] = {}
        for item in items:
            if item.type != "firewall_rule" or not item.section:
                continue
            chain = item.section.split(":", 1)[1]
            rule_counts[chain] = rule_counts.get(chain, 0) + 1
            hook_targets.setdefault(chain, []).append(item.content)

        status = DeploymentStatus(table=table)
        for chain in CUSTOM_CHAINS:
            if chain in chains:
                status.chains_present.append(chain)
                status.rule_counts[chain] = rule_counts.get(chain, 0)
            else:
                status.chains_missing.append(chain)

        for builtin, entry_chain in ENTRY_HOOKS:
            hooked = any(
                f"-j {entry_chain}" in content for content in hook_targets.get(builtin, [])
            )
            if hooked:
                status.hooks_present.append(builtin)
            else:
                status.hooks_missing.append(builtin)

        status.expected_rule_counts = {
            chain: len(rules) for chain, rules in chain_rules(self.config).items()
        }
        status.policy_rule_present = self.effector.policy_rule_exists(
            self.config.divert_mark, self.config.route_table_id
        )
        return status

    def __str__(self) -> str:
        target = self.runner.target if self.runner else "session"
        return f"Hijacker({self.config.interface_name}@{target})"

    def __repr__(self) -> str:
        return self.__str__()
