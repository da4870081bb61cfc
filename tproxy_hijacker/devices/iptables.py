"""
FirewallSession backed by the iptables command line.
"""

import shlex
from typing import List, Optional

from ..core.errors import FirewallInitError, FirewallOperationError
from ..core.logging_config import get_logger
from .base import CommandResult, CommandRunner, ConfigurationItem, FirewallSession

logger = get_logger(__name__)


class IptablesSession(FirewallSession):
    """Issues chain and rule operations through ``iptables`` on a runner's host."""

    def __init__(self, runner: CommandRunner, binary: str = "iptables", wait: bool = True):
        self.runner = runner
        self.binary = binary
        self.wait = wait

    def _argv(self, table: str, *args: str) -> List[str]:
        argv = [self.binary]
        if self.wait:
            # Wait for the xtables lock instead of failing on contention
            argv.append("-w")
        argv.extend(["-t", table])
        argv.extend(args)
        return argv

    def _run(
        self,
        operation: str,
        argv: List[str],
        table: str,
        chain: Optional[str] = None,
        rule: Optional[str] = None,
    ) -> CommandResult:
        result = self.runner.run(argv)
        if not result.success:
            detail = (result.error or result.output or "").strip() or None
            logger.error("iptables %s failed: %s", operation, result.command)
            raise FirewallOperationError(operation, table, chain, rule, detail)
        return result

    def new_chain(self, table: str, chain: str) -> None:
        self._run("new_chain", self._argv(table, "-N", chain), table, chain)

    def append(self, table: str, chain: str, rule: str) -> None:
        argv = self._argv(table, "-A", chain, *shlex.split(rule))
        self._run("append", argv, table, chain, rule)

    def flush_table(self, table: str) -> None:
        self._run("flush_table", self._argv(table, "-F"), table)

    def delete_table(self, table: str) -> None:
        self._run("delete_table", self._argv(table, "-X"), table)

    def chain_exists(self, table: str, chain: str) -> bool:
        result = self.runner.run(self._argv(table, "-n", "-L", chain), mutating=False)
        return result.success

    def exists(self, table: str, chain: str, rule: str) -> bool:
        argv = self._argv(table, "-C", chain, *shlex.split(rule))
        return self.runner.run(argv, mutating=False).success

    def save(self, table: str) -> str:
        result = self.runner.run([f"{self.binary}-save", "-t", table], mutating=False)
        if not result.success:
            raise FirewallOperationError(
                "save", table, detail=(result.error or "").strip() or None
            )
        return result.output

    def probe(self, table: str) -> None:
        """Check that iptables is installed and that ``table`` can be listed."""
        version = self.runner.run([self.binary, "--version"], mutating=False)
        if not version.success:
            raise FirewallInitError(
                "iptables is not available", (version.error or "").strip() or None
            )
        logger.debug("Using %s", version.output.strip())

        listing = self.runner.run(self._argv(table, "-n", "-L"), mutating=False)
        if not listing.success:
            raise FirewallInitError(
                f"Cannot access the {table} table (are you root?)",
                (listing.error or "").strip() or None,
            )


def parse_configuration(raw_config: str) -> List[ConfigurationItem]:
    """Parse an ``iptables-save`` dump into chain declarations and rules."""
    items = []
    current_table = None

    for line_num, line in enumerate(raw_config.split("\n"), 1):
        line = line.strip()
        if not line or line.startswith("#") or line == "COMMIT":
            continue

        if line.startswith("*"):
            current_table = line[1:]
            continue

        if line.startswith(":"):
            chain = line.split()[0][1:]
            items.append(
                ConfigurationItem(
                    type="chain",
                    content=chain,
                    line_number=line_num,
                    section=current_table,
                    raw_config=line,
                )
            )
            continue

        if line.startswith("-A"):
            parts = line.split(None, 2)
            chain = parts[1] if len(parts) > 1 else None
            items.append(
                ConfigurationItem(
                    type="firewall_rule",
                    content=parts[2] if len(parts) > 2 else "",
                    line_number=line_num,
                    section=f"{current_table}:{chain}"
                    if current_table and chain
                    else None,
                    raw_config=line,
                )
            )

    return items
