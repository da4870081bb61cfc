"""
SystemEffector backed by ``ip`` and ``/proc/sys``.
"""

from typing import List

from ..core.errors import SystemCommandError
from ..core.logging_config import get_logger
from .base import CommandResult, CommandRunner, SystemEffector

logger = get_logger(__name__)

LOCAL_ROUTE_PREFIX = "0.0.0.0/0"
LOOPBACK_INTERFACE = "lo"


def tunable_path(name: str) -> str:
    """Map ``net.ipv4.fwmark_reflect`` to its ``/proc/sys`` path."""
    return "/proc/sys/" + name.replace(".", "/")


def policy_rule_argv(action: str, mark: int, table_id: int, binary: str = "ip") -> List[str]:
    return [binary, "rule", action, "fwmark", str(mark), "lookup", str(table_id)]


def local_route_argv(action: str, table_id: int, binary: str = "ip") -> List[str]:
    return [
        binary,
        "route",
        action,
        "local",
        LOCAL_ROUTE_PREFIX,
        "dev",
        LOOPBACK_INTERFACE,
        "table",
        str(table_id),
    ]


class IprouteEffector(SystemEffector):
    """Changes tunables and policy routing on a runner's host."""

    def __init__(self, runner: CommandRunner, binary: str = "ip"):
        self.runner = runner
        self.binary = binary

    def _check(self, result: CommandResult) -> CommandResult:
        if not result.success:
            logger.error("Command failed: %s", result.command)
            raise SystemCommandError(
                result.command, result.exit_code, (result.error or "").strip() or None
            )
        return result

    def set_tunable(self, name: str, value: int) -> None:
        self._check(self.runner.write_file(tunable_path(name), str(value)))

    def policy_rule_exists(self, mark: int, table_id: int) -> bool:
        argv = policy_rule_argv("show", mark, table_id, self.binary)
        result = self.runner.run(argv, mutating=False)
        return result.success and bool(result.output.strip())

    def add_policy_rule(self, mark: int, table_id: int) -> None:
        self._check(self.runner.run(policy_rule_argv("add", mark, table_id, self.binary)))

    def delete_policy_rule(self, mark: int, table_id: int) -> None:
        self._check(self.runner.run(policy_rule_argv("del", mark, table_id, self.binary)))

    def add_local_route(self, table_id: int) -> None:
        # replace, so that a repeated deploy does not fail on an existing route
        self._check(self.runner.run(local_route_argv("replace", table_id, self.binary)))

    def delete_local_route(self, table_id: int) -> None:
        self._check(self.runner.run(local_route_argv("del", table_id, self.binary)))
