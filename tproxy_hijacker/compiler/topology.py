"""
The TPROXY intercept topology.

Given a HijackConfig this module produces the ordered list of firewall
operations that wire seven custom chains into the mangle table:

    PREROUTING -> TPROXY_PREROUTING -> OUTBOUND | INBOUND -> TPROXY_REDIRECT
    OUTPUT     -> TPROXY_OUTPUT     -> DIVERT
    INPUT      -> TPROXY_INPUT

Packets handed to TPROXY_REDIRECT are delivered to the proxy socket on
127.0.0.1 without rewriting their destination, and tagged with the divert
mark so that the policy route installed next to these rules (``fwmark
<divert> lookup <table>``, ``local 0.0.0.0/0 dev lo``) keeps them on the
host. The ignore mark tags the proxy's own traffic so that it never loops
back into the topology.
"""

from collections import OrderedDict
from typing import Dict, List, Tuple

from ..core.config import HijackConfig
from ..core.rules import RuleOperation

DIVERT_CHAIN = "DIVERT"
REDIRECT_CHAIN = "TPROXY_REDIRECT"
INBOUND_CHAIN = "INBOUND"
OUTBOUND_CHAIN = "OUTBOUND"
TPROXY_PREROUTING_CHAIN = "TPROXY_PREROUTING"
TPROXY_INPUT_CHAIN = "TPROXY_INPUT"
TPROXY_OUTPUT_CHAIN = "TPROXY_OUTPUT"

PREROUTING_CHAIN = "PREROUTING"
INPUT_CHAIN = "INPUT"
OUTPUT_CHAIN = "OUTPUT"

LOOPBACK_INTERFACE = "lo"
LOOPBACK_NETWORK = "127.0.0.0/8"
PROXY_ADDRESS = "127.0.0.1"
TCP_FLAG_MASK = "SYN,ACK,FIN,RST,URG,PSH"

CUSTOM_CHAINS: Tuple[str, ...] = (
    DIVERT_CHAIN,
    REDIRECT_CHAIN,
    INBOUND_CHAIN,
    OUTBOUND_CHAIN,
    TPROXY_PREROUTING_CHAIN,
    TPROXY_INPUT_CHAIN,
    TPROXY_OUTPUT_CHAIN,
)

# built-in chain -> custom entry chain
ENTRY_HOOKS: Tuple[Tuple[str, str], ...] = (
    (PREROUTING_CHAIN, TPROXY_PREROUTING_CHAIN),
    (INPUT_CHAIN, TPROXY_INPUT_CHAIN),
    (OUTPUT_CHAIN, TPROXY_OUTPUT_CHAIN),
)

# Populated in this order so that every chain a rule jumps to is
# filled before the rule itself is installed.
POPULATION_ORDER: Tuple[Tuple[str, str], ...] = (
    ("divert", DIVERT_CHAIN),
    ("redirect", REDIRECT_CHAIN),
    ("inbound", INBOUND_CHAIN),
    ("outbound", OUTBOUND_CHAIN),
    ("tproxy_prerouting", TPROXY_PREROUTING_CHAIN),
    ("tproxy_output", TPROXY_OUTPUT_CHAIN),
    ("tproxy_input", TPROXY_INPUT_CHAIN),
)

STAGE_CHAINS = "chains"
STAGE_HOOKS = "hooks"
STAGE_FIREWALL = "firewall"


def _divert_rules(config: HijackConfig) -> List[str]:
    return [
        f"-j MARK --set-xmark {config.divert_mark}",
        "-j ACCEPT",
    ]


def _redirect_rules(config: HijackConfig) -> List[str]:
    return [
        f"-p tcp -j TPROXY --on-port {config.proxy_port} "
        f"--on-ip {PROXY_ADDRESS} --tproxy-mark {config.divert_mark}",
    ]


def _inbound_rules(config: HijackConfig) -> List[str]:
    return [
        f"-p tcp -m tcp --dport {config.redirect_port} -j {REDIRECT_CHAIN}",
    ]


def _outbound_rules(config: HijackConfig) -> List[str]:
    # The guard must come first, otherwise every outbound packet is redirected
    return [
        f"-m mark ! --mark {config.divert_mark} -j RETURN",
        f"-p tcp -m tcp --dport {config.redirect_port} -j {REDIRECT_CHAIN}",
    ]


def _tproxy_prerouting_rules(config: HijackConfig) -> List[str]:
    return [
        f"! -d {LOOPBACK_NETWORK} -i {LOOPBACK_INTERFACE} -j {OUTBOUND_CHAIN}",
        f"! -d {LOOPBACK_NETWORK} -i {config.interface_name} -j {INBOUND_CHAIN}",
    ]


def _tproxy_output_rules(config: HijackConfig) -> List[str]:
    return [
        f"-p tcp -m tcp --sport {config.redirect_port} "
        f"--tcp-flags {TCP_FLAG_MASK} SYN,ACK -j MARK --set-xmark {config.ignore_mark}",
        f"-o {LOOPBACK_INTERFACE} -j RETURN",
        f"-m mark --mark {config.ignore_mark} -j RETURN",
        f"-p tcp -m tcp --dport {config.redirect_port} -j {DIVERT_CHAIN}",
    ]


def _tproxy_input_rules(config: HijackConfig) -> List[str]:
    return [
        f"-i {config.interface_name} -p tcp -m tcp --dport {config.redirect_port} "
        f"--tcp-flags {TCP_FLAG_MASK} SYN -j MARK --set-xmark {config.ignore_mark}",
        f"-i {config.interface_name} -p tcp -m tcp --sport {config.redirect_port} "
        f"-j MARK --set-xmark {config.ignore_mark}",
    ]


_CHAIN_BUILDERS = {
    DIVERT_CHAIN: _divert_rules,
    REDIRECT_CHAIN: _redirect_rules,
    INBOUND_CHAIN: _inbound_rules,
    OUTBOUND_CHAIN: _outbound_rules,
    TPROXY_PREROUTING_CHAIN: _tproxy_prerouting_rules,
    TPROXY_OUTPUT_CHAIN: _tproxy_output_rules,
    TPROXY_INPUT_CHAIN: _tproxy_input_rules,
}


def chain_rules(config: HijackConfig) -> Dict[str, List[str]]:
    """Return the rules of every custom chain, in population order."""
    rules: Dict[str, List[str]] = OrderedDict()
    for _, chain in POPULATION_ORDER:
        rules[chain] = _CHAIN_BUILDERS[chain](config)
    return rules


def hook_rule(entry_chain: str) -> str:
    return f"-j {entry_chain}"


def compile_deploy(config: HijackConfig) -> List[RuleOperation]:
    """
    Compile the full intercept topology.

    Chains are created first, then hooked into the built-in chains, then
    populated stage by stage. The result is deterministic for a given
    configuration.
    """
    table = config.table
    operations = [
        RuleOperation.create_chain(table, chain, stage=STAGE_CHAINS)
        for chain in CUSTOM_CHAINS
    ]

    for builtin, entry_chain in ENTRY_HOOKS:
        operations.append(
            RuleOperation.append(table, builtin, hook_rule(entry_chain), stage=STAGE_HOOKS)
        )

    rules = chain_rules(config)
    for stage, chain in POPULATION_ORDER:
        for rule in rules[chain]:
            operations.append(RuleOperation.append(table, chain, rule, stage=stage))

    return operations


def compile_destroy(config: HijackConfig) -> List[RuleOperation]:
    """
    Compile the teardown of the topology.

    The whole table is flushed and its user-defined chains deleted; the table
    is assumed to be dedicated to the intercept topology.
    """
    return [
        RuleOperation.flush_table(config.table, stage=STAGE_FIREWALL),
        RuleOperation.delete_chains(config.table, stage=STAGE_FIREWALL),
    ]


def deploy_stages() -> List[str]:
    """Names of the firewall stages of a deploy, in execution order."""
    return [STAGE_CHAINS, STAGE_HOOKS] + [stage for stage, _ in POPULATION_ORDER]
