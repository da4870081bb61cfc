"""
Tests for tproxy_hijacker.compiler.topology module.
"""

import pytest

from tproxy_hijacker.compiler.topology import (
    CUSTOM_CHAINS,
    DIVERT_CHAIN,
    INBOUND_CHAIN,
    OUTBOUND_CHAIN,
    REDIRECT_CHAIN,
    TPROXY_INPUT_CHAIN,
    TPROXY_OUTPUT_CHAIN,
    TPROXY_PREROUTING_CHAIN,
    chain_rules,
    compile_deploy,
    compile_destroy,
    deploy_stages,
)
from tproxy_hijacker.core.config import HijackConfig
from tproxy_hijacker.core.rules import OperationKind

OTHER_CONFIGS = [
    dict(interface_name="ens33", proxy_port=17000, redirect_port=9080,
         route_table_id=133, ignore_mark=68, divert_mark=1),
    dict(interface_name="wg0", proxy_port=15001, redirect_port=443,
         route_table_id=100, ignore_mark=0x2000, divert_mark=0x1000),
    dict(interface_name="veth-a1b2", proxy_port=1, redirect_port=65535,
         route_table_id=4000000000, ignore_mark=2**32 - 1, divert_mark=7),
]


def _rules_for(operations, chain):
    return [
        op.rule
        for op in operations
        if op.kind == OperationKind.APPEND_RULE and op.chain == chain
    ]


class TestCompileDeploy:
    """Test cases for the deploy operation list."""

    @pytest.mark.parametrize("values", OTHER_CONFIGS)
    def test_operation_counts_independent_of_values(self, values):
        """Test that the shape of the topology never depends on the config values."""
        operations = compile_deploy(HijackConfig(**values))

        creates = [op for op in operations if op.kind == OperationKind.CREATE_CHAIN]
        appends = [op for op in operations if op.kind == OperationKind.APPEND_RULE]
        hooks = [op for op in appends if op.chain in ("PREROUTING", "INPUT", "OUTPUT")]

        assert len(creates) == 7
        assert {op.chain for op in creates} == set(CUSTOM_CHAINS)
        assert len(hooks) == 3
        assert len(appends) == 17
        assert len(appends) - len(hooks) == 14

    def test_per_chain_rule_counts(self, config):
        """Test the number of rules in each custom chain."""
        operations = compile_deploy(config)

        assert len(_rules_for(operations, DIVERT_CHAIN)) == 2
        assert len(_rules_for(operations, REDIRECT_CHAIN)) == 1
        assert len(_rules_for(operations, INBOUND_CHAIN)) == 1
        assert len(_rules_for(operations, OUTBOUND_CHAIN)) == 2
        assert len(_rules_for(operations, TPROXY_PREROUTING_CHAIN)) == 2
        assert len(_rules_for(operations, TPROXY_OUTPUT_CHAIN)) == 4
        assert len(_rules_for(operations, TPROXY_INPUT_CHAIN)) == 2

    def test_chains_created_before_any_reference(self, config):
        """Test that every chain exists before a rule appends to or jumps into it."""
        operations = compile_deploy(config)
        created = set()

        for op in operations:
            if op.kind == OperationKind.CREATE_CHAIN:
                created.add(op.chain)
                continue
            if op.chain in CUSTOM_CHAINS:
                assert op.chain in created
            target = op.jump_target()
            if target in CUSTOM_CHAINS:
                assert target in created

    def test_entry_hooks_jump_to_entry_chains(self, config):
        """Test that each built-in chain gets exactly one jump to its entry chain."""
        operations = compile_deploy(config)

        assert _rules_for(operations, "PREROUTING") == [f"-j {TPROXY_PREROUTING_CHAIN}"]
        assert _rules_for(operations, "INPUT") == [f"-j {TPROXY_INPUT_CHAIN}"]
        assert _rules_for(operations, "OUTPUT") == [f"-j {TPROXY_OUTPUT_CHAIN}"]

    def test_hooks_follow_chain_creation(self, config):
        """Test that hooks are installed after all chains and before population."""
        stages = [op.stage for op in compile_deploy(config)]

        assert stages[:7] == ["chains"] * 7
        assert stages[7:10] == ["hooks"] * 3
        assert "chains" not in stages[10:] and "hooks" not in stages[10:]

    def test_stage_order(self, config):
        """Test that population stages follow the documented order."""
        seen = []
        for op in compile_deploy(config):
            if not seen or seen[-1] != op.stage:
                seen.append(op.stage)

        assert seen == deploy_stages()
        assert seen == [
            "chains",
            "hooks",
            "divert",
            "redirect",
            "inbound",
            "outbound",
            "tproxy_prerouting",
            "tproxy_output",
            "tproxy_input",
        ]

    def test_redirect_rule_text(self, config):
        """Test the TPROXY target of the redirect chain."""
        rules = _rules_for(compile_deploy(config), REDIRECT_CHAIN)

        assert rules == [
            "-p tcp -j TPROXY --on-port 17000 --on-ip 127.0.0.1 --tproxy-mark 1"
        ]

    def test_divert_marks_then_accepts(self, config):
        """Test that DIVERT sets the divert mark before accepting."""
        rules = _rules_for(compile_deploy(config), DIVERT_CHAIN)

        assert rules == ["-j MARK --set-xmark 1", "-j ACCEPT"]

    @pytest.mark.parametrize("values", OTHER_CONFIGS)
    def test_outbound_guard_precedes_redirect(self, values):
        """Test that OUTBOUND returns unmarked packets before redirecting."""
        cfg = HijackConfig(**values)
        rules = _rules_for(compile_deploy(cfg), OUTBOUND_CHAIN)

        assert rules[0] == f"-m mark ! --mark {cfg.divert_mark} -j RETURN"
        assert rules[1] == f"-p tcp -m tcp --dport {cfg.redirect_port} -j {REDIRECT_CHAIN}"

    @pytest.mark.parametrize("values", OTHER_CONFIGS)
    def test_output_ignore_return_precedes_divert(self, values):
        """Test that TPROXY_OUTPUT returns ignore-marked packets before diverting."""
        cfg = HijackConfig(**values)
        rules = _rules_for(compile_deploy(cfg), TPROXY_OUTPUT_CHAIN)

        ignore_idx = rules.index(f"-m mark --mark {cfg.ignore_mark} -j RETURN")
        divert_idx = rules.index(f"-p tcp -m tcp --dport {cfg.redirect_port} -j {DIVERT_CHAIN}")
        assert ignore_idx < divert_idx
        assert rules[1] == "-o lo -j RETURN"
        assert "--tcp-flags SYN,ACK,FIN,RST,URG,PSH SYN,ACK" in rules[0]
        assert f"--sport {cfg.redirect_port}" in rules[0]
        assert rules[0].endswith(f"--set-xmark {cfg.ignore_mark}")

    def test_prerouting_loopback_before_interface(self, config):
        """Test that loopback traffic is sent to OUTBOUND before inbound traffic is handled."""
        rules = _rules_for(compile_deploy(config), TPROXY_PREROUTING_CHAIN)

        assert rules == [
            "! -d 127.0.0.0/8 -i lo -j OUTBOUND",
            "! -d 127.0.0.0/8 -i eth0 -j INBOUND",
        ]

    def test_input_marks_syn_and_return_traffic(self, config):
        """Test the TPROXY_INPUT rules."""
        rules = _rules_for(compile_deploy(config), TPROXY_INPUT_CHAIN)

        assert rules == [
            "-i eth0 -p tcp -m tcp --dport 9080 --tcp-flags SYN,ACK,FIN,RST,URG,PSH SYN "
            "-j MARK --set-xmark 68",
            "-i eth0 -p tcp -m tcp --sport 9080 -j MARK --set-xmark 68",
        ]

    def test_inbound_sends_port_to_redirect(self, config):
        rules = _rules_for(compile_deploy(config), INBOUND_CHAIN)

        assert rules == ["-p tcp -m tcp --dport 9080 -j TPROXY_REDIRECT"]

    def test_deterministic(self, config):
        """Test that compiling twice yields equal operation lists."""
        assert compile_deploy(config) == compile_deploy(config)

    def test_uses_configured_table(self, config):
        """Test that every operation targets the configured table."""
        cfg = config.merge(table="raw")

        assert {op.table for op in compile_deploy(cfg)} == {"raw"}

    def test_chain_rules_matches_operations(self, config):
        """Test that chain_rules and compile_deploy agree."""
        operations = compile_deploy(config)

        for chain, rules in chain_rules(config).items():
            assert _rules_for(operations, chain) == rules


class TestCompileDestroy:
    """Test cases for the destroy operation list."""

    def test_flush_then_delete(self, config):
        """Test that destroy flushes the table and then deletes its chains."""
        operations = compile_destroy(config)

        assert [op.kind for op in operations] == [
            OperationKind.FLUSH_TABLE,
            OperationKind.DELETE_CHAIN,
        ]
        assert all(op.table == "mangle" for op in operations)
        assert [op.to_command() for op in operations] == [
            "iptables -t mangle -F",
            "iptables -t mangle -X",
        ]
