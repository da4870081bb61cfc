#!/usr/bin/env python3
"""
Example script intercepting port 9080 on ens33 into a proxy on port 17000.

This script shows how to:
1. Build a hijack configuration
2. Preview the commands a deploy issues
3. Deploy the topology (dry run unless --live is given)
4. Inspect and remove it again

Usage:
    python leicester_example.py [--live]
"""

import sys

from tproxy_hijacker import DeployError, DestroyError, HijackConfig, Hijacker
from tproxy_hijacker.core.logging_config import setup_logging
from tproxy_hijacker.devices import LocalRunner
from tproxy_hijacker.enforcement import plan_commands


def main():
    live = "--live" in sys.argv[1:]
    setup_logging(verbosity=1 if live else 0)

    print("🔀 tproxy-hijacker - Leicester Example")
    print("=" * 50)

    # 1. Configuration matching the proxy deployment
    config = HijackConfig(
        interface_name="ens33",
        proxy_port=17000,
        redirect_port=9080,
        route_table_id=133,
        ignore_mark=68,
        divert_mark=1,
    )
    print(f"\n📋 Intercepting tcp/{config.redirect_port} on {config.interface_name}")
    print(f"   Proxy listens on 127.0.0.1:{config.proxy_port}")

    # 2. Preview
    print("\n📝 Commands a deploy issues:")
    for command in plan_commands(config):
        print(f"   {command}")

    # 3. Deploy
    runner = LocalRunner(dry_run=not live)
    hijacker = Hijacker.build(config, runner=runner)
    mode = "LIVE" if live else "DRY RUN"
    print(f"\n🚀 Deploying ({mode})...")
    try:
        result = hijacker.deploy()
    except DeployError as e:
        print(f"❌ Deploy failed at stage '{e.stage}': {e.cause}")
        return 1
    print(f"✅ {result.operations_applied} operations applied, "
          f"{result.operations_skipped} already present")

    if not live:
        print("\n💡 Commands that would have run:")
        for command in runner.executed_commands:
            print(f"   {command}")
        return 0

    # 4. Inspect and remove
    status = hijacker.status()
    print(f"\n🔍 Deployed: {status.is_deployed}")
    for chain, count in status.rule_counts.items():
        print(f"   {chain}: {count}/{status.expected_rule_counts[chain]} rules")

    print("\n🧹 Removing topology...")
    try:
        hijacker.destroy()
    except DestroyError as e:
        for stage, error in e.failures:
            print(f"❌ {stage}: {error}")
        return 1
    print("✅ Topology removed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
