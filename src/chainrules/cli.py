"""
Chain Rules CLI

Command-line interface for checking rule packs and previewing chains.

Usage:
    python -m chainrules.cli validate packs/sub-1.yaml
    python -m chainrules.cli evaluate packs/sub-1.yaml nodes.yaml [--policy fail_open] [--json]
    python -m chainrules.cli export packs/sub-1.yaml
    python -m chainrules.cli options [packs/sub-1.yaml]
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Optional, Sequence

from .config import get_settings
from .engine import ChainRuleEngine
from .exceptions import ChainRulesError
from .logging_setup import configure_logging
from .models import ResolutionPolicy, default_vocabulary
from .packs import load_nodes, load_rule_pack


def cmd_validate(args: argparse.Namespace) -> int:
    pack = load_rule_pack(args.pack)
    enabled = len(pack.enabled_rules())
    print(f"OK  {args.pack}")
    print(f"  Subscription:    {pack.subscription_id}")
    print(f"  Rules:           {len(pack.rules)} ({enabled} enabled)")
    print(f"  Template groups: {len(pack.templates)}")
    print(f"  Policy groups:   {len(pack.groups) + len(pack.clash_groups)}")
    return 0


def cmd_evaluate(args: argparse.Namespace) -> int:
    pack = load_rule_pack(args.pack)
    nodes = load_nodes(args.nodes)
    snapshot = pack.snapshot(nodes)

    settings = get_settings()
    engine = ChainRuleEngine(
        snapshot,
        pack.vocabulary,
        policy=ResolutionPolicy(args.policy) if args.policy else settings.resolution_policy,
        max_template_depth=settings.max_template_depth,
        preserve_existing_dialer=not args.ignore_existing and settings.preserve_existing_dialer,
    )
    result = engine.evaluate_pass(pack.rules)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2, default=str))
        return 1 if result.errors else 0

    print("=" * 70)
    print(f"CHAIN RESOLUTION: {pack.subscription_id}")
    print("=" * 70)
    print(f"{'Node':<24} {'Rule':<16} Chain")
    print("-" * 70)
    for decision in result.decisions:
        node = snapshot.get_node(decision.node_id)
        label = node.proxy_name if node is not None else decision.node_id
        if decision.preserved_dialer:
            chain = f"{decision.preserved_dialer} (preserved)"
        elif decision.error is not None:
            chain = f"ERROR {decision.error.reason}: {decision.error.message}"
        elif decision.chain is None:
            chain = "-"
        else:
            chain = " -> ".join(decision.chain.proxy_names) or "(direct)"
        print(f"{label:<24} {decision.rule_id or '-':<16} {chain}")
    print("-" * 70)

    if result.custom_groups:
        print()
        print("CUSTOM PROXY GROUPS")
        for group in result.custom_groups:
            print(f"  {group.name} [{group.type}]: {', '.join(group.proxies)}")

    if result.errors:
        print()
        print(f"{len(result.errors)} resolution error(s)")
        return 1
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    pack = load_rule_pack(args.pack)
    print(json.dumps(pack.to_records(), ensure_ascii=False, indent=2))
    return 0


def cmd_options(args: argparse.Namespace) -> int:
    vocabulary = load_rule_pack(args.pack).vocabulary if args.pack else default_vocabulary()
    print(json.dumps(vocabulary.to_options(), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Chain proxy rule tools",
        prog="python -m chainrules.cli",
    )
    parser.add_argument("--log-level", default=None, help="Override CHAINRULES_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a rule pack")
    validate_parser.add_argument("pack", help="Rule pack (YAML or JSON)")
    validate_parser.set_defaults(func=cmd_validate)

    # Evaluate command
    evaluate_parser = subparsers.add_parser("evaluate", help="Resolve chains for a node list")
    evaluate_parser.add_argument("pack", help="Rule pack (YAML or JSON)")
    evaluate_parser.add_argument("nodes", help="Node list (YAML or JSON)")
    evaluate_parser.add_argument(
        "--policy",
        choices=[p.value for p in ResolutionPolicy],
        default=None,
        help="Resolution policy (default: CHAINRULES_RESOLUTION_POLICY)",
    )
    evaluate_parser.add_argument(
        "--ignore-existing",
        action="store_true",
        help="Evaluate nodes even when they already have a dialer proxy",
    )
    evaluate_parser.add_argument("--json", action="store_true", help="Print JSON")
    evaluate_parser.set_defaults(func=cmd_evaluate)

    # Export command
    export_parser = subparsers.add_parser("export", help="Print persisted rule records")
    export_parser.add_argument("pack", help="Rule pack (YAML or JSON)")
    export_parser.set_defaults(func=cmd_export)

    # Options command
    options_parser = subparsers.add_parser("options", help="Print vocabulary option lists")
    options_parser.add_argument("pack", nargs="?", default=None, help="Rule pack (optional)")
    options_parser.set_defaults(func=cmd_options)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(level=args.log_level)
    try:
        return args.func(args)
    except ChainRulesError as e:
        print(f"ERROR {e}", file=sys.stderr)
        if e.details:
            print(json.dumps(e.details, ensure_ascii=False, indent=2, default=str), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
