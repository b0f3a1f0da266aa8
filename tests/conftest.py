"""
Pytest configuration and fixtures for chainrules tests.

Provides helper factories and common fixtures matching actual model definitions.
"""
from pathlib import Path
from typing import Any, Optional

import pytest

from chainrules.models import (
    AllTarget,
    ChainHop,
    ChainRule,
    Node,
    NodeSnapshot,
    SpecifiedNodeTarget,
    default_vocabulary,
)
from chainrules.store import RuleStore

EXAMPLES_DIR = Path(__file__).parent.parent / "packs" / "examples"


# =============================================================================
# Factory Helpers
# =============================================================================

def make_node(node_id: Any, name: Optional[str] = None, **attributes) -> Node:
    """Create a Node; the name defaults to the id."""
    return Node(id=str(node_id), name=name if name is not None else str(node_id), **attributes)


def make_rule(
    rule_id: str = "r1",
    subscription_id: str = "S",
    chain: tuple = (),
    target=None,
    sort_order: int = 0,
    enabled: bool = True,
    name: str = "",
) -> ChainRule:
    """Create a ChainRule; the target defaults to all nodes."""
    return ChainRule(
        id=rule_id,
        subscription_id=subscription_id,
        name=name,
        enabled=enabled,
        sort_order=sort_order,
        chain_config=tuple(chain),
        target_config=target if target is not None else AllTarget(),
    )


def make_snapshot(nodes, groups=None, templates=None) -> NodeSnapshot:
    return NodeSnapshot.build(nodes, groups=groups, templates=templates)


def sample_nodes() -> list[Node]:
    """A small mixed fleet used across tests."""
    return [
        make_node("n1", link_country="HK", protocol="vmess", group="relay",
                  delay_time=120, speed=12.5, speed_status="success",
                  delay_status="success", tags=("relay", "premium")),
        make_node("n2", link_country="HK", protocol="trojan", group="relay",
                  delay_time=40, speed=30.0, speed_status="success",
                  delay_status="success", tags=("relay",)),
        make_node("n3", link_country="US", protocol="vless", group="landing",
                  delay_time=210, delay_status="success", tags=("landing",)),
        make_node("n4", link_country="JP", protocol="hysteria2", group="landing",
                  delay_status="timeout", tags="landing,streaming"),
        make_node("hkProxy", link_country="HK", protocol="ss", group="relay",
                  delay_time=0, tags=()),
    ]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def vocabulary():
    return default_vocabulary()


@pytest.fixture
def nodes():
    return sample_nodes()


@pytest.fixture
def snapshot(nodes):
    return make_snapshot(
        nodes,
        groups={"empty-group": []},
        templates={
            "中转": ChainHop.group("relay"),
            "hk-entry": ChainHop.node("hkProxy"),
        },
    )


@pytest.fixture
def store(vocabulary):
    counter = iter(range(1, 10_000))
    return RuleStore(vocabulary, id_factory=lambda: f"rule-{next(counter)}")


@pytest.fixture
def end_to_end_rules():
    """Rule set S: n1 through hkProxy, everything else claimed with no chain."""
    return [
        make_rule("r0", sort_order=0, target=SpecifiedNodeTarget("n1"),
                  chain=(ChainHop.node("hkProxy"),)),
        make_rule("r1", sort_order=1, target=AllTarget(), chain=()),
    ]
