"""
Tests for chainrules Chain Resolver

Tests cover:
- node and group hops, including missing and empty references
- template expansion: provider and vocabulary templates, nesting, cycles
- dynamic_node selection modes
- custom_group generation
- multi-hop chains and failure positions
"""
import pytest

from chainrules.engine import ChainResolver
from chainrules.exceptions import ProviderContractError, ResolutionError
from chainrules.models import (
    EQ,
    ChainHop,
    HopKind,
    SelectMode,
    SelectorType,
    UrlTestConfig,
)

from tests.conftest import make_node, make_snapshot, sample_nodes


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def resolver(snapshot, vocabulary):
    return ChainResolver(snapshot, vocabulary)


HK = EQ("link_country", "HK")


class StringProvider:
    """Provider that breaks its interface contract."""

    def get_node(self, node_id):
        return None

    def get_group(self, name):
        return "n1,n2"

    def resolve_template(self, name):
        return "relay"

    def nodes(self):
        return []


# =============================================================================
# Node and Group Hops
# =============================================================================

class TestNodeHop:

    def test_resolves_to_proxy_name(self, resolver):
        result = resolver.resolve([ChainHop.node("hkProxy")])
        assert result.proxy_names == ["hkProxy"]
        assert result.hops[0].kind == HopKind.NODE
        assert result.hops[0].position == 0

    def test_uses_node_name(self, vocabulary):
        snapshot = make_snapshot([make_node(7, name="HK-Relay-01")])
        result = ChainResolver(snapshot, vocabulary).resolve([ChainHop.node(7)])
        assert result.proxy_names == ["HK-Relay-01"]
        assert result.references == ["7"]

    def test_missing_node(self, resolver):
        result = resolver.resolve([ChainHop.node("ghost")])
        assert isinstance(result, ResolutionError)
        assert result.reason == "missing_node"
        assert result.reference == "ghost"
        assert result.position == 0

    def test_failure_position(self, resolver):
        result = resolver.resolve([ChainHop.node("hkProxy"), ChainHop.node("ghost")])
        assert isinstance(result, ResolutionError)
        assert result.position == 1


class TestGroupHop:

    def test_derived_group(self, resolver):
        result = resolver.resolve([ChainHop.group("relay")])
        assert result.proxy_names == ["relay"]
        assert result.hops[0].kind == HopKind.GROUP

    def test_missing_group(self, resolver):
        result = resolver.resolve([ChainHop.group("nowhere")])
        assert isinstance(result, ResolutionError)
        assert result.reason == "missing_group"

    def test_empty_group(self, resolver):
        result = resolver.resolve([ChainHop.group("empty-group")])
        assert isinstance(result, ResolutionError)
        assert result.reason == "empty_group"

    def test_string_members_violate_contract(self, vocabulary):
        resolver = ChainResolver(StringProvider(), vocabulary)
        with pytest.raises(ProviderContractError):
            resolver.resolve([ChainHop.group("relay")])


# =============================================================================
# Template Groups
# =============================================================================

class TestTemplateGroups:

    def test_expands_to_group(self, resolver):
        result = resolver.resolve([ChainHop.template("中转")])
        assert result.proxy_names == ["relay"]
        assert result.hops[0].selector_type == SelectorType.TEMPLATE_GROUP
        assert result.hops[0].kind == HopKind.GROUP

    def test_expands_to_node(self, resolver):
        result = resolver.resolve([ChainHop.template("hk-entry")])
        assert result.proxy_names == ["hkProxy"]

    def test_vocabulary_templates(self, snapshot, vocabulary):
        vocab = vocabulary.with_template_groups({"voc-only": ChainHop.node("n2")})
        result = ChainResolver(snapshot, vocab).resolve([ChainHop.template("voc-only")])
        assert result.proxy_names == ["n2"]

    def test_provider_templates_take_precedence(self, snapshot, vocabulary):
        vocab = vocabulary.with_template_groups({"hk-entry": ChainHop.node("n2")})
        result = ChainResolver(snapshot, vocab).resolve([ChainHop.template("hk-entry")])
        assert result.proxy_names == ["hkProxy"]

    def test_missing_template(self, resolver):
        result = resolver.resolve([ChainHop.template("落地")])
        assert isinstance(result, ResolutionError)
        assert result.reason == "missing_template"
        assert result.reference == "落地"

    def test_nested_templates(self, vocabulary, nodes):
        templates = {"outer": ChainHop.template("inner"), "inner": ChainHop.group("relay")}
        resolver = ChainResolver(make_snapshot(nodes, templates=templates), vocabulary)
        assert resolver.resolve([ChainHop.template("outer")]).proxy_names == ["relay"]

    def test_cycle(self, vocabulary, nodes):
        templates = {"a": ChainHop.template("b"), "b": ChainHop.template("a")}
        resolver = ChainResolver(make_snapshot(nodes, templates=templates), vocabulary)
        result = resolver.resolve([ChainHop.template("a")])
        assert isinstance(result, ResolutionError)
        assert result.reason == "template_cycle"

    def test_self_reference(self, vocabulary, nodes):
        templates = {"loop": ChainHop.template("loop")}
        resolver = ChainResolver(make_snapshot(nodes, templates=templates), vocabulary)
        result = resolver.resolve([ChainHop.template("loop")])
        assert result.reason == "template_cycle"

    def test_depth_limit(self, vocabulary, nodes):
        templates = {f"t{i}": ChainHop.template(f"t{i + 1}") for i in range(3)}
        templates["t3"] = ChainHop.node("hkProxy")
        snapshot = make_snapshot(nodes, templates=templates)

        shallow = ChainResolver(snapshot, vocabulary, max_template_depth=3)
        result = shallow.resolve([ChainHop.template("t0")])
        assert isinstance(result, ResolutionError)
        assert result.reason == "template_depth"

        deep = ChainResolver(snapshot, vocabulary, max_template_depth=4)
        assert deep.resolve([ChainHop.template("t0")]).proxy_names == ["hkProxy"]

    def test_must_end_in_node_or_group(self, vocabulary, nodes):
        templates = {"dyn": ChainHop.dynamic(HK)}
        resolver = ChainResolver(make_snapshot(nodes, templates=templates), vocabulary)
        result = resolver.resolve([ChainHop.template("dyn")])
        assert result.reason == "invalid_template"

    def test_non_hop_expansion_violates_contract(self, vocabulary):
        resolver = ChainResolver(StringProvider(), vocabulary)
        with pytest.raises(ProviderContractError):
            resolver.resolve([ChainHop.template("x")])


# =============================================================================
# Dynamic Node
# =============================================================================

class TestDynamicNode:
    """HK candidates in declared order: n1 (120ms), n2 (40ms), hkProxy (0ms)."""

    def test_first(self, resolver):
        result = resolver.resolve([ChainHop.dynamic(HK, SelectMode.FIRST)])
        assert result.proxy_names == ["n1"]
        assert result.hops[0].selector_type == SelectorType.DYNAMIC_NODE

    def test_excludes_ruled_node(self, resolver):
        result = resolver.resolve([ChainHop.dynamic(HK)], seed="n1")
        assert result.proxy_names == ["n2"]

    def test_fastest_ignores_untested(self, resolver):
        result = resolver.resolve([ChainHop.dynamic(HK, SelectMode.FASTEST)])
        assert result.proxy_names == ["n2"]

    def test_fastest_falls_back_to_first(self, resolver):
        # n4 has no delay at all
        result = resolver.resolve([ChainHop.dynamic(EQ("link_country", "JP"), SelectMode.FASTEST)])
        assert result.proxy_names == ["n4"]

    def test_random_is_seed_stable(self, resolver):
        hop = ChainHop.dynamic(HK, SelectMode.RANDOM)
        first = resolver.resolve([hop], seed="n3")
        assert first.proxy_names[0] in {"n1", "n2", "hkProxy"}
        for _ in range(5):
            assert resolver.resolve([hop], seed="n3").proxy_names == first.proxy_names

    def test_no_match(self, resolver):
        result = resolver.resolve([ChainHop.dynamic(EQ("link_country", "DE"))])
        assert isinstance(result, ResolutionError)
        assert result.reason == "no_match"

    def test_only_match_is_ruled_node(self, resolver):
        result = resolver.resolve([ChainHop.dynamic(EQ("protocol", "ss"))], seed="hkProxy")
        assert result.reason == "no_match"

    def test_missing_conditions(self, resolver):
        result = resolver.resolve([ChainHop(SelectorType.DYNAMIC_NODE)])
        assert result.reason == "missing_conditions"


# =============================================================================
# Custom Group
# =============================================================================

class TestCustomGroup:

    def test_collects_matching_nodes(self, resolver):
        hop = ChainHop.custom_group("HK-Pool", HK, "url-test", UrlTestConfig(interval=60))
        result = resolver.resolve([hop], seed="n1")

        assert result.proxy_names == ["HK-Pool"]
        assert result.hops[0].kind == HopKind.GROUP
        group = result.custom_groups[0]
        assert group.name == "HK-Pool"
        assert group.type == "url-test"
        # Shared group: the ruled node is not removed
        assert group.proxies == ("n1", "n2", "hkProxy")
        assert group.to_dict()["interval"] == 60

    def test_default_type_is_select(self, resolver):
        hop = ChainHop(SelectorType.CUSTOM_GROUP, "HK-Pool", conditions=HK)
        result = resolver.resolve([hop])
        assert result.custom_groups[0].type == "select"

    def test_missing_name(self, resolver):
        result = resolver.resolve([ChainHop.custom_group("", HK)])
        assert result.reason == "missing_group_name"

    def test_missing_conditions(self, resolver):
        result = resolver.resolve([ChainHop(SelectorType.CUSTOM_GROUP, "HK-Pool")])
        assert result.reason == "missing_conditions"

    def test_no_match(self, resolver):
        result = resolver.resolve([ChainHop.custom_group("DE-Pool", EQ("link_country", "DE"))])
        assert result.reason == "no_match"


# =============================================================================
# Whole Chains
# =============================================================================

class TestChains:

    def test_empty_chain(self, resolver):
        result = resolver.resolve([])
        assert result.is_empty
        assert result.dialer_proxy is None

    def test_multi_hop(self, resolver):
        result = resolver.resolve([ChainHop.template("hk-entry"), ChainHop.group("relay")])
        assert result.proxy_names == ["hkProxy", "relay"]
        assert result.entry_proxy == "hkProxy"
        assert result.dialer_proxy == "relay"
        assert result.links("n3") == [("n3", "relay"), ("relay", "hkProxy")]

    def test_deterministic_across_resolvers(self, vocabulary):
        chain = [ChainHop.dynamic(HK, SelectMode.RANDOM), ChainHop.group("relay")]
        first = ChainResolver(make_snapshot(sample_nodes()), vocabulary).resolve(chain, seed="n4")
        second = ChainResolver(make_snapshot(sample_nodes()), vocabulary).resolve(chain, seed="n4")
        assert first.to_dict() == second.to_dict()
