"""
Tests for chainrules Rule Engine

Tests cover:
- First-match-wins over rules in sort order
- Disabled rules keep their position but never match
- Empty chains claim nodes without a proxy
- fail_closed / fail_open resolution policies
- Whole-pass evaluation with preserved dialer proxies and custom groups
"""
import dataclasses
import logging

import pytest

from chainrules.config import Settings
from chainrules.engine import ChainRuleEngine
from chainrules.models import (
    EQ,
    GT,
    AllTarget,
    ChainHop,
    ConditionsTarget,
    FieldType,
    OperatorSpec,
    ResolutionPolicy,
    SpecifiedNodeTarget,
)

from tests.conftest import make_node, make_rule, make_snapshot, sample_nodes


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def engine(snapshot, vocabulary):
    return ChainRuleEngine(snapshot, vocabulary)


@pytest.fixture
def by_id():
    return {n.id: n for n in sample_nodes()}


# =============================================================================
# First Match Wins
# =============================================================================

class TestFirstMatchWins:
    """The first enabled matching rule decides the node."""

    def test_end_to_end(self, engine, by_id, end_to_end_rules):
        assert engine.resolve_for_node(by_id["n1"], end_to_end_rules).proxy_names == ["hkProxy"]

        chain = engine.resolve_for_node(by_id["n2"], end_to_end_rules)
        assert chain is not None
        assert chain.is_empty

    def test_earlier_rule_shadows_later(self, engine, by_id):
        rules = [
            make_rule("r0", sort_order=0, target=AllTarget(), chain=[ChainHop.group("relay")]),
            make_rule("r1", sort_order=1, target=SpecifiedNodeTarget("n3"),
                      chain=[ChainHop.node("hkProxy")]),
        ]
        decision = engine.decide(by_id["n3"], rules)
        assert decision.rule_id == "r0"
        assert decision.dialer_proxy == "relay"

    def test_no_rule_matches(self, engine, by_id):
        rules = [make_rule("r0", target=SpecifiedNodeTarget("n1"))]
        decision = engine.decide(by_id["n3"], rules)
        assert decision.rule_id is None
        assert decision.chain is None
        assert not decision.matched
        assert engine.resolve_for_node(by_id["n3"], rules) is None

    def test_no_rules(self, engine, by_id):
        assert engine.resolve_for_node(by_id["n1"], []) is None

    def test_empty_chain_claims_node(self, engine, by_id):
        rules = [
            make_rule("claim", sort_order=0, target=SpecifiedNodeTarget("n3")),
            make_rule("later", sort_order=1, chain=[ChainHop.group("relay")]),
        ]
        decision = engine.decide(by_id["n3"], rules)
        assert decision.rule_id == "claim"
        assert decision.matched
        assert decision.dialer_proxy is None

    def test_disabled_rule_is_skipped(self, engine, by_id):
        rules = [
            make_rule("off", sort_order=0, enabled=False, chain=[ChainHop.node("n2")]),
            make_rule("on", sort_order=1, chain=[ChainHop.node("hkProxy")]),
        ]
        decision = engine.decide(by_id["n3"], rules)
        assert decision.rule_id == "on"
        assert decision.chain.proxy_names == ["hkProxy"]

    def test_conditions_target(self, engine, by_id):
        rules = [make_rule("jp", target=ConditionsTarget(EQ("link_country", "JP")),
                           chain=[ChainHop.template("中转")])]
        assert engine.resolve_for_node(by_id["n4"], rules).proxy_names == ["relay"]
        assert engine.resolve_for_node(by_id["n3"], rules) is None

    def test_accepts_mapping_nodes(self, engine, end_to_end_rules):
        chain = engine.resolve_for_node({"id": "n1", "link_country": "HK"}, end_to_end_rules)
        assert chain.proxy_names == ["hkProxy"]

    def test_unusable_condition_falls_through(self, snapshot, vocabulary, by_id):
        operators = dict(vocabulary.operators)
        operators["greater_than"] = OperatorSpec(
            "greater_than", {FieldType.NUMBER, FieldType.DURATION, FieldType.SET}
        )
        engine = ChainRuleEngine(snapshot, dataclasses.replace(vocabulary, operators=operators))
        rules = [
            make_rule("tags", sort_order=0, target=ConditionsTarget(GT("tags", "a")),
                      chain=[ChainHop.node("hkProxy")]),
            make_rule("rest", sort_order=1, chain=[ChainHop.group("relay")]),
        ]

        assert engine.decide(by_id["n1"], rules).rule_id == "rest"
        result = engine.evaluate_pass(rules, nodes=[by_id["n1"], by_id["n3"]])
        assert [d.rule_id for d in result.decisions] == ["rest", "rest"]


# =============================================================================
# Resolution Policies
# =============================================================================

class TestResolutionPolicy:

    @pytest.fixture
    def dangling_rules(self):
        return [
            make_rule("dangling", sort_order=0, target=SpecifiedNodeTarget("n3"),
                      chain=[ChainHop.node("deleted-node")]),
            make_rule("fallback", sort_order=1, chain=[ChainHop.group("relay")]),
        ]

    def test_fail_closed_is_default(self, engine, by_id, dangling_rules):
        diagnostics = []
        chain = engine.resolve_for_node(by_id["n3"], dangling_rules, diagnostics)

        assert chain is None
        assert len(diagnostics) == 1
        error = diagnostics[0]
        assert error.reason == "missing_node"
        assert error.reference == "deleted-node"
        assert error.position == 0
        assert error.rule_id == "dangling"
        assert error.subscription_id == "S"

    def test_fail_closed_decision_carries_error(self, engine, by_id, dangling_rules):
        decision = engine.decide(by_id["n3"], dangling_rules)
        assert decision.rule_id == "dangling"
        assert decision.error is not None
        assert decision.to_dict()["error"]["reason"] == "missing_node"

    def test_fail_open_skips_to_next_rule(self, snapshot, vocabulary, by_id, dangling_rules):
        engine = ChainRuleEngine(snapshot, vocabulary, policy=ResolutionPolicy.FAIL_OPEN)
        diagnostics = []
        chain = engine.resolve_for_node(by_id["n3"], dangling_rules, diagnostics)

        assert chain.proxy_names == ["relay"]
        assert [e.rule_id for e in diagnostics] == ["dangling"]

    def test_policy_accepts_string(self, snapshot, vocabulary):
        engine = ChainRuleEngine(snapshot, vocabulary, policy="fail_open")
        assert engine.policy == ResolutionPolicy.FAIL_OPEN

    def test_failure_is_logged(self, engine, by_id, dangling_rules, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("chainrules"), "propagate", True)
        with caplog.at_level(logging.WARNING, logger="chainrules"):
            engine.decide(by_id["n3"], dangling_rules)
        records = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert records
        assert records[0].rule_id == "dangling"
        assert records[0].reason == "missing_node"

    def test_from_settings(self, snapshot, vocabulary):
        settings = Settings(resolution_policy=ResolutionPolicy.FAIL_OPEN, max_template_depth=2)
        engine = ChainRuleEngine.from_settings(snapshot, vocabulary, settings)
        assert engine.policy == ResolutionPolicy.FAIL_OPEN
        assert engine.resolver.max_template_depth == 2


# =============================================================================
# Whole Pass
# =============================================================================

class TestEvaluatePass:

    def test_every_node_gets_a_decision(self, engine, end_to_end_rules):
        result = engine.evaluate_pass(end_to_end_rules)
        assert [d.node_id for d in result.decisions] == ["n1", "n2", "n3", "n4", "hkProxy"]
        assert result.dialer_proxies() == {"n1": "hkProxy"}
        assert result.errors == []

    def test_existing_dialer_is_preserved(self, vocabulary):
        nodes = [make_node("a"), make_node("b", dialer_proxy_name="manual-front"), make_node("hk")]
        engine = ChainRuleEngine(make_snapshot(nodes), vocabulary)
        rules = [make_rule(chain=[ChainHop.node("hk")])]

        result = engine.evaluate_pass(rules, nodes=nodes[:2])
        assert result.decision_for("a").dialer_proxy == "hk"
        preserved = result.decision_for("b")
        assert preserved.preserved_dialer == "manual-front"
        assert preserved.rule_id is None
        assert preserved.to_dict()["preserved"] is True

    def test_existing_dialer_can_be_overridden(self, vocabulary):
        nodes = [make_node("b", dialer_proxy_name="manual-front"), make_node("hk")]
        engine = ChainRuleEngine(make_snapshot(nodes), vocabulary, preserve_existing_dialer=False)
        result = engine.evaluate_pass([make_rule(chain=[ChainHop.node("hk")])], nodes=nodes[:1])
        assert result.decision_for("b").dialer_proxy == "hk"

    def test_custom_groups_collected_once(self, engine):
        hop = ChainHop.custom_group("HK-Pool", EQ("link_country", "HK"), "url-test")
        rules = [make_rule(target=ConditionsTarget(EQ("group", "landing")), chain=[hop])]

        result = engine.evaluate_pass(rules)
        assert [g.name for g in result.custom_groups] == ["HK-Pool"]
        assert result.decision_for("n3").dialer_proxy == "HK-Pool"
        assert result.decision_for("n4").dialer_proxy == "HK-Pool"
        assert result.decision_for("n1").chain is None

    def test_errors_collected(self, engine):
        rules = [make_rule(target=ConditionsTarget(EQ("link_country", "HK")),
                           chain=[ChainHop.group("nowhere")])]
        result = engine.evaluate_pass(rules)
        assert len(result.errors) == 3
        assert {e.reason for e in result.errors} == {"missing_group"}
        assert result.to_dict()["errors"][0]["rule_id"] == "r1"

    def test_evaluation_does_not_mutate_rules(self, engine, end_to_end_rules):
        before = list(end_to_end_rules)
        engine.evaluate_pass(end_to_end_rules)
        assert end_to_end_rules == before
