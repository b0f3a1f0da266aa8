"""
Tests for chainrules Condition Evaluator

Tests cover:
- Value coercion (number, duration, set, text)
- Comparison operators per field type
- AND/OR short-circuiting and empty groups
- Degradation of unknown fields/operators and bad values to false
- Custom vocabularies
"""
import pytest

from chainrules.models import (
    AND,
    BETWEEN,
    CONTAINS,
    EQ,
    EXISTS,
    GT,
    GTE,
    IN,
    IS_EMPTY,
    LT,
    LTE,
    NE,
    NOT_IN,
    OR,
    PRED,
    REGEX,
    ConditionGroup,
    ConditionOperator,
    FieldSpec,
    FieldType,
    OperatorSpec,
    Vocabulary,
    default_operators,
)
from chainrules.engine.condition_evaluator import (
    ConditionEvaluator,
    coerce_number,
    coerce_set,
    coerce_text,
    compare_values,
    evaluate_condition,
    parse_duration,
)

from tests.conftest import make_node, sample_nodes


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def evaluator(vocabulary):
    return ConditionEvaluator(vocabulary)


@pytest.fixture
def by_id():
    return {n.id: n for n in sample_nodes()}


# =============================================================================
# Coercion Tests
# =============================================================================

class TestCoercion:
    """Tests for the per-type coercion helpers."""

    @pytest.mark.parametrize("raw,expected", [
        (250, 250.0),
        ("250", 250.0),
        ("250ms", 250.0),
        ("1.5s", 1500.0),
        ("2m", 120_000.0),
        ("1h", 3_600_000.0),
        (" 30 S ", 30_000.0),
    ])
    def test_parse_duration(self, raw, expected):
        assert parse_duration(raw) == expected

    def test_parse_duration_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_duration("soon")

    def test_parse_duration_rejects_bool(self):
        with pytest.raises(TypeError):
            parse_duration(True)

    def test_coerce_number(self):
        assert coerce_number("12.5") == 12.5
        assert coerce_number(3) == 3.0
        with pytest.raises(ValueError):
            coerce_number("fast")
        with pytest.raises(TypeError):
            coerce_number(False)

    def test_coerce_set_from_comma_string(self):
        assert coerce_set("a, b,,a") == frozenset({"a", "b"})

    def test_coerce_set_from_list(self):
        assert coerce_set(["x", 1]) == frozenset({"x", "1"})

    def test_coerce_text_formats_whole_floats(self):
        assert coerce_text(443.0) == "443"
        assert coerce_text(1.5) == "1.5"
        assert coerce_text(True) == "true"


# =============================================================================
# Comparison Operator Tests
# =============================================================================

class TestCompareValues:
    """Tests for compare_values."""

    def test_string_equals_is_exact(self):
        assert compare_values("HK", ConditionOperator.EQUALS, "HK", FieldType.STRING)
        assert not compare_values("HK", ConditionOperator.EQUALS, "hk", FieldType.STRING)

    def test_contains_is_case_insensitive(self):
        assert compare_values("HK-Relay-01", ConditionOperator.CONTAINS, "relay", FieldType.STRING)
        assert not compare_values("HK-Relay-01", ConditionOperator.NOT_CONTAINS, "RELAY", FieldType.STRING)

    def test_starts_and_ends_with(self):
        assert compare_values("HK-Relay-01", ConditionOperator.STARTS_WITH, "hk-", FieldType.STRING)
        assert compare_values("HK-Relay-01", ConditionOperator.ENDS_WITH, "-01", FieldType.STRING)
        assert not compare_values("HK-Relay-01", ConditionOperator.ENDS_WITH, "hk", FieldType.STRING)

    def test_regex_searches(self):
        assert compare_values("HK-Relay-01", ConditionOperator.REGEX, r"Relay-\d+", FieldType.STRING)
        assert not compare_values("HK-Relay-01", ConditionOperator.REGEX, r"^Relay", FieldType.STRING)

    def test_numeric_comparisons(self):
        op = ConditionOperator
        assert compare_values(12.5, op.GREATER_THAN, 10, FieldType.NUMBER)
        assert compare_values(10, op.GREATER_OR_EQUAL, "10", FieldType.NUMBER)
        assert compare_values(9, op.LESS_THAN, 10, FieldType.NUMBER)
        assert compare_values(10, op.LESS_OR_EQUAL, 10.0, FieldType.NUMBER)

    def test_duration_units_on_both_sides(self):
        assert compare_values("1s", ConditionOperator.LESS_THAN, "1500ms", FieldType.DURATION)
        assert compare_values(120, ConditionOperator.GREATER_THAN, "0.1s", FieldType.DURATION)

    def test_between_is_inclusive(self):
        assert compare_values(100, ConditionOperator.BETWEEN, (100, 150), FieldType.NUMBER)
        assert compare_values(150, ConditionOperator.BETWEEN, [100, 150], FieldType.NUMBER)
        assert not compare_values(151, ConditionOperator.BETWEEN, (100, 150), FieldType.NUMBER)

    def test_between_requires_pair(self):
        with pytest.raises(ValueError):
            compare_values(1, ConditionOperator.BETWEEN, (1, 2, 3), FieldType.NUMBER)

    def test_in_and_not_in(self):
        assert compare_values("JP", ConditionOperator.IN, ("HK", "JP"), FieldType.STRING)
        assert compare_values("US", ConditionOperator.NOT_IN, ("HK", "JP"), FieldType.STRING)

    def test_in_requires_list(self):
        with pytest.raises(TypeError):
            compare_values("JP", ConditionOperator.IN, "JP", FieldType.STRING)

    def test_set_semantics(self):
        tags = ("relay", "premium")
        assert compare_values(tags, ConditionOperator.CONTAINS, "Premium", FieldType.SET)
        assert compare_values(tags, ConditionOperator.IN, ("premium", "other"), FieldType.SET)
        assert not compare_values(tags, ConditionOperator.IN, ("other",), FieldType.SET)
        assert compare_values(tags, ConditionOperator.EQUALS, ["premium", "relay"], FieldType.SET)

    def test_uncoercible_raises_for_caller(self):
        with pytest.raises(ValueError):
            compare_values("fast", ConditionOperator.GREATER_THAN, 1, FieldType.NUMBER)


# =============================================================================
# Leaf Evaluation Tests
# =============================================================================

class TestLeafEvaluation:
    """Tests for evaluating single predicates against nodes."""

    def test_equals(self, evaluator, by_id):
        assert evaluator.evaluate(EQ("link_country", "HK"), by_id["n1"])
        assert not evaluator.evaluate(EQ("link_country", "hk"), by_id["n1"])

    def test_not_equals(self, evaluator, by_id):
        assert evaluator.evaluate(NE("link_country", "US"), by_id["n1"])

    def test_numeric_field(self, evaluator, by_id):
        assert evaluator.evaluate(GT("speed", 10), by_id["n1"])
        assert not evaluator.evaluate(GT("speed", 20), by_id["n1"])
        assert evaluator.evaluate(GTE("speed", 30), by_id["n2"])
        assert evaluator.evaluate(LTE("speed", 12.5), by_id["n1"])

    def test_duration_field(self, evaluator, by_id):
        assert evaluator.evaluate(LT("delay_time", "1s"), by_id["n1"])
        assert not evaluator.evaluate(LT("delay_time", "100ms"), by_id["n1"])
        assert evaluator.evaluate(BETWEEN("delay_time", 100, 150), by_id["n1"])
        assert not evaluator.evaluate(BETWEEN("delay_time", 100, 150), by_id["n2"])

    def test_set_field_from_comma_string(self, evaluator, by_id):
        # n4 was built with tags="landing,streaming"
        assert by_id["n4"].tags == ("landing", "streaming")
        assert evaluator.evaluate(CONTAINS("tags", "STREAMING"), by_id["n4"])
        assert not evaluator.evaluate(CONTAINS("tags", "relay"), by_id["n4"])

    def test_set_membership(self, evaluator, by_id):
        assert evaluator.evaluate(IN("tags", ["premium", "nope"]), by_id["n1"])
        assert evaluator.evaluate(NOT_IN("tags", ["premium"]), by_id["n2"])

    def test_enum_field(self, evaluator, by_id):
        assert evaluator.evaluate(EQ("delay_status", "timeout"), by_id["n4"])
        assert evaluator.evaluate(IN("delay_status", ["success", "timeout"]), by_id["n1"])

    def test_regex(self, evaluator):
        node = make_node("x", name="HK-Relay-01")
        assert evaluator.evaluate(REGEX("name", r"^HK-\w+-\d+$"), node)

    def test_mapping_node_with_string_number(self, evaluator):
        node = {"id": "m1", "speed": "12.5"}
        assert evaluator.evaluate(GT("speed", 10), node)

    def test_extra_attributes(self):
        vocabulary = Vocabulary(
            fields={"region": FieldSpec("region", FieldType.STRING)},
            operators=default_operators(),
        )
        node = make_node("x", extra={"region": "apac"})
        assert evaluate_condition(EQ("region", "apac"), node, vocabulary)

    def test_attribute_alias(self):
        vocabulary = Vocabulary(
            fields={"country": FieldSpec("country", FieldType.STRING, attribute="link_country")},
            operators=default_operators(),
        )
        node = make_node("x", link_country="HK")
        assert evaluate_condition(EQ("country", "HK"), node, vocabulary)


# =============================================================================
# Presence Tests
# =============================================================================

class TestPresence:
    """Missing attributes are false except for emptiness/absence checks."""

    def test_missing_value_is_false(self, evaluator, by_id):
        # n3 has no speed
        assert not evaluator.evaluate(GT("speed", 0), by_id["n3"])
        assert not evaluator.evaluate(NE("speed", 5), by_id["n3"])

    def test_is_empty(self, evaluator, by_id):
        assert evaluator.evaluate(IS_EMPTY("speed"), by_id["n3"])
        assert evaluator.evaluate(IS_EMPTY("tags"), by_id["hkProxy"])
        assert not evaluator.evaluate(IS_EMPTY("tags"), by_id["n1"])
        assert evaluator.evaluate(PRED("tags", "is_not_empty"), by_id["n1"])

    def test_exists(self, evaluator, by_id):
        assert evaluator.evaluate(EXISTS("speed"), by_id["n1"])
        assert not evaluator.evaluate(EXISTS("speed"), by_id["n3"])
        assert evaluator.evaluate(PRED("speed", "not_exists"), by_id["n3"])

    def test_missing_mapping_key(self, evaluator):
        node = {"id": "m1"}
        assert evaluator.evaluate(PRED("link_country", "not_exists"), node)
        assert not evaluator.evaluate(EQ("link_country", "HK"), node)


# =============================================================================
# Degradation Tests
# =============================================================================

class TestDegradation:
    """Bad rule data turns the leaf false and never raises."""

    def test_unknown_field(self, evaluator, by_id):
        condition = EQ("nonexistent", "x")
        assert evaluator.evaluate(condition, by_id["n1"]) is False
        result = evaluator.explain(condition, by_id["n1"])
        assert result.value is False
        assert "unknown field" in result.degraded[0]

    def test_unknown_operator(self, evaluator, by_id):
        assert evaluator.evaluate(PRED("name", "sounds_like", "n1"), by_id["n1"]) is False

    def test_operator_not_applicable(self, evaluator, by_id):
        result = evaluator.explain(GT("name", "a"), by_id["n1"])
        assert result.value is False
        assert "not applicable" in result.degraded[0]

    def test_uncoercible_value(self, evaluator, by_id):
        result = evaluator.explain(GT("speed", "fast"), by_id["n1"])
        assert result.value is False
        assert result.degraded

    def test_boolean_is_not_a_number(self, evaluator, by_id):
        assert evaluator.evaluate(GT("speed", True), by_id["n1"]) is False

    def test_invalid_regex(self, evaluator, by_id):
        result = evaluator.explain(REGEX("name", "(["), by_id["n1"])
        assert result.value is False
        assert result.degraded

    def test_degraded_leaf_inside_or(self, evaluator, by_id):
        condition = OR(EQ("nonexistent", "x"), EQ("link_country", "HK"))
        assert evaluator.evaluate(condition, by_id["n1"])

    def test_degraded_leaf_inside_not_equals(self, evaluator, by_id):
        # A degraded negation must not turn into a match
        assert evaluator.evaluate(NE("speed", "fast"), by_id["n1"]) is False

    def test_ordered_operator_declared_for_set_field(self, by_id):
        operators = default_operators()
        for name, arity in (("greater_than", "scalar"), ("between", "pair")):
            operators[name] = OperatorSpec(name, {FieldType.NUMBER, FieldType.SET}, arity)
        evaluator = ConditionEvaluator(Vocabulary(
            fields={"tags": FieldSpec("tags", FieldType.SET)},
            operators=operators,
        ))

        result = evaluator.explain(GT("tags", "a"), by_id["n1"])
        assert result.value is False
        assert "does not support set" in result.degraded[0]
        assert evaluator.evaluate(BETWEEN("tags", "a", "z"), by_id["n1"]) is False
        assert evaluator.evaluate(OR(GT("tags", "a"), EQ("tags", ["relay", "premium"])), by_id["n1"])

    def test_compare_values_rejects_ordering_sets(self):
        with pytest.raises(TypeError):
            compare_values(("a",), ConditionOperator.LESS_THAN, "b", FieldType.SET)


# =============================================================================
# Combinator Tests
# =============================================================================

class TestCombinators:
    """Tests for AND/OR evaluation."""

    def test_empty_and_is_true(self, evaluator, by_id):
        assert evaluator.evaluate(AND(), by_id["n1"]) is True

    def test_empty_or_is_false(self, evaluator, by_id):
        assert evaluator.evaluate(OR(), by_id["n1"]) is False

    def test_none_condition_is_true(self, evaluator, by_id):
        assert evaluator.evaluate(None, by_id["n1"]) is True

    def test_and(self, evaluator, by_id):
        condition = AND(EQ("link_country", "HK"), LT("delay_time", 100))
        assert not evaluator.evaluate(condition, by_id["n1"])
        assert evaluator.evaluate(condition, by_id["n2"])

    def test_nested(self, evaluator, by_id):
        condition = OR(
            AND(EQ("link_country", "HK"), CONTAINS("tags", "premium")),
            EQ("link_country", "JP"),
        )
        assert evaluator.evaluate(condition, by_id["n1"])
        assert not evaluator.evaluate(condition, by_id["n2"])
        assert evaluator.evaluate(condition, by_id["n4"])

    def test_and_short_circuits(self, evaluator, by_id):
        condition = AND(EQ("link_country", "US"), EQ("protocol", "vmess"))
        result = evaluator.explain(condition, by_id["n1"])
        assert result.value is False
        assert result.evaluated_fields == ["link_country"]

    def test_or_short_circuits(self, evaluator, by_id):
        condition = OR(EQ("link_country", "HK"), EQ("nonexistent", "x"))
        result = evaluator.explain(condition, by_id["n1"])
        assert result.value is True
        assert result.evaluated_fields == ["link_country"]
        assert result.degraded == []

    def test_children_coerced_to_tuple(self):
        group = ConditionGroup("or", [EQ("name", "a")])
        assert isinstance(group.children, tuple)

    def test_rejects_non_condition_child(self):
        with pytest.raises(TypeError):
            ConditionGroup("and", ["name == a"])

    def test_deterministic(self, evaluator, by_id):
        condition = AND(REGEX("name", "n"), IN("link_country", ["HK", "US"]))
        results = [evaluator.evaluate(condition, n) for n in by_id.values()]
        assert results == [evaluator.evaluate(condition, n) for n in by_id.values()]


class TestRequiredFields:

    def test_get_required_fields(self, evaluator):
        condition = AND(EQ("link_country", "HK"), OR(LT("delay_time", 1), IS_EMPTY("tags")))
        assert evaluator.get_required_fields(condition) == {"link_country", "delay_time", "tags"}

    def test_get_required_fields_none(self, evaluator):
        assert evaluator.get_required_fields(None) == set()
