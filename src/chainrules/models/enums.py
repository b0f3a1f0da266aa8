"""
Chain Rules Enumerations

All enumeration types used throughout the rule engine.

All enums inherit from (str, Enum) for JSON serialization compatibility.
Wire values match the persisted rule records.
"""
from __future__ import annotations

from enum import Enum


# =============================================================================
# Condition Vocabulary
# =============================================================================

class Combinator(str, Enum):
    """Boolean combinator for internal condition nodes."""
    AND = "and"
    OR = "or"


class ConditionOperator(str, Enum):
    """Operators for leaf predicates."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"                # Case-insensitive substring / set member
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"                      # re.search
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    BETWEEN = "between"                  # Inclusive [low, high]
    IN = "in"                            # Value is one of a list
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class FieldType(str, Enum):
    """Declared type of a condition field; drives value coercion."""
    STRING = "string"
    NUMBER = "number"
    DURATION = "duration"                # Milliseconds
    SET = "set"                          # Unordered collection of strings
    ENUM = "enum"                        # String from a fixed choice list


# =============================================================================
# Rule Shape
# =============================================================================

class TargetType(str, Enum):
    """Which nodes a rule applies to."""
    ALL = "all"
    SPECIFIED_NODE = "specified_node"
    CONDITIONS = "conditions"


class SelectorType(str, Enum):
    """How a chain hop identifies its proxy."""
    NODE = "node"                        # Specific node id
    GROUP = "group"                      # Named proxy/policy group
    TEMPLATE_GROUP = "template_group"    # Named template expanding to a hop
    DYNAMIC_NODE = "dynamic_node"        # One node picked by conditions
    CUSTOM_GROUP = "custom_group"        # Generated group of matching nodes


class SelectMode(str, Enum):
    """Node pick strategy for dynamic_node hops."""
    FIRST = "first"
    FASTEST = "fastest"                  # Lowest positive delay
    RANDOM = "random"                    # Seed-stable pick


class ResolutionPolicy(str, Enum):
    """What the engine does when a matched rule's chain fails to resolve."""
    FAIL_CLOSED = "fail_closed"          # Stop, node gets no chain
    FAIL_OPEN = "fail_open"              # Skip the rule, keep evaluating


class HopKind(str, Enum):
    """Concrete kind of a resolved hop."""
    NODE = "node"
    GROUP = "group"
