"""
Chain Rules Pack Loader

Loads and validates rule packs from YAML or JSON files, and reads the
auxiliary inputs the engine needs: node lists and the proxy-groups of a
Clash template.

Converts Pydantic schema models to chainrules domain models.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from ..engine.validator import RuleValidator
from ..exceptions import (
    PackLoadError,
    PackValidationError,
    PackVersionMismatch,
    ProviderContractError,
)
from ..models import (
    ChainHop,
    ChainRule,
    Node,
    NodeSnapshot,
    Vocabulary,
    default_vocabulary,
)
from .codec import encode_rule
from .schema import (
    SCHEMA_VERSION,
    RulePackSchema,
    check_schema_version,
    validate_rule_pack,
)


# =============================================================================
# Clash Templates
# =============================================================================

@dataclass(frozen=True)
class ClashProxyGroup:
    """A proxy-groups entry of a Clash template."""
    name: str
    type: str = "select"
    proxies: tuple[str, ...] = ()
    use: tuple[str, ...] = ()
    include_all: bool = False
    filter: Optional[str] = None

    def members(self, node_names: Sequence[str] = ()) -> tuple[str, ...]:
        """
        Static members plus, for include-all groups, the node names that pass
        the group's filter.
        """
        members = list(self.proxies) + [u for u in self.use if u not in self.proxies]
        if self.include_all:
            pattern = re.compile(self.filter) if self.filter else None
            for name in node_names:
                if name in members:
                    continue
                if pattern is None or pattern.search(name):
                    members.append(name)
        return tuple(members)


def parse_clash_proxy_groups(text: str) -> list[ClashProxyGroup]:
    """
    Read proxy-groups from Clash template text.

    Raises:
        PackLoadError: text is not YAML or not a mapping
        PackValidationError: a group has no name or an invalid filter
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PackLoadError(
            message=f"Failed to parse Clash template: {e}",
            details={"error": str(e)},
        )
    if data is None:
        return []
    if not isinstance(data, dict):
        raise PackLoadError(message="Clash template must be a YAML mapping")

    groups: list[ClashProxyGroup] = []
    for index, entry in enumerate(data.get("proxy-groups") or []):
        if not isinstance(entry, dict) or not entry.get("name"):
            raise PackValidationError(
                message=f"proxy-groups[{index}] has no name",
                details={"index": index},
            )
        group_filter = entry.get("filter") or None
        if group_filter is not None:
            try:
                re.compile(group_filter)
            except re.error as e:
                raise PackValidationError(
                    message=f"proxy-group '{entry['name']}' has an invalid filter: {e}",
                    details={"group": entry["name"], "filter": group_filter},
                )
        groups.append(ClashProxyGroup(
            name=str(entry["name"]),
            type=str(entry.get("type") or "select"),
            proxies=tuple(str(p) for p in entry.get("proxies") or []),
            use=tuple(str(u) for u in entry.get("use") or []),
            include_all=bool(entry.get("include-all") or entry.get("include-all-proxies")),
            filter=group_filter,
        ))
    return groups


def template_groups_from_clash(text: str) -> dict[str, ChainHop]:
    """Template group name -> group hop, for every proxy-group of a Clash template."""
    return {g.name: ChainHop.group(g.name) for g in parse_clash_proxy_groups(text)}


# =============================================================================
# Node Lists
# =============================================================================

def _read_structured(path: Path) -> Any:
    """Load data from YAML or JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(f)
        elif path.suffix.lower() == ".json":
            return json.load(f)
        else:
            # Try YAML first, then JSON
            content = f.read()
            try:
                return yaml.safe_load(content)
            except yaml.YAMLError:
                return json.loads(content)


def nodes_from_data(data: Any) -> list[Node]:
    """Build nodes from a list of mappings or {"nodes": [...]}."""
    if isinstance(data, dict):
        data = data.get("nodes")
    if not isinstance(data, list):
        raise PackValidationError(message="Node list must be a list or a mapping with 'nodes'")
    nodes: list[Node] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise PackValidationError(
                message=f"nodes[{index}] must be a mapping",
                details={"index": index},
            )
        try:
            nodes.append(Node.from_mapping(entry))
        except (ProviderContractError, TypeError) as e:
            raise PackValidationError(
                message=f"nodes[{index}] is invalid: {e}",
                details={"index": index},
            )
    return nodes


def load_nodes(path: Union[str, Path]) -> list[Node]:
    """
    Load a node list from a YAML or JSON file.

    Raises:
        PackLoadError: file cannot be read
        PackValidationError: entries are not valid nodes
    """
    path = Path(path)
    try:
        data = _read_structured(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise PackLoadError(
            message=f"Failed to load nodes: {e}",
            details={"path": str(path), "error": str(e)},
        )
    return nodes_from_data(data)


# =============================================================================
# Rule Packs
# =============================================================================

@dataclass
class RulePack:
    """
    A loaded rule pack: the ordered rules of one subscription plus the
    vocabulary, template groups and policy groups they are evaluated with.
    """
    subscription_id: str
    rules: list[ChainRule] = field(default_factory=list)
    vocabulary: Vocabulary = field(default_factory=default_vocabulary)
    groups: dict[str, tuple[str, ...]] = field(default_factory=dict)
    clash_groups: list[ClashProxyGroup] = field(default_factory=list)
    name: Optional[str] = None
    description: Optional[str] = None
    source: Optional[str] = None

    @property
    def templates(self) -> dict[str, ChainHop]:
        return self.vocabulary.template_groups

    def enabled_rules(self) -> list[ChainRule]:
        return [rule for rule in self.rules if rule.enabled]

    def snapshot(self, nodes: Iterable[Node]) -> NodeSnapshot:
        """
        Point-in-time provider for these nodes.

        Clash proxy-groups are added as groups (resolved against the node
        names); explicit pack groups take precedence.
        """
        node_list = list(nodes)
        names = [n.proxy_name for n in node_list]
        groups: dict[str, tuple[str, ...]] = {
            g.name: g.members(names) for g in self.clash_groups
        }
        groups.update(self.groups)
        return NodeSnapshot.build(node_list, groups=groups, templates=self.templates)

    def to_records(self) -> list[dict[str, Any]]:
        """Canonical persisted records, e.g. for RuleStore.import_records()."""
        return [encode_rule(rule) for rule in self.rules]


class RulePackLoader:
    """
    Loads rule packs from YAML or JSON files.

    Usage:
        loader = RulePackLoader()
        pack = loader.load("packs/subscription-1.yaml")
        engine = ChainRuleEngine(pack.snapshot(nodes), pack.vocabulary)
    """

    def __init__(self, strict_version: bool = True):
        """
        Initialize the loader.

        Args:
            strict_version: If True, reject packs with incompatible schema versions
        """
        self.strict_version = strict_version
        self._packs: dict[str, RulePack] = {}

    def load(self, path: Union[str, Path]) -> RulePack:
        """
        Load a rule pack from a file.

        Raises:
            PackLoadError: If file cannot be read
            PackValidationError: If validation fails
            PackVersionMismatch: If schema version incompatible
        """
        path = Path(path)
        try:
            data = _read_structured(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise PackLoadError(
                message=f"Failed to load rule pack: {e}",
                details={"path": str(path), "error": str(e)},
            )
        return self._build(data, source=str(path), base_dir=path.parent)

    def load_string(
        self,
        content: str,
        format: str = "yaml",
        base_dir: Optional[Union[str, Path]] = None,
    ) -> RulePack:
        """Load a rule pack from YAML or JSON text."""
        try:
            data = json.loads(content) if format.lower() == "json" else yaml.safe_load(content)
        except (ValueError, yaml.YAMLError) as e:
            raise PackLoadError(
                message=f"Failed to parse rule pack: {e}",
                details={"format": format, "error": str(e)},
            )
        return self._build(data, source=None, base_dir=Path(base_dir) if base_dir else Path.cwd())

    def get_pack(self, subscription_id: str) -> Optional[RulePack]:
        """Get a cached pack by subscription id."""
        return self._packs.get(subscription_id)

    def _build(self, data: Any, source: Optional[str], base_dir: Path) -> RulePack:
        if not isinstance(data, dict):
            raise PackLoadError(
                message="Rule pack must be a mapping",
                details={"path": source},
            )

        if self.strict_version and not check_schema_version(data):
            pack_version = data.get("schema_version", "unknown")
            raise PackVersionMismatch(
                message=f"Schema version mismatch: pack has {pack_version}, expected {SCHEMA_VERSION}",
                details={
                    "pack_version": pack_version,
                    "expected_version": SCHEMA_VERSION,
                },
            )

        try:
            schema = validate_rule_pack(data)
        except ValidationError as e:
            raise PackValidationError(
                message=f"Rule pack validation failed: {e.error_count()} errors",
                details={"errors": e.errors(include_url=False), "path": source},
            )

        subscription_id = str(schema.subscription_id)
        clash_groups = self._clash_groups(schema, base_dir)

        templates: dict[str, ChainHop] = {g.name: ChainHop.group(g.name) for g in clash_groups}
        templates.update({name: hop.to_hop() for name, hop in schema.templates.items()})

        if schema.vocabulary is not None:
            vocabulary = schema.vocabulary.to_vocabulary(templates)
        else:
            vocabulary = default_vocabulary(templates)

        rules = [
            ChainRule(
                id=str(r.id) if r.id is not None else f"{subscription_id}-{index + 1}",
                subscription_id=subscription_id,
                name=r.name,
                enabled=r.enabled,
                sort_order=index,
                chain_config=tuple(h.to_hop() for h in r.chain),
                target_config=r.target.to_target(),
            )
            for index, r in enumerate(schema.rules)
        ]

        self._check_rules(rules, templates, vocabulary, source)

        pack = RulePack(
            subscription_id=subscription_id,
            rules=rules,
            vocabulary=vocabulary,
            groups={name: tuple(members) for name, members in schema.groups.items()},
            clash_groups=clash_groups,
            name=schema.name,
            description=schema.description,
            source=source,
        )
        self._packs[subscription_id] = pack
        return pack

    def _clash_groups(self, schema: RulePackSchema, base_dir: Path) -> list[ClashProxyGroup]:
        if not schema.clash_template:
            return []
        template_path = base_dir / schema.clash_template
        try:
            text = template_path.read_text(encoding="utf-8")
        except OSError as e:
            raise PackLoadError(
                message=f"Failed to read Clash template: {e}",
                details={"path": str(template_path), "error": str(e)},
            )
        return parse_clash_proxy_groups(text)

    def _check_rules(
        self,
        rules: list[ChainRule],
        templates: dict[str, ChainHop],
        vocabulary: Vocabulary,
        source: Optional[str],
    ) -> None:
        """Run write-time validation over every rule and template."""
        validator = RuleValidator(vocabulary)
        errors: dict[str, list[str]] = {}
        for name, hop in templates.items():
            problems = validator.validate_chain((hop,))
            if problems:
                errors[f"template:{name}"] = problems
        for rule in rules:
            problems = validator.validate(rule)
            if problems:
                errors[rule.id] = problems
        if errors:
            raise PackValidationError(
                message=f"Rule pack has invalid rules: {', '.join(errors)}",
                details={"errors": errors, "path": source},
            )


# =============================================================================
# Convenience Functions
# =============================================================================

def load_rule_pack(path: Union[str, Path]) -> RulePack:
    """
    Load a rule pack from a file.

    Convenience function that creates a temporary loader.
    """
    return RulePackLoader().load(path)


def load_rule_pack_from_string(
    content: str,
    format: str = "yaml",
    base_dir: Optional[Union[str, Path]] = None,
) -> RulePack:
    """Load a rule pack from a YAML or JSON string."""
    return RulePackLoader().load_string(content, format=format, base_dir=base_dir)
