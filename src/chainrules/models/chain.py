"""
Resolved Chains

Output of ChainResolver: the concrete, ordered proxy identifiers a node
should be chained through, plus any custom proxy groups the renderer must
emit for them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .enums import HopKind, SelectorType
from .rule import UrlTestConfig


@dataclass(frozen=True)
class CustomProxyGroup:
    """A proxy group generated from a custom_group hop."""
    name: str
    type: str
    proxies: tuple[str, ...]
    url_test: Optional[UrlTestConfig] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "proxies": list(self.proxies),
        }
        if self.url_test is not None:
            result.update(self.url_test.to_dict())
        return result


@dataclass(frozen=True)
class ResolvedHop:
    """
    One concrete hop.

    Attributes:
        kind: node or group
        proxy_name: Identifier the renderer writes (node name or group name)
        reference: The id/name the hop was resolved from
        position: Zero-based position in the chain
        selector_type: Selector of the declaring hop (before template expansion)
    """
    kind: HopKind
    proxy_name: str
    reference: str
    position: int
    selector_type: SelectorType


@dataclass(frozen=True)
class ResolvedChain:
    """
    Ordered concrete hops; empty means "no induced front proxy".

    Dial order is hop 0 (entry) -> ... -> hop N-1 -> ruled node. How the
    renderer wires multi-hop chains is up to the renderer; `links()` offers
    the straight pairing.
    """
    hops: tuple[ResolvedHop, ...] = ()
    custom_groups: tuple[CustomProxyGroup, ...] = field(default=())

    @property
    def proxy_names(self) -> list[str]:
        return [hop.proxy_name for hop in self.hops]

    @property
    def references(self) -> list[str]:
        return [hop.reference for hop in self.hops]

    @property
    def is_empty(self) -> bool:
        return not self.hops

    @property
    def entry_proxy(self) -> Optional[str]:
        return self.hops[0].proxy_name if self.hops else None

    @property
    def dialer_proxy(self) -> Optional[str]:
        """Proxy the ruled node dials directly (the last hop)."""
        return self.hops[-1].proxy_name if self.hops else None

    def links(self, node_name: str) -> list[tuple[str, str]]:
        """
        (proxy, dialer-proxy) pairs for a straight chain ending at node_name.

        Example: hops [A, B] for node N -> [(N, B), (B, A)].
        """
        names = self.proxy_names
        pairs: list[tuple[str, str]] = []
        current = node_name
        for name in reversed(names):
            pairs.append((current, name))
            current = name
        return pairs

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.proxy_names,
            "references": self.references,
            "customGroups": [g.to_dict() for g in self.custom_groups],
        }

