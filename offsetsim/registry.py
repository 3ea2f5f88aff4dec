from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence
import logging

from .core import AccessDenied, require, to_address

logger = logging.getLogger(__name__)


def check_owner(owner: str, sender: str) -> None:
    """Single-role capability check shared by every owner-gated operation."""
    require(to_address(sender) == to_address(owner), "Ownable: caller is not the owner", AccessDenied)


@dataclass
class PathRegistry:
    """
    Eligible swap paths: source token -> hops ending at the router's stable
    intermediate. Kept by source address for lookups and by symbol for admin.
    """
    by_address: Dict[str, List[str]] = field(default_factory=dict)
    by_symbol: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_table(cls, table: Mapping[str, Sequence[str]]) -> "PathRegistry":
        registry = cls()
        for symbol, path in table.items():
            registry.add(symbol, path)
        return registry

    def add(self, symbol: str, path: Sequence[str]) -> None:
        require(len(path) > 0, "Invalid path")
        hops = [to_address(a) for a in path]
        previous = self.by_symbol.get(symbol)
        if previous and previous[0] != hops[0]:
            self.by_address.pop(previous[0], None)
        self.by_symbol[symbol] = hops
        self.by_address[hops[0]] = hops
        logger.debug("path added symbol=%s hops=%s", symbol, hops)

    def remove(self, symbol: str) -> None:
        hops = self.by_symbol.pop(symbol, None)
        if hops is None:
            return
        self.by_address.pop(hops[0], None)
        logger.debug("path removed symbol=%s", symbol)

    def lookup(self, address: str) -> List[str]:
        return list(self.by_address.get(to_address(address), []))


@dataclass
class PoolRegistry:
    pools: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_table(cls, table: Mapping[str, str]) -> "PoolRegistry":
        return cls(pools={symbol: to_address(addr) for symbol, addr in table.items()})

    def is_eligible(self, address: str) -> bool:
        return to_address(address) in self.pools.values()
