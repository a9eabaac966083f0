from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Dict, FrozenSet, Iterable, Optional, Tuple, Union


@dataclass(frozen=True)
class Item:
    id: str; domain: str
    discrimination: float
    thresholds: Tuple[Optional[float], ...]
    n_categories: int
    reversed: bool = False
    stem: str = ""
    response_options: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ResponseRecord:
    item_id: str; response: int; domain: str; ts: str


@dataclass
class ConstraintGraph:
    """Undirected must-not-coadminister relation over item ids."""

    adj: Dict[str, set] = field(default_factory=dict)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]]) -> "ConstraintGraph":
        graph = cls()
        for a, b in pairs:
            graph.adj.setdefault(a, set()).add(b)
            graph.adj.setdefault(b, set()).add(a)
        return graph

    def pairs(self) -> FrozenSet[FrozenSet[str]]:
        return frozenset(frozenset((a, b)) for a, partners in self.adj.items() for b in partners)

    def allowed(self, item_id: str, administered: Iterable[str]) -> bool:
        partners = self.adj.get(item_id)
        if not partners:
            return True
        return not any(prev in partners for prev in administered)

    def __len__(self) -> int:
        return len(self.pairs())


@dataclass(frozen=True)
class DomainResult:
    domain: str
    theta: float
    se: float
    t_score: float
    percentile: Optional[int]
    severity: str
    n_items: int = 0


@dataclass(frozen=True)
class AdministeredItem:
    item_id: str; domain: str; stem: str
    response: Union[str, int]


@dataclass(frozen=True)
class Results:
    total_items: int
    stop_reason: str
    global_SE: Optional[float]
    domain_results: Tuple[DomainResult, ...] = ()
    items_administered: Tuple[AdministeredItem, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        """JSON-friendly representation handed to storage/display collaborators."""

        out = asdict(self)
        out["domain_results"] = [dict(r) for r in out["domain_results"]]
        out["items_administered"] = [dict(r) for r in out["items_administered"]]
        return out


