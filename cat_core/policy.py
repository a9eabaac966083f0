# cat_core/policy.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math
import random

import numpy as np

from .config import (
    FAMILY_TWO_COUNT_BOOST,
    MIN_WEIGHT_DIVISOR,
    ONE_COUNT_BOOST,
    TIE_TOL,
    ZERO_COUNT_BOOST,
)
from .grm import item_info
from .posterior import global_se
from .question_bank import ItemBank
from .types import ConstraintGraph, ResponseRecord

log = logging.getLogger(__name__)

MAX_ITEMS = "max_items"
PRECISION_ALL = "precision_reached_all_domains"
PRECISION_GROUP = "precision_reached_promis"
BANK_EXHAUSTED = "bank_exhausted"


@dataclass
class PolicyState:
    theta: np.ndarray
    sigma: np.ndarray
    se: Dict[str, float]
    administered: List[ResponseRecord]
    remaining: List[str]
    domain_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def n(self) -> int:
        return len(self.administered)


@dataclass(frozen=True)
class StopDecision:
    stop: bool
    reason: Optional[str] = None


_CONTINUE = StopDecision(False, None)


def a_optimal_gain(sigma: np.ndarray, d: int, info: float) -> float:
    """Trace reduction ``I·‖Σ[:, d]‖² / (1 + I·Σ_dd)`` from one item in domain ``d``."""

    col = sigma[:, d]
    col_sq = float(np.dot(col, col))
    denom = 1.0 + info * float(sigma[d, d])
    return (info * col_sq) / denom


def domain_penalty(count: int, weight: float, lam: float, family: bool = False) -> float:
    """Quadratic exposure penalty; negative for domains seen zero or one time."""

    penalty = lam * (count * count)
    w = weight if isinstance(weight, (int, float)) and math.isfinite(weight) else 1.0
    penalty = penalty / max(MIN_WEIGHT_DIVISOR, w)
    if count == 0:
        penalty -= ZERO_COUNT_BOOST
    elif count == 1:
        penalty -= ONE_COUNT_BOOST
    elif count == 2 and family:
        penalty -= FAMILY_TWO_COUNT_BOOST
    return penalty


class QuestionPolicy:
    """A-optimal selection with domain balancing, plus the stop-rule cascade."""

    def __init__(self, bank: ItemBank, constraints: Optional[ConstraintGraph] = None,
                 rng: Optional[random.Random] = None):
        self.bank = bank
        self.cfg = bank.config
        self.constraints = constraints if constraints is not None else ConstraintGraph()
        self.rng = rng if rng is not None else random.Random()

        present = set(bank.domains)
        self._precision_group: Tuple[str, ...] = tuple(d for d in self.cfg.promis_domains if d in present)
        self._exposure_domains: Tuple[str, ...] = tuple(bank.domains)

    # ---- selection ---------------------------------------------------------
    def eligible_candidates(self, st: PolicyState) -> List[str]:
        asked = [r.item_id for r in st.administered]
        return [iid for iid in st.remaining if self.constraints.allowed(iid, asked)]

    def coverage_needed(self, st: PolicyState) -> List[str]:
        return [d for d in self.bank.domains if st.domain_counts.get(d, 0) < self.cfg.min_for(d)]

    def score(self, st: PolicyState, item_id: str) -> float:
        it = self.bank.items[item_id]
        d = self.bank.domain_index[it.domain]
        info = item_info(float(st.theta[d]), it)
        gain = a_optimal_gain(st.sigma, d, info)
        penalty = domain_penalty(
            st.domain_counts.get(it.domain, 0),
            self.cfg.domain_weights.get(it.domain, 1.0),
            self.cfg.domain_penalty_lambda,
            family=it.domain.startswith(self.cfg.srs_prefix),
        )
        return gain - penalty

    def next_item(self, st: PolicyState) -> Optional[str]:
        """Pick the next item id, or ``None`` when nothing is selectable."""

        if not st.remaining:
            return None
        candidates = self.eligible_candidates(st)
        if not candidates:
            return None

        need = self.coverage_needed(st)
        if need and st.n < self.cfg.min_items + len(need):
            gated = [iid for iid in candidates if self.bank.items[iid].domain in need]
            candidates = gated or candidates

        if not st.administered:
            return self.rng.choice(candidates)

        best_id = candidates[0]
        best_score = -math.inf
        for iid in candidates:
            s = self.score(st, iid)
            if s > best_score + TIE_TOL:
                best_score = s
                best_id = iid
            elif abs(s - best_score) <= TIE_TOL and self.rng.random() < 0.5:
                best_id = iid
        log.debug("selected %s (score=%.6f, n=%d)", best_id, best_score, st.n)
        return best_id

    # ---- stopping ----------------------------------------------------------
    def should_stop(self, st: PolicyState) -> StopDecision:
        cfg = self.cfg
        n = st.n
        at_cap = n >= cfg.max_items

        if n < cfg.min_items:
            return _CONTINUE

        if cfg.domains_min is not None:
            covered = {r.domain for r in st.administered}
            if len(covered) < cfg.domains_min:
                return StopDecision(True, MAX_ITEMS) if at_cap else _CONTINUE

        if any(st.domain_counts.get(d, 0) < cfg.min_for(d) for d in self._exposure_domains):
            return StopDecision(True, MAX_ITEMS) if at_cap else _CONTINUE

        gse_all = global_se(st.se.values())
        if gse_all is not None and gse_all <= cfg.global_SE_threshold:
            return StopDecision(True, PRECISION_ALL)
        if self._precision_group:
            gse_group = global_se(st.se.get(d) for d in self._precision_group)
            if gse_group is not None and gse_group <= cfg.group_threshold:
                return StopDecision(True, PRECISION_GROUP)

        if at_cap:
            return StopDecision(True, MAX_ITEMS)

        if cfg.stop_if_bank_exhausted and not self.eligible_candidates(st):
            return StopDecision(True, BANK_EXHAUSTED)

        return _CONTINUE

    def exposure_domains(self) -> Sequence[str]:
        return self._exposure_domains
