"""MAP re-estimation of the ability vector.

The objective is a diagonal-precision Gaussian prior plus the GRM
log-likelihood of every administered item.  Between-item structure means each
item loads on one domain, so with the prior's cross-domain correlations
dropped the Newton system decouples into one scalar problem per domain.
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Sequence

import numpy as np

from .config import (
    HESS_EPS,
    NEWTON_DAMPING,
    NEWTON_MAX_ITER,
    NEWTON_STEP_CAP,
    NEWTON_TOL,
    THETA_MAX,
    THETA_MIN,
)
from .grm import grad_hess, usable_thresholds
from .types import Item, ResponseRecord

log = logging.getLogger(__name__)

__all__ = ["observed_category", "prior_precisions", "map_update"]


def _clamp_theta(value: float) -> float:
    return max(THETA_MIN, min(THETA_MAX, value))


def observed_category(item: Item, response: object) -> int:
    """Map a raw display-order response index onto the calibration category.

    The index is clamped to ``[0, K-1]`` before anything else; reversed items
    are reflected as ``K-1-resp``.
    """

    k = len(usable_thresholds(item)) + 1
    try:
        resp = int(math.floor(float(response)))
    except (TypeError, ValueError):
        resp = 0
    resp = max(0, min(k - 1, resp))
    if item.reversed:
        resp = max(0, min(k - 1, (k - 1) - resp))
    return resp


def prior_precisions(prior_cov: np.ndarray) -> np.ndarray:
    """``1 / Σ0_dd``, falling back to unit variance for unusable entries."""

    diag = np.diag(np.asarray(prior_cov, dtype=float))
    var = np.where(np.isfinite(diag) & (diag > 0), diag, 1.0)
    return 1.0 / var


def map_update(
    theta: np.ndarray,
    administered: Sequence[ResponseRecord],
    items: Mapping[str, Item],
    domain_index: Mapping[str, int],
    prior_cov: np.ndarray,
) -> np.ndarray:
    """Return the new MAP ability vector, starting Newton from ``theta``."""

    n_dom = len(domain_index)
    prec = prior_precisions(prior_cov)
    th = np.array([v if math.isfinite(v) else 0.0 for v in np.asarray(theta, dtype=float)])

    by_domain: Dict[int, List[tuple[Item, int]]] = {d: [] for d in range(n_dom)}
    for rec in administered:
        it = items.get(rec.item_id)
        if it is None:
            continue
        d = domain_index.get(it.domain)
        if d is None:
            continue
        by_domain[d].append((it, observed_category(it, rec.response)))

    for iteration in range(NEWTON_MAX_ITER):
        max_change = 0.0
        new_th = th.copy()
        for d in range(n_dom):
            grad = -prec[d] * th[d]
            hess = -prec[d]
            for it, cat in by_domain[d]:
                g, h = grad_hess(float(th[d]), it, cat)
                grad += g
                hess += h
            denom = hess - NEWTON_DAMPING
            if not math.isfinite(denom) or abs(denom) < HESS_EPS:
                log.debug("skipping domain %d at iteration %d (denom=%r)", d, iteration, denom)
                continue
            step = -grad / denom
            if not math.isfinite(step):
                continue
            step = max(-NEWTON_STEP_CAP, min(NEWTON_STEP_CAP, step))
            new_th[d] = _clamp_theta(th[d] + step)
            max_change = max(max_change, abs(step))
        th = new_th
        if max_change < NEWTON_TOL:
            break

    return np.array([_clamp_theta(v) if math.isfinite(v) else 0.0 for v in th])
