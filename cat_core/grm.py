"""Graded response model (GRM) utilities used by the adaptive engine.

An item with discrimination ``a`` and ordered thresholds ``b_0..b_{K-2}``
defines ``K`` response categories.  The cumulative curves are
``G_0 = 1``, ``G_k = σ(a·(θ − b_{k−1}))`` and ``G_K = 0``; category ``k`` has
probability ``P_k = G_k − G_{k+1}``.  Everything here is a pure function of
``(theta, item)`` so the posterior tracker, the MAP estimator and the selection
policy can share it.
"""
from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from .config import FD_STEP, INFO_FLOOR, LOGISTIC_CLIP, PROB_FLOOR
from .types import Item

__all__ = [
    "logistic",
    "usable_thresholds",
    "category_probs",
    "category_derivs",
    "item_info",
    "log_likelihood",
    "log_likelihood_grad",
    "grad_hess",
]


def logistic(x: float) -> float:
    """Return ``σ(x)``, saturating to exactly 0 or 1 beyond ``±LOGISTIC_CLIP``."""

    if x > LOGISTIC_CLIP:
        return 1.0
    if x < -LOGISTIC_CLIP:
        return 0.0
    return 1.0 / (1.0 + math.exp(-x))


def usable_thresholds(item: Item) -> List[float]:
    """Drop non-finite placeholders (``None``/NaN/inf) from the threshold list."""

    out: List[float] = []
    for b in item.thresholds:
        if b is None:
            continue
        b = float(b)
        if math.isfinite(b):
            out.append(b)
    return out


def _cumulative(theta: float, a: float, b: Sequence[float]) -> Tuple[List[float], List[float]]:
    g = [1.0]
    dg = [0.0]
    for bk in b:
        gk = logistic(a * (theta - bk))
        g.append(gk)
        dg.append(a * gk * (1.0 - gk))
    g.append(0.0)
    dg.append(0.0)
    return g, dg


def category_probs(theta: float, a: float, b: Sequence[float]) -> List[float]:
    """Category probabilities ``P_0..P_{K-1}`` for ``K = len(b) + 1``."""

    g, _ = _cumulative(theta, a, b)
    return [g[k] - g[k + 1] for k in range(len(b) + 1)]


def category_derivs(theta: float, a: float, b: Sequence[float]) -> Tuple[List[float], List[float]]:
    """Return ``(probs, dprobs)``.

    ``probs`` is floored at ``PROB_FLOOR`` and renormalised; ``dprobs`` is the
    exact derivative of the un-floored curve, which is all the information
    formula needs.
    """

    g, dg = _cumulative(theta, a, b)
    n = len(b) + 1
    raw = [g[k] - g[k + 1] for k in range(n)]
    dprobs = [dg[k] - dg[k + 1] for k in range(n)]
    total = sum(raw)
    if total <= 0:
        total = 1.0
    probs = [max(PROB_FLOOR, p) / total for p in raw]
    return probs, dprobs


def item_info(theta: float, item: Item) -> float:
    """Fisher information ``Σ_k P_k·(d ln P_k/dθ)²`` of one item at ``theta``."""

    b = usable_thresholds(item)
    probs, dprobs = category_derivs(theta, item.discrimination, b)
    info = 0.0
    for pk, dpk in zip(probs, dprobs):
        pk = max(PROB_FLOOR, pk)
        dlog = dpk / pk
        info += pk * dlog * dlog
    return max(INFO_FLOOR, info)


def _clamp_category(category: int, n_categories: int) -> int:
    return max(0, min(n_categories - 1, int(category)))


def log_likelihood(theta: float, item: Item, category: int) -> float:
    """``ln P_k(θ)`` for an observed (already direction-corrected) category."""

    b = usable_thresholds(item)
    k = _clamp_category(category, len(b) + 1)
    p = category_probs(theta, item.discrimination, b)[k]
    return math.log(max(PROB_FLOOR, p))


def log_likelihood_grad(theta: float, item: Item, category: int) -> float:
    """Analytic ``d ln P_k/dθ = (dG_k − dG_{k+1}) / P_k``."""

    b = usable_thresholds(item)
    k = _clamp_category(category, len(b) + 1)
    g, dg = _cumulative(theta, item.discrimination, b)
    p = max(PROB_FLOOR, g[k] - g[k + 1])
    return (dg[k] - dg[k + 1]) / p


def grad_hess(theta: float, item: Item, category: int, h: float = FD_STEP) -> Tuple[float, float]:
    """Gradient and second derivative of the log-likelihood at ``theta``.

    The second derivative uses a central difference with step ``h``; near
    saturation it is more robust than the closed form.
    """

    grad = log_likelihood_grad(theta, item, category)
    lp0 = log_likelihood(theta, item, category)
    lp_plus = log_likelihood(theta + h, item, category)
    lp_minus = log_likelihood(theta - h, item, category)
    hess = (lp_plus - 2.0 * lp0 + lp_minus) / (h * h)
    return grad, hess
