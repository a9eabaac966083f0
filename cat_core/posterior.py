"""Posterior covariance tracking over the scored domains.

After each response the covariance receives the closed-form Laplace update for
one between-item GRM observation in domain ``d``: with ``I`` the item's
information at ``theta[d]`` and ``u = sqrt(I)·e_d``, Sherman–Morrison gives

    Σ' = Σ − (I / (1 + I·Σ_dd)) · Σ[:, d] Σ[:, d]ᵀ

which shrinks every domain correlated with ``d``.  The diagonal can only go
down: ``Σ'_ii = Σ_ii − I·Σ_id² / (1 + I·Σ_dd)``.
"""
from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Optional, Sequence

import numpy as np

from .config import SE_VAR_FLOOR
from .errors import NumericalInstability
from .grm import item_info
from .types import Item

log = logging.getLogger(__name__)

__all__ = ["absorb", "standard_errors", "global_se", "invert"]


def absorb(sigma: np.ndarray, theta: np.ndarray, item: Item, d: int) -> float:
    """Apply the rank-one downdate for ``item`` (domain index ``d``) in place.

    Returns the information used so callers can log it.
    """

    info = item_info(float(theta[d]), item)
    col = sigma[:, d].copy()
    factor = info / (1.0 + info * sigma[d, d])
    sigma -= factor * np.outer(col, col)
    return info


def standard_errors(sigma: np.ndarray, domains: Sequence[str]) -> Dict[str, float]:
    """Per-domain SE, ``sqrt`` of the (floored) diagonal."""

    diag = np.diag(sigma)
    return {d: math.sqrt(max(SE_VAR_FLOOR, float(diag[i]))) for i, d in enumerate(domains)}


def global_se(ses: Iterable[Optional[float]]) -> Optional[float]:
    """Root-mean-square of the given standard errors, ``None`` when empty."""

    vals = [float(v) for v in ses if v is not None]
    if not vals:
        return None
    return math.sqrt(sum(v * v for v in vals) / len(vals))


def invert(matrix: np.ndarray) -> np.ndarray:
    """Full matrix inverse; raises :class:`NumericalInstability` when singular.

    Kept off the estimation hot path (bank validation, diagnostics).
    """

    m = np.asarray(matrix, dtype=float)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise NumericalInstability(f"cannot invert a matrix of shape {m.shape}")
    if not np.all(np.isfinite(m)):
        raise NumericalInstability("matrix has non-finite entries")
    try:
        inv = np.linalg.inv(m)
    except np.linalg.LinAlgError as exc:
        raise NumericalInstability("matrix is singular") from exc
    if not np.all(np.isfinite(inv)):
        raise NumericalInstability("inverse has non-finite entries")
    cond = np.linalg.cond(m)
    if not math.isfinite(cond) or cond > 1e12:
        log.warning("ill-conditioned matrix (cond=%.3g)", cond)
        raise NumericalInstability(f"matrix is numerically singular (cond={cond:.3g})")
    return inv
