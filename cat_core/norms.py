# cat_core/norms.py
"""Percentile and severity lookup used when a session finishes."""
from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from .errors import ConfigurationError


class NormLookup(Protocol):
    def percentile(self, domain: str, theta: float) -> Optional[int]: ...

    def severity(self, domain: str, theta: float) -> str: ...


def normal_cdf(z: float) -> float:
    """Abramowitz–Stegun 26.2.17 approximation of Φ(z) (|error| < 7.5e-8)."""

    t = 1.0 / (1.0 + 0.2316419 * abs(z))
    d = 0.3989423 * math.exp(-z * z / 2.0)
    p = d * t * (0.3193815 + t * (-0.3565638 + t * (1.781478 + t * (-1.821256 + t * 1.330274))))
    return 1.0 - p if z > 0 else p


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _percentile_table(raw: Mapping[str, Any]) -> List[Tuple[float, float]]:
    """``{"p5": -1.6, ...}`` -> ``[(theta, pct), ...]`` sorted by theta."""

    rows: List[Tuple[float, float]] = []
    for key, val in raw.items():
        try:
            pct = float(str(key).lstrip("pP"))
        except ValueError:
            continue
        if not isinstance(val, (int, float)) or isinstance(val, bool):
            continue
        if math.isfinite(pct) and math.isfinite(val):
            rows.append((float(val), pct))
    rows.sort()
    return rows


def _interpolate(theta: float, rows: List[Tuple[float, float]]) -> int:
    if theta <= rows[0][0]:
        return _round_half_up(rows[0][1])
    if theta >= rows[-1][0]:
        return _round_half_up(rows[-1][1])
    for (v0, p0), (v1, p1) in zip(rows, rows[1:]):
        if v0 <= theta <= v1:
            if v1 == v0:
                return _round_half_up(p0)
            t = (theta - v0) / (v1 - v0)
            return _round_half_up(p0 + t * (p1 - p0))
    return _round_half_up(rows[-1][1])


class Norms:
    """Per-domain empirical norms with standard-normal fallbacks."""

    def __init__(self, tables: Optional[Dict[str, List[Tuple[float, float]]]] = None,
                 banded: Optional[Dict[str, bool]] = None):
        self._tables = tables or {}
        self._banded = banded or {}

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "Norms":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ConfigurationError("norms must be a mapping of domain -> norm block")
        domains = raw.get("domains", raw)
        if not isinstance(domains, Mapping):
            raise ConfigurationError("norms 'domains' must be a mapping")
        tables: Dict[str, List[Tuple[float, float]]] = {}
        banded: Dict[str, bool] = {}
        for domain, block in domains.items():
            if not isinstance(block, Mapping):
                raise ConfigurationError(f"norm block for {domain!r} must be a mapping")
            pcts = (block.get("theta_scale") or {}).get("percentiles")
            if pcts is not None:
                if not isinstance(pcts, Mapping):
                    raise ConfigurationError(f"percentiles for {domain!r} must be a mapping")
                rows = _percentile_table(pcts)
                if rows:
                    tables[domain] = rows
            banded[domain] = bool(block.get("severity_bands"))
        return cls(tables, banded)

    def percentile(self, domain: str, theta: float) -> Optional[int]:
        rows = self._tables.get(domain)
        if rows:
            return _interpolate(theta, rows)
        return _round_half_up(100.0 * normal_cdf(theta))

    def severity(self, domain: str, theta: float) -> str:
        if self._banded.get(domain):
            pct = self.percentile(domain, theta)
            if pct is None:
                return ""
            if pct <= 20: return "Very low"
            if pct <= 40: return "Low"
            if pct <= 60: return "Moderate"
            if pct <= 80: return "High"
            return "Very high"
        if theta <= -1.0: return "Low"
        if theta < 1.0: return "Typical"
        if theta < 2.0: return "High"
        return "Very high"


def load_norms(path: Union[str, Path]) -> Norms:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read norms from {path}: {exc}") from exc
    return Norms.from_mapping(raw)
