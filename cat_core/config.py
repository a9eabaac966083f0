from __future__ import annotations
import os, json, pathlib
from typing import Any, Dict, Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


# ability scale
THETA_MIN: float = -4.0
THETA_MAX: float = 4.0

# GRM numerics
LOGISTIC_CLIP: float = 35.0
PROB_FLOOR: float = 1e-12
INFO_FLOOR: float = 1e-6
SE_VAR_FLOOR: float = 1e-12
FD_STEP: float = 1e-4

# MAP Newton-Raphson
NEWTON_MAX_ITER: int = 50
NEWTON_TOL: float = 1e-4
NEWTON_DAMPING: float = 0.01
NEWTON_STEP_CAP: float = 1.0
HESS_EPS: float = 1e-8

# selection
TIE_TOL: float = 1e-12
DOMAIN_PENALTY_LAMBDA: float = 0.5
MIN_WEIGHT_DIVISOR: float = 0.25
ZERO_COUNT_BOOST: float = 3.0
ONE_COUNT_BOOST: float = 1.5
FAMILY_TWO_COUNT_BOOST: float = 0.5

# stopping defaults (bank cat_config wins)
DEFAULT_MIN_ITEMS: int = 0
DEFAULT_MAX_ITEMS: int = 18
DEFAULT_GLOBAL_SE: float = 0.35
DEFAULT_MIN_PER_DOMAIN: int = 1

PROMIS_DOMAINS: tuple[str, ...] = (
    "Physical_Function",
    "Participation",
    "Fatigue",
    "Anxiety",
    "Depression",
)
SRS_DOMAINS: tuple[str, ...] = (
    "SRS_Pain",
    "SRS_Function",
    "SRS_Self_Image",
    "SRS_Mental_Health",
    "SRS_Satisfaction",
)
SRS_PREFIX: str = "SRS_"

# Participation pools are larger, so it carries a higher floor.
MIN_ITEMS_BY_DOMAIN: dict[str, int] = {
    "Participation": 2,
    "Physical_Function": 1,
    "Fatigue": 1,
    "Anxiety": 1,
    "Depression": 1,
    "SRS_Pain": 1,
    "SRS_Function": 1,
    "SRS_Self_Image": 1,
    "SRS_Mental_Health": 1,
    "SRS_Satisfaction": 1,
}

DEBUG_TRACE: bool = False
DEBUG_SEED: int | None = None
TRACE_FIELDS: tuple[str, ...] = (
    "item_id",
    "domain",
    "response",
    "category",
    "theta_before",
    "theta_after",
    "se_after",
    "info",
)
# // env overrides for staging/ops; defaults remain conservative.
DEFAULT_MAX_ITEMS = _env_int("CAT_MAX_ITEMS", DEFAULT_MAX_ITEMS) or DEFAULT_MAX_ITEMS
DEFAULT_GLOBAL_SE = _env_float("CAT_GLOBAL_SE", DEFAULT_GLOBAL_SE)
DEBUG_TRACE = _env_bool("CAT_DEBUG_TRACE", False)
DEBUG_SEED = _env_int("CAT_SEED", None)


def load_config(path: str | os.PathLike[str] = "config.json") -> Dict[str, Any]:
    """Read the optional deployment config; a missing file yields ``{}``.

    A malformed file is a deployment error and is not silently ignored.
    """
    cfg: Dict[str, Any] = {}
    p = pathlib.Path(path)
    if p.exists():
        cfg = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(cfg, dict):
        raise ValueError(f"{p} must hold a JSON object")
    e = os.environ
    if e.get("CAT_SEED"):
        cfg["SEED"] = int(e["CAT_SEED"])
    return cfg


def merge_policy(bank_cfg: Optional[Dict[str, Any]], overlay: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow-merge a deployed stop/selection policy over a bank's cat_config."""
    merged: Dict[str, Any] = dict(bank_cfg or {})
    if overlay:
        merged.update(overlay)
    return merged
