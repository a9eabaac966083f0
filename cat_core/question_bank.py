"""Item bank and pair-constraint loading.

Raw JSON is validated once, through pydantic, into immutable runtime objects.
Anything malformed surfaces as :class:`ConfigurationError` before a session
exists; the runtime never re-checks shapes.
"""
from __future__ import annotations

import json
import logging
import math
import importlib.resources as ir
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .config import (
    DEFAULT_GLOBAL_SE,
    DEFAULT_MAX_ITEMS,
    DEFAULT_MIN_ITEMS,
    DEFAULT_MIN_PER_DOMAIN,
    DOMAIN_PENALTY_LAMBDA,
    MIN_ITEMS_BY_DOMAIN,
    PROMIS_DOMAINS,
    SRS_DOMAINS,
    SRS_PREFIX,
    merge_policy,
)
from .errors import ConfigurationError, NumericalInstability
from .posterior import invert
from .types import ConstraintGraph, Item

log = logging.getLogger(__name__)

_SYMMETRY_TOL = 1e-9


class CatConfig(BaseModel):
    """Stop/selection policy block of a bank (``cat_config``)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    min_items: int = Field(DEFAULT_MIN_ITEMS, ge=0)
    max_items: int = Field(DEFAULT_MAX_ITEMS, ge=1)
    domains_min: Optional[int] = Field(None, ge=0)
    global_SE_threshold: float = Field(DEFAULT_GLOBAL_SE, ge=0)
    group_SE_threshold: Optional[float] = Field(None, ge=0)
    domain_penalty_lambda: float = Field(DOMAIN_PENALTY_LAMBDA, ge=0)
    domain_weights: Dict[str, float] = Field(default_factory=dict)
    min_items_by_domain: Dict[str, int] = Field(default_factory=lambda: dict(MIN_ITEMS_BY_DOMAIN))
    stop_if_bank_exhausted: bool = False
    promis_domains: Tuple[str, ...] = PROMIS_DOMAINS
    srs_domains: Tuple[str, ...] = SRS_DOMAINS
    srs_prefix: str = SRS_PREFIX
    reversed_domains: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_lengths(self) -> "CatConfig":
        if self.max_items < self.min_items:
            raise ValueError(f"max_items ({self.max_items}) < min_items ({self.min_items})")
        return self

    def min_for(self, domain: str) -> int:
        return int(self.min_items_by_domain.get(domain, DEFAULT_MIN_PER_DOMAIN))

    @property
    def group_threshold(self) -> float:
        if self.group_SE_threshold is None:
            return self.global_SE_threshold
        return self.group_SE_threshold


class ItemSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    domain: str
    discrimination: float = Field(gt=0)
    thresholds: List[Optional[float]]
    n_categories: Optional[int] = Field(None, ge=2)
    reversed: bool = False
    # older banks: "better" means display order runs against calibration
    higher_theta_means: Optional[Literal["better", "worse"]] = None
    stem: str = ""
    response_options: List[str] = Field(default_factory=list)

    @field_validator("discrimination")
    @classmethod
    def _finite_a(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("discrimination must be finite")
        return v

    @field_validator("response_options", mode="before")
    @classmethod
    def _option_labels(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        out = []
        for opt in v:
            if isinstance(opt, dict):
                opt = opt.get("label") or opt.get("text") or ""
            out.append(opt)
        return out

    @model_validator(mode="after")
    def _check_thresholds(self) -> "ItemSchema":
        finite = [b for b in self.thresholds if b is not None and math.isfinite(b)]
        if not finite:
            raise ValueError("item needs at least one finite threshold")
        if any(b1 < b0 for b0, b1 in zip(finite, finite[1:])):
            raise ValueError(f"thresholds must be ordered, got {finite}")
        if self.n_categories is not None and self.n_categories != len(finite) + 1:
            raise ValueError(
                f"n_categories={self.n_categories} but {len(finite)} finite thresholds"
            )
        return self


class BankSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    domains: List[str] = Field(min_length=1)
    items: Dict[str, ItemSchema] = Field(min_length=1)
    cat_config: CatConfig = Field(default_factory=CatConfig)
    prior_covariance: List[List[float]]

    @model_validator(mode="after")
    def _check_domains(self) -> "BankSchema":
        if len(set(self.domains)) != len(self.domains):
            raise ValueError("duplicate domain names")
        known = set(self.domains)
        unknown = sorted({it.domain for it in self.items.values()} - known)
        if unknown:
            raise ValueError(f"items reference unknown domains: {unknown}")
        return self


@dataclass(frozen=True, eq=False)
class ItemBank:
    """Validated, read-only bank shared by every session."""

    domains: Tuple[str, ...]
    items: Dict[str, Item]
    config: CatConfig
    prior_covariance: np.ndarray
    domain_index: Dict[str, int] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain_index", {d: i for i, d in enumerate(self.domains)})

    @property
    def n_domains(self) -> int:
        return len(self.domains)

    def domain_of(self, item_id: str) -> str:
        return self.items[item_id].domain


def _validated_covariance(raw: Sequence[Sequence[float]], n: int) -> np.ndarray:
    cov = np.asarray(raw, dtype=float)
    if cov.shape != (n, n):
        raise ConfigurationError(f"prior_covariance must be {n}x{n}, got {cov.shape}")
    if not np.all(np.isfinite(cov)):
        raise ConfigurationError("prior_covariance has non-finite entries")
    if not np.allclose(cov, cov.T, atol=_SYMMETRY_TOL, rtol=0.0):
        raise ConfigurationError("prior_covariance is not symmetric")
    if np.any(np.diag(cov) <= 0):
        raise ConfigurationError("prior_covariance needs a positive diagonal")
    try:
        invert(cov)
    except NumericalInstability as exc:
        raise ConfigurationError(f"prior_covariance is not invertible: {exc}") from exc
    try:
        np.linalg.cholesky(cov)
    except np.linalg.LinAlgError as exc:
        raise ConfigurationError("prior_covariance is not positive definite") from exc
    cov.setflags(write=False)
    return cov


def build_bank(data: Optional[Mapping[str, Any]], policy: Optional[Mapping[str, Any]] = None) -> ItemBank:
    """Validate raw bank JSON (optionally with a policy overlay) into an ItemBank."""

    if data is None:
        raise ConfigurationError("item bank is missing")
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"item bank must be a mapping, got {type(data).__name__}")
    payload = dict(data)
    if policy:
        payload["cat_config"] = merge_policy(payload.get("cat_config"), dict(policy))
    try:
        schema = BankSchema.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid item bank: {exc}") from exc

    domains = tuple(schema.domains)
    cov = _validated_covariance(schema.prior_covariance, len(domains))
    reversed_domains = set(schema.cat_config.reversed_domains)
    items: Dict[str, Item] = {}
    for item_id, entry in schema.items.items():
        finite = [b for b in entry.thresholds if b is not None and math.isfinite(b)]
        items[item_id] = Item(
            id=item_id,
            domain=entry.domain,
            discrimination=float(entry.discrimination),
            thresholds=tuple(entry.thresholds),
            n_categories=len(finite) + 1,
            reversed=bool(
                entry.reversed
                or entry.higher_theta_means == "better"
                or entry.domain in reversed_domains
            ),
            stem=entry.stem,
            response_options=tuple(entry.response_options),
        )
    return ItemBank(domains=domains, items=items, config=schema.cat_config, prior_covariance=cov)


def _read_json(path: Union[str, Path]) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON: {exc}") from exc


def load_bank(path: Optional[Union[str, Path]] = None, policy: Optional[Mapping[str, Any]] = None) -> ItemBank:
    """Load a bank file; without a path the packaged sample bank is used."""

    if path is None:
        raw = json.loads(ir.files(__package__).joinpath("data/bank.json").read_text(encoding="utf-8"))
    else:
        raw = _read_json(path)
    return build_bank(raw, policy=policy)


def build_constraints(
    pairs: Optional[Iterable[Sequence[str]]], bank: Optional[ItemBank] = None
) -> ConstraintGraph:
    """Build the exclusion graph from ``[[a, b], ...]``."""

    if pairs is None:
        return ConstraintGraph()
    clean: List[Tuple[str, str]] = []
    for pair in pairs:
        if isinstance(pair, (str, bytes)) or len(pair) != 2:
            raise ConfigurationError(f"constraint must be a pair of item ids, got {pair!r}")
        a, b = str(pair[0]), str(pair[1])
        if a == b:
            raise ConfigurationError(f"constraint pairs an item with itself: {a}")
        if bank is not None and (a not in bank.items or b not in bank.items):
            log.warning("constraint (%s, %s) names an item outside the bank", a, b)
        clean.append((a, b))
    return ConstraintGraph.from_pairs(clean)


def load_constraints(path: Optional[Union[str, Path]] = None, bank: Optional[ItemBank] = None) -> ConstraintGraph:
    """Load ``{"constraints": [[a, b], ...]}``; without a path, the packaged file."""

    if path is None:
        raw = json.loads(ir.files(__package__).joinpath("data/constraints.json").read_text(encoding="utf-8"))
    else:
        raw = _read_json(path)
    if not isinstance(raw, Mapping) or not isinstance(raw.get("constraints"), list):
        raise ConfigurationError("constraints file must hold {\"constraints\": [[a, b], ...]}")
    return build_constraints(raw["constraints"], bank=bank)
