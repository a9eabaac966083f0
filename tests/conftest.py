from __future__ import annotations

import pytest

from cat_core.question_bank import ItemBank, build_bank


def build_raw_bank(
    *,
    domains: list[str] | None = None,
    items_per_domain: int = 3,
    discrimination: float = 1.3,
    thresholds: list[float] | None = None,
    prior_covariance: list[list[float]] | None = None,
    **cat_config: object,
) -> dict:
    """Create a deterministic synthetic bank payload for tests and smoke runs."""

    target_domains = domains or ["A", "B"]
    b = thresholds if thresholds is not None else [-1.0, 0.0, 1.0, 2.0]
    n = len(target_domains)
    cov = prior_covariance or [[1.0 if i == j else 0.0 for j in range(n)] for i in range(n)]
    items = {}
    for domain in target_domains:
        for idx in range(items_per_domain):
            items[f"{domain}_{idx}"] = {
                "domain": domain,
                "discrimination": discrimination,
                "thresholds": list(b),
                "stem": f"{domain} item #{idx}",
                "response_options": [f"opt{k}" for k in range(len(b) + 1)],
            }
    cfg = {"min_items": 4, "max_items": 6, "global_SE_threshold": 0.4}
    cfg.update(cat_config)
    return {
        "domains": list(target_domains),
        "items": items,
        "cat_config": cfg,
        "prior_covariance": cov,
    }


def build_synthetic_bank(**kwargs: object) -> ItemBank:
    return build_bank(build_raw_bank(**kwargs))


@pytest.fixture
def two_domain_bank() -> ItemBank:
    return build_synthetic_bank()


@pytest.fixture
def correlated_bank() -> ItemBank:
    return build_synthetic_bank(
        domains=["A", "B", "C"],
        items_per_domain=4,
        prior_covariance=[[1.0, 0.5, 0.2], [0.5, 1.0, 0.3], [0.2, 0.3, 1.0]],
        max_items=10,
    )
