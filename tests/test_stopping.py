from __future__ import annotations

import random

import numpy as np

from cat_core import posterior
from cat_core.engine import AdaptiveSession
from cat_core.policy import (
    BANK_EXHAUSTED,
    MAX_ITEMS,
    PRECISION_ALL,
    PRECISION_GROUP,
    PolicyState,
    QuestionPolicy,
)
from cat_core.types import ResponseRecord

from tests.conftest import build_raw_bank, build_synthetic_bank


def _run(session: AdaptiveSession, response: int = 2) -> list[str]:
    order = []
    while True:
        item = session.next_item()
        if item is None:
            break
        order.append(item.id)
        session.answer(item.id, response)
    return order


def test_max_items_stops_when_precision_is_unreachable():
    bank = build_synthetic_bank(max_items=5, global_SE_threshold=0.0)
    session = AdaptiveSession(bank, seed=1)
    _run(session)
    res = session.results
    assert res.total_items == 5
    assert res.stop_reason == MAX_ITEMS


def test_precision_stop_after_min_items():
    bank = build_synthetic_bank(min_items=4, global_SE_threshold=5.0)
    session = AdaptiveSession(bank, seed=2)
    _run(session)
    assert session.results.total_items == 4
    assert session.stop_reason == PRECISION_ALL


def test_precision_waits_for_every_domain_exposure():
    bank = build_synthetic_bank(min_items=1, global_SE_threshold=5.0)
    session = AdaptiveSession(bank, seed=3)
    _run(session)
    assert session.stop_reason == PRECISION_ALL
    assert session.results.total_items == 2
    assert session.domain_counts == {"A": 1, "B": 1}


def test_group_precision_stop():
    bank = build_synthetic_bank(
        domains=["Anxiety", "Extra"], min_items=1, global_SE_threshold=0.0, group_SE_threshold=5.0,
    )
    session = AdaptiveSession(bank, seed=4)
    _run(session)
    assert session.stop_reason == PRECISION_GROUP
    assert session.domain_counts["Anxiety"] >= 1
    assert session.domain_counts["Extra"] >= 1


def test_group_rule_is_skipped_without_group_domains():
    bank = build_synthetic_bank(max_items=3, global_SE_threshold=0.0, group_SE_threshold=5.0, min_items=0)
    session = AdaptiveSession(bank, seed=4)
    _run(session)
    assert session.stop_reason == MAX_ITEMS


def test_bank_exhausted_when_everything_is_answered():
    bank = build_synthetic_bank(items_per_domain=1, min_items=0, max_items=10, global_SE_threshold=0.0)
    session = AdaptiveSession(bank, seed=5)
    order = _run(session)
    assert sorted(order) == ["A_0", "B_0"]
    assert session.stop_reason == BANK_EXHAUSTED


def test_bank_exhausted_flag_stops_inside_the_cascade():
    bank = build_synthetic_bank(
        items_per_domain=1, min_items=0, max_items=10, global_SE_threshold=0.0, stop_if_bank_exhausted=True,
    )
    session = AdaptiveSession(bank, seed=5)
    _run(session)
    assert session.stop_reason == BANK_EXHAUSTED
    assert session.results.total_items == 2


def test_constraints_can_exhaust_the_bank_early():
    raw = build_raw_bank(items_per_domain=2, min_items=0, max_items=10, global_SE_threshold=0.0)
    session = AdaptiveSession(raw, constraints=[["A_0", "A_1"], ["B_0", "B_1"]], seed=6)
    _run(session)
    assert session.stop_reason == BANK_EXHAUSTED
    assert session.results.total_items == 2
    assert len(session.remaining) == 2


def test_domains_min_holds_back_precision():
    bank = build_synthetic_bank(
        min_items=1, max_items=3, global_SE_threshold=5.0, domains_min=2,
        min_items_by_domain={"A": 1, "B": 0},
    )
    policy = QuestionPolicy(bank, rng=random.Random(0))
    sigma = np.array(bank.prior_covariance, dtype=float)

    def state(asked):
        recs = [ResponseRecord(iid, 2, bank.domain_of(iid), "t0") for iid in asked]
        counts = {"A": 0, "B": 0}
        for rec in recs:
            counts[rec.domain] += 1
        return PolicyState(
            theta=np.zeros(2), sigma=sigma, se=posterior.standard_errors(sigma, bank.domains),
            administered=recs, remaining=[i for i in bank.items if i not in asked], domain_counts=counts,
        )

    assert not policy.should_stop(state(["A_0"])).stop
    assert not policy.should_stop(state(["A_0", "A_1"])).stop
    capped = policy.should_stop(state(["A_0", "A_1", "A_2"]))
    assert capped.stop and capped.reason == MAX_ITEMS
    done = policy.should_stop(state(["A_0", "B_0"]))
    assert done.stop and done.reason == PRECISION_ALL


def test_min_items_blocks_every_rule():
    bank = build_synthetic_bank(min_items=6, global_SE_threshold=5.0)
    session = AdaptiveSession(bank, seed=7)
    _run(session)
    assert session.results.total_items == 6


def test_ungrouped_domains_are_exposed_before_group_precision():
    bank = build_synthetic_bank(
        domains=["Anxiety", "Extra"], min_items=1, max_items=6, global_SE_threshold=0.0, group_SE_threshold=0.9,
    )
    for seed in range(20):
        session = AdaptiveSession(bank, seed=seed)
        _run(session)
        assert session.stop_reason == PRECISION_GROUP, seed
        assert session.domain_counts["Extra"] >= 1, seed
        assert session.domain_counts["Anxiety"] >= 1, seed
