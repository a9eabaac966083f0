from __future__ import annotations

import numpy as np
import pytest

from cat_core import estimator
from cat_core.config import THETA_MAX, THETA_MIN
from cat_core.types import ResponseRecord

from tests.conftest import build_synthetic_bank


def _rec(bank, item_id: str, response) -> ResponseRecord:
    return ResponseRecord(item_id=item_id, response=response, domain=bank.domain_of(item_id), ts="t0")


def _estimate(bank, answers):
    records = [_rec(bank, iid, resp) for iid, resp in answers]
    return estimator.map_update(
        np.zeros(bank.n_domains), records, bank.items, bank.domain_index, bank.prior_covariance
    )


def test_lowest_category_pulls_theta_down():
    bank = build_synthetic_bank()
    theta = _estimate(bank, [("A_0", 0)])
    assert theta[0] < 0.0
    assert theta[1] == pytest.approx(0.0)


def test_highest_category_pushes_theta_up():
    bank = build_synthetic_bank()
    theta = _estimate(bank, [("A_0", 4)])
    assert theta[0] > 0.0


def test_reversed_items_are_reflected():
    plain = build_synthetic_bank()
    flipped = build_synthetic_bank(reversed_domains=["A"])
    assert flipped.items["A_0"].reversed

    low = _estimate(plain, [("A_0", 0)])
    down = _estimate(flipped, [("A_0", 4)])
    assert down[0] < 0.0
    assert down[0] == pytest.approx(low[0])


@pytest.mark.parametrize(
    "response,expected",
    [(0, 0), (4, 4), (9, 4), (-3, 0), (2.7, 2), ("x", 0), (None, 0)],
)
def test_observed_category_clamps(response, expected):
    bank = build_synthetic_bank()
    assert estimator.observed_category(bank.items["A_0"], response) == expected


def test_observed_category_reflects_after_clamp():
    bank = build_synthetic_bank(reversed_domains=["B"])
    item = bank.items["B_0"]
    assert estimator.observed_category(item, 0) == 4
    assert estimator.observed_category(item, 99) == 0


def test_observed_category_uses_usable_thresholds_only():
    bank = build_synthetic_bank(thresholds=[-1.0, 0.0, None])
    item = bank.items["A_0"]
    assert item.n_categories == 3
    assert estimator.observed_category(item, 4) == 2


def test_theta_stays_in_bounds_under_extreme_answers():
    bank = build_synthetic_bank(items_per_domain=6, discrimination=4.0, max_items=12)
    theta = _estimate(bank, [(f"A_{i}", 4) for i in range(6)] + [(f"B_{i}", 0) for i in range(6)])
    assert np.all(theta <= THETA_MAX)
    assert np.all(theta >= THETA_MIN)
    assert theta[0] > 1.0
    assert theta[1] < -1.0


def test_more_consistent_answers_move_theta_further():
    bank = build_synthetic_bank()
    one = _estimate(bank, [("A_0", 4)])
    three = _estimate(bank, [("A_0", 4), ("A_1", 4), ("A_2", 4)])
    assert three[0] > one[0]


def test_unknown_items_in_history_are_skipped():
    bank = build_synthetic_bank()
    records = [ResponseRecord(item_id="ghost", response=4, domain="A", ts="t0")]
    theta = estimator.map_update(
        np.zeros(2), records, bank.items, bank.domain_index, bank.prior_covariance
    )
    assert np.allclose(theta, 0.0)


def test_non_finite_warm_start_is_reset():
    bank = build_synthetic_bank()
    theta = estimator.map_update(
        np.array([np.nan, np.inf]), [], bank.items, bank.domain_index, bank.prior_covariance
    )
    assert np.allclose(theta, 0.0)


def test_prior_precisions_fall_back_to_unit_variance():
    prec = estimator.prior_precisions(np.array([[4.0, 0.0], [0.0, 0.0]]))
    assert prec == pytest.approx([0.25, 1.0])


@pytest.mark.parametrize("response,sign", [(0, -1.0), (1, 1.0)])
def test_single_binary_item_moves_estimate_off_zero(response, sign):
    bank = build_synthetic_bank(domains=["A"], discrimination=1.0, thresholds=[0.0])
    theta = _estimate(bank, [("A_0", response)])
    assert sign * theta[0] > 0.0
