from __future__ import annotations

import json

import pytest

from cat_core.errors import ConfigurationError
from cat_core.norms import Norms, load_norms, normal_cdf


def test_normal_cdf_reference_points():
    assert normal_cdf(0.0) == pytest.approx(0.5, abs=1e-6)
    assert normal_cdf(1.0) == pytest.approx(0.841345, abs=1e-6)
    assert normal_cdf(-1.96) == pytest.approx(0.024998, abs=1e-5)


def test_default_percentile_and_severity():
    norms = Norms()
    assert norms.percentile("Anxiety", 0.0) == 50
    assert norms.percentile("Anxiety", 1.0) == 84
    assert norms.severity("Anxiety", -1.2) == "Low"
    assert norms.severity("Anxiety", 0.0) == "Typical"
    assert norms.severity("Anxiety", 1.5) == "High"
    assert norms.severity("Anxiety", 2.5) == "Very high"


def test_percentile_table_interpolates_and_clamps():
    norms = Norms.from_mapping(
        {"domains": {"A": {"theta_scale": {"percentiles": {"p10": -1.0, "p50": 0.0, "p90": 1.0, "note": "x"}}}}}
    )
    assert norms.percentile("A", 0.5) == 70
    assert norms.percentile("A", -0.5) == 30
    assert norms.percentile("A", -3.0) == 10
    assert norms.percentile("A", 3.0) == 90
    # domains without a table use the normal curve
    assert norms.percentile("B", 0.0) == 50


def test_banded_severity_uses_percentiles():
    norms = Norms.from_mapping(
        {"A": {"theta_scale": {"percentiles": {"p10": -1.0, "p90": 1.0}}, "severity_bands": True}}
    )
    assert norms.severity("A", -1.0) == "Very low"
    assert norms.severity("A", 0.0) == "Moderate"
    assert norms.severity("A", 0.4) == "High"
    assert norms.severity("A", 1.0) == "Very high"


@pytest.mark.parametrize(
    "raw",
    [["A"], {"domains": ["A"]}, {"A": "p50"}, {"A": {"theta_scale": {"percentiles": [1, 2]}}}],
)
def test_malformed_norms_are_rejected(raw):
    with pytest.raises(ConfigurationError):
        Norms.from_mapping(raw)


def test_load_norms(tmp_path):
    path = tmp_path / "norms.json"
    path.write_text(json.dumps({"A": {"theta_scale": {"percentiles": {"p25": -0.5, "p75": 0.5}}}}), encoding="utf-8")
    assert load_norms(path).percentile("A", 0.0) == 50
    with pytest.raises(ConfigurationError):
        load_norms(tmp_path / "absent.json")
