import numpy as np
import pytest

from risk_core import (
    InventoryParams,
    RiskLevel,
    SimulationResult,
    analyze_risk,
    calculate_financial_impact,
    classify_risk,
    run_simulation,
)
from risk_errors import InvalidParameterError, NumericalInstabilityError


def _base_params(**kwargs):
    values = dict(
        current_stock=500.0,
        reorder_point=200.0,
        order_quantity=300.0,
        mean_lead_time=7.0,
        daily_demand_mean=50.0,
        daily_demand_std_dev=10.0,
        unit_cost=10.0,
        selling_price=25.0,
    )
    values.update(kwargs)
    return InventoryParams(**values)


def _result_from_levels(levels, params, stockout_days=0):
    arr = np.asarray(levels, dtype=float)
    return SimulationResult(
        params=params,
        trajectories=(),
        levels=arr,
        percentiles={},
        mean_inventory=float(arr.mean()),
        stockout_days=stockout_days,
    )


@pytest.mark.parametrize(
    "prob, expected",
    [
        (0.0, RiskLevel.LOW),
        (20.0, RiskLevel.LOW),
        (20.0001, RiskLevel.MEDIUM),
        (50.0, RiskLevel.MEDIUM),
        (50.0001, RiskLevel.HIGH),
        (100.0, RiskLevel.HIGH),
    ],
)
def test_classify_risk_boundaries(prob, expected):
    assert classify_risk(prob) is expected


def test_probabilities_from_hand_built_levels():
    params = _base_params()
    result = _result_from_levels([[0.0, 100.0, 400.0, 250.0]], params, stockout_days=1)
    analysis = analyze_risk(result, params)
    assert analysis.overstock_probability == 25.0
    assert analysis.understock_probability == 25.0
    assert analysis.stockout_probability == 25.0
    assert analysis.risk_level is RiskLevel.MEDIUM
    assert analysis.headline == "stockout"
    assert analysis.num_points == 4
    assert analysis.service_level == 75.0


def test_probabilities_match_point_counts():
    params = _base_params()
    result = run_simulation(params, 50, 200, seed=13)
    analysis = analyze_risk(result, params)
    total = result.levels.size
    over = 100.0 * np.count_nonzero(result.levels > 300.0) / total
    under = 100.0 * np.count_nonzero(result.levels < 100.0) / total
    out = 100.0 * np.count_nonzero(result.levels == 0.0) / total
    assert abs(analysis.overstock_probability - over) <= 0.1
    assert abs(analysis.understock_probability - under) <= 0.1
    assert abs(analysis.stockout_probability - out) <= 0.1
    for metric in ("overstock", "understock", "stockout"):
        assert 0.0 <= analysis.probability(metric) <= 100.0


def test_zero_demand_overstock_from_current_stock():
    params = _base_params(daily_demand_mean=0.0, daily_demand_std_dev=0.0)
    result = run_simulation(params, 4, 30, seed=1)
    analysis = analyze_risk(result, params)
    assert analysis.overstock_probability == 100.0
    assert analysis.stockout_probability == 0.0
    assert analysis.levels["overstock"] is RiskLevel.HIGH

    low_stock = _base_params(current_stock=250.0, daily_demand_mean=0.0, daily_demand_std_dev=0.0)
    result = run_simulation(low_stock, 4, 30, seed=1)
    assert analyze_risk(result, low_stock).overstock_probability == 0.0


def test_thresholds_and_headline_are_configurable():
    params = _base_params()
    result = _result_from_levels([[0.0, 100.0, 400.0, 250.0]], params)
    cfg = {"Risk": {"overstock_multiple": 1.0, "headline": "overstock"}}
    analysis = analyze_risk(result, params, cfg)
    assert analysis.overstock_probability == 50.0
    assert analysis.headline == "overstock"
    assert analysis.risk_level is RiskLevel.MEDIUM


def test_analyze_does_not_mutate_result():
    params = _base_params()
    result = run_simulation(params, 5, 40, seed=2)
    before = result.levels.copy()
    mean_before = result.mean_inventory
    analyze_risk(result, params)
    np.testing.assert_array_equal(result.levels, before)
    assert result.mean_inventory == mean_before


def test_sku_results_are_independent():
    params_a = _base_params()
    params_b = _base_params(reorder_point=350.0, unit_cost=4.0)
    res_a = run_simulation(params_a, 8, 60, seed=1)
    res_b = run_simulation(params_b, 8, 60, seed=2)

    alone_b = calculate_financial_impact(analyze_risk(res_b, params_b), params_b)
    calculate_financial_impact(analyze_risk(res_a, params_a), params_a)
    after_b = calculate_financial_impact(analyze_risk(res_b, params_b), params_b)
    assert alone_b == after_b


def test_financial_impact_formulas():
    params = _base_params()
    result = run_simulation(params, 20, 120, seed=42)
    analysis = analyze_risk(result, params)
    impact = calculate_financial_impact(analysis, params)
    assert impact.carrying_cost == pytest.approx(result.mean_inventory * 10.0 * 0.20)
    assert impact.stockout_loss == result.stockout_days * 50.0 * 25.0
    assert impact.net_risk_value == pytest.approx(impact.carrying_cost + impact.stockout_loss)
    assert impact.carrying_cost >= 0.0 and impact.stockout_loss >= 0.0


def test_financial_impact_uses_raw_stockout_count():
    params = _base_params()
    result = _result_from_levels([[0.0, 0.0, 300.0, 300.0]], params, stockout_days=1)
    impact = calculate_financial_impact(analyze_risk(result, params), params)
    assert impact.stockout_loss == 1 * 50.0 * 25.0
    assert impact.carrying_cost == pytest.approx(150.0 * 10.0 * 0.20)


def test_carrying_rate_override():
    params = _base_params()
    result = _result_from_levels([[100.0, 100.0]], params)
    analysis = analyze_risk(result, params)
    assert calculate_financial_impact(analysis, params, carrying_rate=0.3).carrying_cost == pytest.approx(300.0)
    cfg = {"Financial": {"carrying_rate": 0.1}}
    assert calculate_financial_impact(analysis, params, cfg).carrying_cost == pytest.approx(100.0)
    with pytest.raises(InvalidParameterError):
        calculate_financial_impact(analysis, params, carrying_rate=-0.1)


def test_to_dict_views():
    params = _base_params()
    result = run_simulation(params, 3, 10, seed=1)
    analysis = analyze_risk(result, params)
    impact = calculate_financial_impact(analysis, params)
    assert analysis.to_dict()["RiskLevel"] in {"Low", "Medium", "High"}
    assert set(impact.to_dict()) == {"CarryingCost", "StockoutLoss", "NetRiskValue"}


def test_per_metric_levels_are_read_only():
    params = _base_params()
    analysis = analyze_risk(_result_from_levels([[0.0, 100.0, 400.0, 250.0]], params), params)
    assert analysis.levels["stockout"] is RiskLevel.MEDIUM
    with pytest.raises(TypeError):
        analysis.levels["stockout"] = RiskLevel.LOW  # type: ignore[index]


def test_overflowing_cost_raises_numerical_instability():
    params = _base_params(unit_cost=1e300)
    result = _result_from_levels([[1e300, 1e300]], params)
    analysis = analyze_risk(result, params)
    with pytest.raises(NumericalInstabilityError) as err:
        calculate_financial_impact(analysis, params)
    assert err.value.quantity == "carrying_cost"
    assert err.value.code == "SIM_001"
