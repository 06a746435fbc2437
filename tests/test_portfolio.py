import pytest

from risk_engine import (
    FinancialImpact,
    InventoryParams,
    OptimizationResult,
    RiskAnalysis,
    RiskLevel,
    analyze_risk,
    calculate_financial_impact,
    evaluate_portfolio,
    optimize_portfolio,
    portfolio_net_risk,
    rank_by_savings,
    run_simulation,
    sku_seed,
)
from risk_errors import InvalidParameterError


def _base_params(**kwargs):
    values = dict(
        current_stock=500.0,
        reorder_point=200.0,
        order_quantity=600.0,
        mean_lead_time=7.0,
        daily_demand_mean=50.0,
        daily_demand_std_dev=10.0,
        unit_cost=10.0,
        selling_price=25.0,
    )
    values.update(kwargs)
    return InventoryParams(**values)


def _analysis():
    return RiskAnalysis(
        overstock_probability=0.0,
        understock_probability=0.0,
        stockout_probability=0.0,
        risk_level=RiskLevel.LOW,
        levels={},
        headline="stockout",
        mean_inventory=0.0,
        stockout_days=0,
        num_points=1,
    )


def _fake_result(original_net, recommended_net):
    return OptimizationResult(
        recommended_reorder_point=1.0,
        financial_impact=FinancialImpact(recommended_net, 0.0, recommended_net),
        risk_analysis=_analysis(),
        original_reorder_point=1.0,
        original_financial_impact=FinancialImpact(original_net, 0.0, original_net),
        original_risk_analysis=_analysis(),
        cost_delta=recommended_net - original_net,
        service_level_floor=5.0,
        evaluations=1,
    )


def test_sku_seed_depends_only_on_base_seed_and_sku():
    assert sku_seed(42, "A") == sku_seed(42, "A")
    assert sku_seed(42, "A") != sku_seed(42, "B")
    assert sku_seed(42, "A") != sku_seed(43, "A")
    assert sku_seed(None, "A") is None


def test_portfolio_net_risk_is_sum_of_skus():
    portfolio = {
        "A": _base_params(),
        "B": _base_params(reorder_point=400.0, unit_cost=3.0),
        "C": _base_params(daily_demand_mean=0.0, daily_demand_std_dev=0.0),
    }
    df, total = evaluate_portfolio(portfolio, seed=11, num_simulations=6, num_days=60)
    assert list(df["SKU"]) == ["A", "B", "C"]
    assert total == pytest.approx(df["NetRiskValue"].sum())

    impacts = []
    for sku, params in portfolio.items():
        result = run_simulation(params, 6, 60, seed=sku_seed(11, sku))
        impacts.append(calculate_financial_impact(analyze_risk(result, params), params))
    assert total == pytest.approx(portfolio_net_risk(impacts))


def test_sku_result_independent_of_portfolio_composition():
    a = _base_params()
    b = _base_params(reorder_point=450.0, selling_price=40.0)
    alone, _ = optimize_portfolio({"A": a}, seed=5, num_simulations=10, num_days=60)
    together, _ = optimize_portfolio({"B": b, "A": a}, seed=5, num_simulations=10, num_days=60)
    assert alone["A"].recommended_reorder_point == together["A"].recommended_reorder_point
    assert alone["A"].financial_impact == together["A"].financial_impact


def test_rank_by_savings_non_increasing():
    results = {
        "low": _fake_result(100.0, 90.0),
        "high": _fake_result(1000.0, 100.0),
        "none": _fake_result(50.0, 50.0),
        "mid": _fake_result(500.0, 300.0),
    }
    ranking = rank_by_savings(results)
    assert list(ranking["SKU"]) == ["high", "mid", "low", "none"]
    savings = ranking["PotentialSavings"].tolist()
    assert all(a >= b for a, b in zip(savings, savings[1:]))


def test_rank_by_savings_ties_broken_by_sku():
    ranking = rank_by_savings({"b": _fake_result(10.0, 5.0), "a": _fake_result(20.0, 15.0)})
    assert list(ranking["SKU"]) == ["a", "b"]


def test_rank_by_savings_empty():
    ranking = rank_by_savings({})
    assert ranking.empty
    assert "PotentialSavings" in ranking.columns


def test_infeasible_sku_reported_not_raised():
    portfolio = {
        "ok": _base_params(),
        "short": _base_params(order_quantity=300.0),
    }
    cfg = {"Optimizer": {"max_service_steps": 2}}
    results, failures = optimize_portfolio(portfolio, seed=2, cfg=cfg, num_simulations=8, num_days=365)
    assert "short" in failures
    assert failures["short"].code == "OPT_001"
    assert "short" not in results


def test_negative_base_seed_rejected():
    with pytest.raises(InvalidParameterError) as err:
        sku_seed(-5, "A")
    assert err.value.code == "PARAM_001"
