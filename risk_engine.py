from __future__ import annotations
"""Public entry points of the inventory risk engine.

Re-exports the four per-SKU operations from ``risk_core`` and adds the
portfolio-level helpers (batch evaluation, summed net risk, per-SKU
optimisation and savings ranking).
"""

import zlib
from typing import Dict, Iterable, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from risk_core import (
    DEFAULT_CONFIG,
    FinancialImpact,
    InventoryParams,
    OptimizationResult,
    RiskAnalysis,
    RiskLevel,
    SimulationResult,
    analyze_risk,
    calculate_financial_impact,
    check_seed,
    classify_risk,
    optimize_reorder_point,
    resolve_config,
    run_simulation,
    validate_params,
)
from risk_errors import InfeasibleOptimizationError
from risk_logging import LogContext, get_logger

logger = get_logger(__name__)

RANKING_COLUMNS = [
    "SKU",
    "OriginalReorderPoint",
    "RecommendedReorderPoint",
    "OriginalNetRisk",
    "RecommendedNetRisk",
    "PotentialSavings",
    "StockoutProbability",
    "RiskLevel",
]


def sku_seed(base_seed: Optional[int], sku: str) -> Optional[int]:
    """Seed for one SKU derived from the batch seed and the SKU id alone.

    The same SKU gets the same seed whatever else is in the portfolio.
    """
    if base_seed is None:
        return None
    tag = zlib.crc32(str(sku).encode("utf-8"))
    state = np.random.SeedSequence([check_seed(base_seed), tag]).generate_state(1)
    return int(state[0])


def portfolio_net_risk(impacts: Iterable[FinancialImpact]) -> float:
    """Portfolio exposure: plain sum of per-SKU net risk values."""
    return float(sum(impact.net_risk_value for impact in impacts))


def evaluate_portfolio(
    portfolio: Mapping[str, InventoryParams],
    *,
    seed: Optional[int] = None,
    cfg: Optional[Dict] = None,
    num_simulations: Optional[int] = None,
    num_days: Optional[int] = None,
) -> Tuple[pd.DataFrame, float]:
    """Simulate, analyse and cost every SKU independently.

    Returns
    -------
    tuple(DataFrame, float)
        One row per SKU (probabilities, risk level, cost terms) and the
        portfolio net risk value.
    """

    cfg = resolve_config(cfg)
    rows = []
    impacts = []
    with LogContext(logger, f"Evaluating portfolio of {len(portfolio)} SKUs"):
        for sku, params in portfolio.items():
            result = run_simulation(
                params,
                num_simulations,
                num_days,
                seed=sku_seed(seed, sku),
                cfg=cfg,
            )
            analysis = analyze_risk(result, params, cfg)
            impact = calculate_financial_impact(analysis, params, cfg)
            impacts.append(impact)
            rows.append({"SKU": sku, **analysis.to_dict(), **impact.to_dict()})
    return pd.DataFrame(rows), portfolio_net_risk(impacts)


def optimize_portfolio(
    portfolio: Mapping[str, InventoryParams],
    service_level_floor: Optional[float] = None,
    *,
    seed: Optional[int] = None,
    cfg: Optional[Dict] = None,
    num_simulations: Optional[int] = None,
    num_days: Optional[int] = None,
) -> Tuple[Dict[str, OptimizationResult], Dict[str, InfeasibleOptimizationError]]:
    """Optimise each SKU on its own seed.

    SKUs whose service-level phase cannot reach the floor are reported in the
    second mapping instead of aborting the batch; any other error propagates.
    """

    results: Dict[str, OptimizationResult] = {}
    failures: Dict[str, InfeasibleOptimizationError] = {}
    for sku, params in portfolio.items():
        try:
            results[sku] = optimize_reorder_point(
                params,
                service_level_floor,
                sku_seed(seed, sku),
                cfg=cfg,
                num_simulations=num_simulations,
                num_days=num_days,
            )
        except InfeasibleOptimizationError as exc:
            logger.warning("SKU %s: %s", sku, exc)
            failures[sku] = exc
    return results, failures


def rank_by_savings(results: Mapping[str, OptimizationResult]) -> pd.DataFrame:
    """Recommendations ordered by descending potential savings (ties by SKU)."""
    rows = []
    for sku, res in results.items():
        rows.append({
            "SKU": sku,
            "OriginalReorderPoint": res.original_reorder_point,
            "RecommendedReorderPoint": res.recommended_reorder_point,
            "OriginalNetRisk": res.original_financial_impact.net_risk_value,
            "RecommendedNetRisk": res.financial_impact.net_risk_value,
            "PotentialSavings": res.potential_savings,
            "StockoutProbability": res.risk_analysis.stockout_probability,
            "RiskLevel": res.risk_analysis.risk_level.value,
        })
    if not rows:
        return pd.DataFrame(columns=RANKING_COLUMNS)
    df = pd.DataFrame(rows, columns=RANKING_COLUMNS)
    df.sort_values(by=["PotentialSavings", "SKU"], ascending=[False, True], inplace=True, kind="mergesort")
    df.reset_index(drop=True, inplace=True)
    return df


__all__ = [
    "DEFAULT_CONFIG",
    "InventoryParams",
    "SimulationResult",
    "RiskAnalysis",
    "RiskLevel",
    "FinancialImpact",
    "OptimizationResult",
    "run_simulation",
    "analyze_risk",
    "calculate_financial_impact",
    "optimize_reorder_point",
    "classify_risk",
    "check_seed",
    "validate_params",
    "sku_seed",
    "portfolio_net_risk",
    "evaluate_portfolio",
    "optimize_portfolio",
    "rank_by_savings",
]
