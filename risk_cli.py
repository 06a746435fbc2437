#!/usr/bin/env python3
"""Command-line runner for the inventory risk engine."""

from __future__ import annotations
import argparse
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from risk_engine import (
    InventoryParams,
    analyze_risk,
    calculate_financial_impact,
    optimize_portfolio,
    optimize_reorder_point,
    portfolio_net_risk,
    rank_by_savings,
    run_simulation,
)
from risk_errors import InfeasibleOptimizationError, InvalidParameterError, InventoryRiskError
from risk_logging import get_logger, setup_logging

logger = get_logger("risk_cli")


def load_config(path: Path) -> dict:
    text = path.read_text()
    data = json.loads(text)
    return data


def _split_params(data: Dict) -> Tuple[InventoryParams, Optional[Dict]]:
    if not isinstance(data, dict):
        raise InvalidParameterError("Parameter file must hold a JSON object", field="Params")
    record = data.get("Params", data)
    return InventoryParams.from_dict(record), data.get("Config")


def _rounded(d: Dict) -> Dict:
    return {k: round(v, 3) if isinstance(v, float) else v for k, v in d.items()}


def _cmd_simulate(args: argparse.Namespace) -> int:
    params, cfg = _split_params(load_config(args.params))
    result = run_simulation(params, args.simulations, args.days, seed=args.seed, cfg=cfg)
    analysis = analyze_risk(result, params, cfg)
    impact = calculate_financial_impact(analysis, params, cfg)
    print("Simulation:", _rounded(result.summary()))
    print("Risk:", _rounded(analysis.to_dict()))
    print("Financial:", _rounded(impact.to_dict()))
    if args.csv:
        args.csv.parent.mkdir(parents=True, exist_ok=True)
        result.percentile_frame().to_csv(args.csv, index=False)
        print(f"Saved percentiles → {args.csv}")
    if args.plot:
        from risk_plots import save_percentile_plot

        save_percentile_plot(result, f"Inventory percentiles — {args.params.stem}", str(args.plot))
        print(f"Saved plot → {args.plot}")
    return 0


def _cmd_optimize(args: argparse.Namespace) -> int:
    params, cfg = _split_params(load_config(args.params))
    try:
        res = optimize_reorder_point(
            params,
            args.floor,
            args.seed,
            cfg=cfg,
            num_simulations=args.simulations,
            num_days=args.days,
        )
    except InfeasibleOptimizationError as exc:
        print("Optimisation infeasible:", exc.to_dict())
        return 2
    print("Recommendation:", _rounded(res.to_dict()))
    return 0


def _cmd_portfolio(args: argparse.Namespace) -> int:
    data = load_config(args.portfolio)
    skus = data.get("SKUs") if isinstance(data, dict) else None
    if not isinstance(skus, dict) or not skus:
        raise InvalidParameterError("Portfolio file requires a non-empty 'SKUs' mapping", field="SKUs")
    portfolio = {str(sku): InventoryParams.from_dict(rec) for sku, rec in skus.items()}
    results, failures = optimize_portfolio(
        portfolio,
        args.floor,
        seed=args.seed,
        cfg=data.get("Config"),
        num_simulations=args.simulations,
        num_days=args.days,
    )
    ranking = rank_by_savings(results)
    print("Recommendations:")
    print(ranking.round(3).to_string(index=False))
    total = portfolio_net_risk(res.financial_impact for res in results.values())
    print(f"Portfolio net risk value: {total:.2f}")
    for sku, exc in failures.items():
        print(f"Infeasible: {sku} {exc.details}")
    if args.csv:
        args.csv.parent.mkdir(parents=True, exist_ok=True)
        ranking.to_csv(args.csv, index=False)
        print(f"Saved ranking → {args.csv}")
    if args.plot and not ranking.empty:
        from risk_plots import save_savings_plot

        save_savings_plot(ranking, "Potential savings by SKU", str(args.plot))
        print(f"Saved plot → {args.plot}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inventory risk simulator CLI")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    def _run_opts(p: argparse.ArgumentParser) -> None:
        p.add_argument("--seed", type=int, default=None, help="Base random seed")
        p.add_argument("--simulations", type=int, default=None, help="Trajectories per simulation")
        p.add_argument("--days", type=int, default=None, help="Days per trajectory")

    p_sim = sub.add_parser("simulate", help="Simulate one SKU and report risk")
    p_sim.add_argument("params", type=Path, help="Path to JSON parameter record")
    _run_opts(p_sim)
    p_sim.add_argument("--csv", type=Path, default=None, help="Write percentile trajectories to CSV")
    p_sim.add_argument("--plot", type=Path, default=None, help="Write percentile band chart (PNG)")
    p_sim.set_defaults(func=_cmd_simulate)

    p_opt = sub.add_parser("optimize", help="Recommend a reorder point for one SKU")
    p_opt.add_argument("params", type=Path, help="Path to JSON parameter record")
    _run_opts(p_opt)
    p_opt.add_argument("--floor", type=float, default=None, help="Max stockout probability in percent")
    p_opt.set_defaults(func=_cmd_optimize)

    p_port = sub.add_parser("portfolio", help="Optimise and rank a portfolio of SKUs")
    p_port.add_argument("portfolio", type=Path, help="Path to JSON portfolio file")
    _run_opts(p_port)
    p_port.add_argument("--floor", type=float, default=None, help="Max stockout probability in percent")
    p_port.add_argument("--csv", type=Path, default=None, help="Write ranking to CSV")
    p_port.add_argument("--plot", type=Path, default=None, help="Write savings chart (PNG)")
    p_port.set_defaults(func=_cmd_portfolio)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    try:
        return args.func(args)
    except InventoryRiskError as exc:
        logger.error("%s", exc)
        print("Error:", exc.to_dict())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
