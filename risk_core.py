from __future__ import annotations
import copy
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from risk_errors import (
    InfeasibleOptimizationError,
    InvalidParameterError,
    NumericalInstabilityError,
    OptimizationCancelledError,
)
from risk_logging import LogContext, get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Config helpers
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: Dict[str, Dict] = {
    "Simulation": {
        "num_simulations": 100,
        "num_days": 365,
        "percentiles": [5, 25, 50, 75, 95],
        "overflow_cap_multiple": 10.0,
        "lead_time_spread": 2.0,
    },
    "Risk": {
        "overstock_multiple": 1.5,
        "understock_multiple": 0.5,
        "stockout_level": 0.0,
        "low_max": 20.0,
        "medium_max": 50.0,
        "headline": "stockout",
    },
    "Financial": {
        "carrying_rate": 0.20,
    },
    "Optimizer": {
        "service_level_floor": 5.0,
        "step_fraction": 0.1,
        "min_step": 1.0,
        "max_service_steps": 50,
        "neighborhood_steps": 4,
        "tolerance": 1.0,
        "max_iterations": 20,
    },
}

RISK_METRICS = ("overstock", "understock", "stockout")


def deep_merge(base: Dict, overrides: Optional[Dict]) -> Dict:
    """Recursive copy + merge."""
    if not overrides:
        return copy.deepcopy(base)
    out = copy.deepcopy(base)
    for key, val in overrides.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], val)
        else:
            out[key] = copy.deepcopy(val)
    return out


def validate_config(cfg: Dict, required: Optional[Dict[str, Iterable[str]]] = None) -> None:
    """Shallow validation for configuration dictionaries.

    Parameters
    ----------
    cfg : Dict
        Configuration to validate.
    required : Dict[str, Iterable[str]]
        Mapping of section name → required keys. Defaults to every key of
        ``DEFAULT_CONFIG``.
    """

    if not isinstance(cfg, dict):
        raise TypeError("Configuration must be a dictionary")
    required = required or {section: tuple(keys) for section, keys in DEFAULT_CONFIG.items()}
    for section, keys in required.items():
        if section not in cfg:
            raise KeyError(f"Missing configuration section '{section}'")
        for key in keys:
            if key not in cfg[section]:
                raise KeyError(f"Missing key '{section}.{key}'")

    headline = cfg.get("Risk", {}).get("headline")
    if headline is not None and headline not in RISK_METRICS:
        raise InvalidParameterError(
            f"Unsupported headline metric: {headline}", field="Risk.headline", value=headline
        )


def resolve_config(overrides: Optional[Dict] = None) -> Dict:
    cfg = deep_merge(DEFAULT_CONFIG, overrides)
    validate_config(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------
_FIELD_ALIASES = {
    "currentStock": "current_stock",
    "reorderPoint": "reorder_point",
    "orderQuantity": "order_quantity",
    "meanLeadTime": "mean_lead_time",
    "leadTime": "mean_lead_time",
    "dailyDemandMean": "daily_demand_mean",
    "demandMean": "daily_demand_mean",
    "dailyDemandStdDev": "daily_demand_std_dev",
    "demandStdDev": "daily_demand_std_dev",
    "unitCost": "unit_cost",
    "sellingPrice": "selling_price",
}


@dataclass(frozen=True)
class InventoryParams:
    """Per-SKU inputs for one simulation call. Every field is mandatory."""

    current_stock: float
    reorder_point: float
    order_quantity: float
    mean_lead_time: float
    daily_demand_mean: float
    daily_demand_std_dev: float
    unit_cost: float
    selling_price: float

    @classmethod
    def from_dict(cls, record: Mapping[str, object]) -> "InventoryParams":
        """Build from a snake_case or camelCase record (importer / data store shape)."""
        values: Dict[str, float] = {}
        for key, raw in record.items():
            name = _FIELD_ALIASES.get(key, key)
            if name not in _PARAM_FIELDS:
                continue
            try:
                values[name] = float(raw)  # type: ignore[arg-type]
            except (TypeError, ValueError):
                raise InvalidParameterError(f"Field '{key}' is not numeric", field=name, value=raw) from None
        missing = [name for name in _PARAM_FIELDS if name not in values]
        if missing:
            raise InvalidParameterError(
                f"Missing parameter fields: {', '.join(missing)}",
                details={"missing": missing},
            )
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in _PARAM_FIELDS}

    def with_reorder_point(self, reorder_point: float) -> "InventoryParams":
        return replace(self, reorder_point=float(reorder_point))


_PARAM_FIELDS = tuple(f.name for f in fields(InventoryParams))


def check_params(params: InventoryParams) -> None:
    """Numeric-stability checks the core applies before every simulation."""
    for name in _PARAM_FIELDS:
        value = getattr(params, name)
        if not isinstance(value, (int, float, np.integer, np.floating)) or not math.isfinite(value):
            raise InvalidParameterError(f"Parameter '{name}' must be a finite number", field=name, value=value)
        if value < 0:
            raise InvalidParameterError(f"Parameter '{name}' must not be negative", field=name, value=value)


def validate_params(params: InventoryParams) -> None:
    """Full record validation for importers / data stores.

    Every field except ``current_stock`` must be strictly positive and the
    demand standard deviation must be below the demand mean. The simulation
    core does not call this; it tolerates records that fail it.
    """
    check_params(params)
    for name in _PARAM_FIELDS:
        if name == "current_stock":
            continue
        value = getattr(params, name)
        if value <= 0:
            raise InvalidParameterError(f"Parameter '{name}' must be strictly positive", field=name, value=value)
    if params.daily_demand_std_dev >= params.daily_demand_mean:
        raise InvalidParameterError(
            "Demand standard deviation must be below the demand mean",
            field="daily_demand_std_dev",
            value=params.daily_demand_std_dev,
            details={"daily_demand_mean": params.daily_demand_mean},
        )


# ---------------------------------------------------------------------------
# Random source & samplers
# ---------------------------------------------------------------------------
SeedLike = Union[None, int, np.random.SeedSequence]


def check_seed(seed: int) -> int:
    """Seeds must be non-negative integers (SeedSequence rejects the rest)."""
    value = int(seed)
    if value < 0:
        raise InvalidParameterError("seed must be a non-negative integer", field="seed", value=seed)
    return value


class RandomSource:
    """Seedable, splittable stream of uniform draws in [0, 1).

    Draws are pulled from a PCG64 generator in blocks; the sequence of values
    handed out is fixed for a given seed. ``spawn`` derives independent child
    streams (one per trajectory) from the same seed sequence.
    """

    _BLOCK = 512

    def __init__(self, seed: SeedLike = None):
        if isinstance(seed, np.random.SeedSequence):
            self._seq = seed
        else:
            self._seq = np.random.SeedSequence(None if seed is None else check_seed(seed))
        self._gen = np.random.Generator(np.random.PCG64(self._seq))
        self._buf = np.empty(0, dtype=float)
        self._pos = 0
        self.draws = 0

    @property
    def entropy(self) -> int:
        return int(self._seq.entropy)

    def uniform(self) -> float:
        if self._pos >= self._buf.shape[0]:
            self._buf = self._gen.random(self._BLOCK)
            self._pos = 0
        val = float(self._buf[self._pos])
        self._pos += 1
        self.draws += 1
        return val

    def spawn(self, n: int) -> List["RandomSource"]:
        return [RandomSource(child) for child in self._seq.spawn(int(n))]


class DemandSampler:
    """Non-negative daily demand via a Box-Muller normal draw."""

    def __init__(self, source: RandomSource):
        self.source = source

    def sample(self, mean: float, std_dev: float) -> float:
        u1 = self.source.uniform()
        while u1 == 0.0:
            u1 = self.source.uniform()
        u2 = self.source.uniform()
        z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
        # negative draws clamp to zero, excess demand is left as sampled
        return max(0.0, mean + z * std_dev)


class LeadTimeSampler:
    """Uniform lead time on [max(0, L - spread), L + spread]."""

    def __init__(self, source: RandomSource, spread: float = 2.0):
        self.source = source
        self.spread = float(spread)

    def bounds(self, mean_lead_time: float) -> Tuple[float, float]:
        low = max(0.0, mean_lead_time - self.spread)
        high = max(low, mean_lead_time + self.spread)
        return low, high

    def sample(self, mean_lead_time: float) -> float:
        low, high = self.bounds(mean_lead_time)
        return low + self.source.uniform() * (high - low)


# ---------------------------------------------------------------------------
# Single trajectory
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class OrderEvent:
    placed_day: int
    lead_time: float
    arrival_day: int
    received: bool


@dataclass(frozen=True, eq=False)
class Trajectory:
    levels: np.ndarray
    stockout_mask: np.ndarray
    orders: Tuple[OrderEvent, ...] = ()

    @property
    def num_days(self) -> int:
        return int(self.levels.shape[0])

    @property
    def stockout_days(self) -> int:
        return int(np.count_nonzero(self.stockout_mask))

    def to_frame(self) -> pd.DataFrame:
        placed = {o.placed_day for o in self.orders}
        arrived = {o.arrival_day for o in self.orders if o.received}
        days = np.arange(1, self.num_days + 1)
        return pd.DataFrame({
            "Day": days,
            "Inventory": self.levels,
            "Stockout": self.stockout_mask,
            "OrderPlaced": [d in placed for d in days],
            "Arrival": [d in arrived for d in days],
        })


def _round_day(value: float) -> int:
    return int(math.floor(value + 0.5))


def _freeze(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def simulate_trajectory(
    params: InventoryParams,
    num_days: int,
    source: RandomSource,
    *,
    overflow_cap_multiple: float = 10.0,
    lead_time_spread: float = 2.0,
) -> Trajectory:
    """Run one inventory path under a reorder-point policy.

    Per day: demand is drawn and subtracted (a shortfall pins inventory to 0
    and counts as a stockout), an order is placed when inventory is at or
    below the reorder point and none is in flight, an order due today is
    received, then inventory is capped at ``overflow_cap_multiple`` times the
    reorder point. At most one order is pending at any time.
    """

    if num_days <= 0:
        raise InvalidParameterError("num_days must be positive", field="num_days", value=num_days)

    demand_sampler = DemandSampler(source)
    lead_sampler = LeadTimeSampler(source, lead_time_spread)
    reorder_point = float(params.reorder_point)
    cap = overflow_cap_multiple * reorder_point if reorder_point > 0 else math.inf

    levels = np.empty(num_days, dtype=float)
    stockouts = np.zeros(num_days, dtype=bool)
    orders: List[OrderEvent] = []

    inventory = float(params.current_stock)
    order_pending = False
    arrival_day: Optional[int] = None
    placed_day = 0
    lead_time = 0.0

    for day in range(1, num_days + 1):
        demand = demand_sampler.sample(params.daily_demand_mean, params.daily_demand_std_dev)
        if inventory < demand:
            stockouts[day - 1] = True
        inventory = max(0.0, inventory - demand)

        if inventory <= reorder_point and not order_pending:
            lead_time = lead_sampler.sample(params.mean_lead_time)
            placed_day = day
            arrival_day = day + _round_day(lead_time)
            order_pending = True

        if order_pending and day == arrival_day:
            inventory += params.order_quantity
            orders.append(OrderEvent(placed_day, lead_time, day, True))
            order_pending = False
            arrival_day = None

        inventory = min(inventory, cap)
        levels[day - 1] = inventory

    if order_pending and arrival_day is not None:
        orders.append(OrderEvent(placed_day, lead_time, arrival_day, False))

    return Trajectory(levels=_freeze(levels), stockout_mask=_freeze(stockouts), orders=tuple(orders))


# ---------------------------------------------------------------------------
# Monte Carlo engine
# ---------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class SimulationResult:
    params: InventoryParams
    trajectories: Tuple[Trajectory, ...]
    levels: np.ndarray
    percentiles: Mapping[float, np.ndarray]
    mean_inventory: float
    stockout_days: int
    seed: Optional[int] = None

    @property
    def num_simulations(self) -> int:
        return int(self.levels.shape[0])

    @property
    def num_days(self) -> int:
        return int(self.levels.shape[1])

    def percentile(self, p: float) -> np.ndarray:
        return self.percentiles[float(p)]

    def percentile_frame(self) -> pd.DataFrame:
        data: Dict[str, object] = {"Day": np.arange(1, self.num_days + 1)}
        for p, values in self.percentiles.items():
            data[f"P{p:g}"] = np.array(values)
        return pd.DataFrame(data)

    def summary(self) -> Dict[str, float]:
        return {
            "NumSimulations": self.num_simulations,
            "NumDays": self.num_days,
            "MeanInventory": self.mean_inventory,
            "StockoutDays": self.stockout_days,
            "Seed": self.seed,
        }


def nearest_rank_percentiles(levels: np.ndarray, percentiles: Sequence[float]) -> Dict[float, np.ndarray]:
    """Per-day nearest-rank percentiles: value at rank ceil(p/100 * M), 1-indexed."""
    m = levels.shape[0]
    ordered = np.sort(levels, axis=0)
    out: Dict[float, np.ndarray] = {}
    for p in percentiles:
        rank = math.ceil(float(p) * m / 100.0)
        rank = min(max(rank, 1), m)
        out[float(p)] = _freeze(ordered[rank - 1].copy())
    return out


def _check_run_shape(num_simulations: int, num_days: int, percentiles: Sequence[float]) -> None:
    if int(num_simulations) < 1:
        raise InvalidParameterError("num_simulations must be at least 1", field="num_simulations", value=num_simulations)
    if int(num_days) < 1:
        raise InvalidParameterError("num_days must be at least 1", field="num_days", value=num_days)
    for p in percentiles:
        if not math.isfinite(float(p)) or not 0.0 <= float(p) <= 100.0:
            raise InvalidParameterError("Percentiles must lie in [0, 100]", field="percentiles", value=p)


def run_simulation(
    params: InventoryParams,
    num_simulations: Optional[int] = None,
    num_days: Optional[int] = None,
    percentiles: Optional[Sequence[float]] = None,
    seed: Optional[int] = None,
    *,
    cfg: Optional[Dict] = None,
    max_workers: Optional[int] = None,
    batch_size: int = 32,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> SimulationResult:
    """Run independent trajectories and aggregate them.

    Parameters
    ----------
    params : InventoryParams
        Policy and demand inputs shared by every trajectory.
    num_simulations, num_days, percentiles : optional
        Run shape; defaults come from ``cfg["Simulation"]``.
    seed : int | None
        Base seed. Each trajectory gets its own child stream spawned from it,
        so the result does not depend on ``max_workers`` or ``batch_size``.
        ``None`` draws fresh entropy, recorded in ``SimulationResult.seed``.
    max_workers : int | None
        Thread count for trajectory evaluation (``None`` / 1 runs inline).
    progress_cb : callable(done, total) | None
        Called before each batch and once at the end.

    Raises
    ------
    InvalidParameterError
        Non-finite / negative params or an invalid run shape.
    NumericalInstabilityError
        A trajectory produced a non-finite level.
    """

    cfg = resolve_config(cfg)
    sim_cfg = cfg["Simulation"]
    num_simulations = int(sim_cfg["num_simulations"] if num_simulations is None else num_simulations)
    num_days = int(sim_cfg["num_days"] if num_days is None else num_days)
    pcts = list(sim_cfg["percentiles"] if percentiles is None else percentiles)
    _check_run_shape(num_simulations, num_days, pcts)
    check_params(params)

    root = RandomSource(seed)
    streams = root.spawn(num_simulations)
    cap_multiple = float(sim_cfg["overflow_cap_multiple"])
    spread = float(sim_cfg["lead_time_spread"])

    def _one(stream: RandomSource) -> Trajectory:
        return simulate_trajectory(
            params,
            num_days,
            stream,
            overflow_cap_multiple=cap_multiple,
            lead_time_spread=spread,
        )

    trajectories: List[Trajectory] = []
    total = num_simulations
    batch_size = max(1, int(batch_size))
    with LogContext(logger, f"Monte Carlo ({num_simulations} runs x {num_days} days)", level=logging.DEBUG):
        executor = ThreadPoolExecutor(max_workers=max_workers) if max_workers and max_workers > 1 else None
        try:
            for start in range(0, total, batch_size):
                if progress_cb:
                    progress_cb(start, total)
                batch = streams[start:start + batch_size]
                if executor is not None:
                    trajectories.extend(executor.map(_one, batch))
                else:
                    trajectories.extend(_one(stream) for stream in batch)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)
        if progress_cb:
            progress_cb(total, total)

    levels = np.vstack([t.levels for t in trajectories])
    bad = ~np.isfinite(levels)
    if bad.any():
        sim_idx, day_idx = (int(v) for v in np.argwhere(bad)[0])
        raise NumericalInstabilityError(
            "Non-finite inventory level in simulation",
            simulation_index=sim_idx,
            day=day_idx + 1,
        )

    # finite levels can still overflow once summed
    with np.errstate(over="ignore"):
        mean_inventory = float(levels.mean())
    if not math.isfinite(mean_inventory):
        raise NumericalInstabilityError("Mean inventory is not finite", quantity="mean_inventory")
    bands = nearest_rank_percentiles(levels, pcts)
    for p, values in bands.items():
        if not np.isfinite(values).all():
            raise NumericalInstabilityError("Percentile trajectory is not finite", quantity=f"P{p:g}")

    return SimulationResult(
        params=params,
        trajectories=tuple(trajectories),
        levels=_freeze(levels),
        percentiles=MappingProxyType(bands),
        mean_inventory=mean_inventory,
        stockout_days=int(sum(t.stockout_days for t in trajectories)),
        seed=int(seed) if seed is not None else root.entropy,
    )


# ---------------------------------------------------------------------------
# Risk analysis
# ---------------------------------------------------------------------------
class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


def classify_risk(probability: float, low_max: float = 20.0, medium_max: float = 50.0) -> RiskLevel:
    if probability <= low_max:
        return RiskLevel.LOW
    if probability <= medium_max:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


@dataclass(frozen=True)
class RiskAnalysis:
    overstock_probability: float
    understock_probability: float
    stockout_probability: float
    risk_level: RiskLevel
    levels: Mapping[str, RiskLevel]
    headline: str
    mean_inventory: float
    stockout_days: int
    num_points: int

    def probability(self, metric: str) -> float:
        return float(getattr(self, f"{metric}_probability"))

    @property
    def service_level(self) -> float:
        return 100.0 - self.stockout_probability

    def to_dict(self) -> Dict[str, object]:
        return {
            "OverstockProbability": self.overstock_probability,
            "UnderstockProbability": self.understock_probability,
            "StockoutProbability": self.stockout_probability,
            "RiskLevel": self.risk_level.value,
            "Headline": self.headline,
            "MeanInventory": self.mean_inventory,
            "StockoutDays": self.stockout_days,
        }


def analyze_risk(result: SimulationResult, params: InventoryParams, cfg: Optional[Dict] = None) -> RiskAnalysis:
    """Overstock / understock / stockout probabilities over all M x N points."""

    risk_cfg = resolve_config(cfg)["Risk"]
    levels = result.levels
    total = int(levels.size)
    rp = float(params.reorder_point)

    counts = {
        "overstock": int(np.count_nonzero(levels > float(risk_cfg["overstock_multiple"]) * rp)),
        "understock": int(np.count_nonzero(levels < float(risk_cfg["understock_multiple"]) * rp)),
        "stockout": int(np.count_nonzero(levels == float(risk_cfg["stockout_level"]))),
    }
    probs = {metric: 100.0 * n / total for metric, n in counts.items()}
    low_max = float(risk_cfg["low_max"])
    medium_max = float(risk_cfg["medium_max"])
    per_metric = {metric: classify_risk(p, low_max, medium_max) for metric, p in probs.items()}
    headline = str(risk_cfg["headline"])

    return RiskAnalysis(
        overstock_probability=probs["overstock"],
        understock_probability=probs["understock"],
        stockout_probability=probs["stockout"],
        risk_level=per_metric[headline],
        levels=MappingProxyType(per_metric),
        headline=headline,
        mean_inventory=result.mean_inventory,
        stockout_days=result.stockout_days,
        num_points=total,
    )


# ---------------------------------------------------------------------------
# Financial impact
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FinancialImpact:
    carrying_cost: float
    stockout_loss: float
    net_risk_value: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "CarryingCost": self.carrying_cost,
            "StockoutLoss": self.stockout_loss,
            "NetRiskValue": self.net_risk_value,
        }


def calculate_financial_impact(
    analysis: RiskAnalysis,
    params: InventoryParams,
    cfg: Optional[Dict] = None,
    *,
    carrying_rate: Optional[float] = None,
) -> FinancialImpact:
    rate = float(resolve_config(cfg)["Financial"]["carrying_rate"] if carrying_rate is None else carrying_rate)
    if not math.isfinite(rate) or rate < 0:
        raise InvalidParameterError("carrying_rate must be a finite, non-negative number", field="carrying_rate", value=rate)

    carrying = analysis.mean_inventory * params.unit_cost * rate
    # raw stockout-day count, not re-derived from the probability
    loss = analysis.stockout_days * params.daily_demand_mean * params.selling_price
    net = carrying + loss
    for name, value in (("carrying_cost", carrying), ("stockout_loss", loss), ("net_risk_value", net)):
        if not math.isfinite(value):
            raise NumericalInstabilityError(f"{name} is not finite", quantity=name)
    return FinancialImpact(carrying_cost=carrying, stockout_loss=loss, net_risk_value=net)


# ---------------------------------------------------------------------------
# Reorder-point optimisation
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CandidateEvaluation:
    reorder_point: float
    seed: int
    phase: str
    risk_analysis: RiskAnalysis
    financial_impact: FinancialImpact

    @property
    def stockout_probability(self) -> float:
        return self.risk_analysis.stockout_probability

    @property
    def net_risk_value(self) -> float:
        return self.financial_impact.net_risk_value


@dataclass(frozen=True)
class OptimizationResult:
    recommended_reorder_point: float
    financial_impact: FinancialImpact
    risk_analysis: RiskAnalysis
    original_reorder_point: float
    original_financial_impact: FinancialImpact
    original_risk_analysis: RiskAnalysis
    cost_delta: float
    service_level_floor: float
    evaluations: int
    history: pd.DataFrame = field(repr=False, compare=False, default_factory=pd.DataFrame)

    @property
    def potential_savings(self) -> float:
        return self.original_financial_impact.net_risk_value - self.financial_impact.net_risk_value

    @property
    def changed(self) -> bool:
        return self.recommended_reorder_point != self.original_reorder_point

    def to_dict(self) -> Dict[str, object]:
        return {
            "OriginalReorderPoint": self.original_reorder_point,
            "RecommendedReorderPoint": self.recommended_reorder_point,
            "OriginalNetRisk": self.original_financial_impact.net_risk_value,
            "RecommendedNetRisk": self.financial_impact.net_risk_value,
            "CostDelta": self.cost_delta,
            "PotentialSavings": self.potential_savings,
            "StockoutProbability": self.risk_analysis.stockout_probability,
            "RiskLevel": self.risk_analysis.risk_level.value,
            "Evaluations": self.evaluations,
        }


class _CandidateEvaluator:
    """Evaluates reorder points for one optimisation call.

    Each new point gets a fresh simulation with its own seed drawn from the
    call's seed stream; repeated points are served from the memo.
    """

    def __init__(
        self,
        params: InventoryParams,
        cfg: Dict,
        *,
        seed: Optional[int],
        num_simulations: int,
        num_days: int,
        should_cancel: Optional[Callable[[], bool]],
    ):
        self.params = params
        self.cfg = cfg
        self.num_simulations = num_simulations
        self.num_days = num_days
        self.should_cancel = should_cancel
        self._seed_rng = np.random.default_rng(None if seed is None else check_seed(seed))
        self._memo: Dict[float, CandidateEvaluation] = {}
        self._order: List[CandidateEvaluation] = []

    def __len__(self) -> int:
        return len(self._order)

    def evaluated(self) -> List[CandidateEvaluation]:
        return list(self._order)

    def __call__(self, reorder_point: float, phase: str) -> CandidateEvaluation:
        if self.should_cancel is not None and self.should_cancel():
            raise OptimizationCancelledError("Optimisation cancelled by caller", evaluations=len(self._order))

        key = round(float(reorder_point), 6)
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        seed = int(self._seed_rng.integers(low=0, high=2**32 - 1))
        candidate_params = self.params.with_reorder_point(key)
        result = run_simulation(
            candidate_params,
            self.num_simulations,
            self.num_days,
            seed=seed,
            cfg=self.cfg,
        )
        analysis = analyze_risk(result, candidate_params, self.cfg)
        impact = calculate_financial_impact(analysis, candidate_params, self.cfg)
        evaluation = CandidateEvaluation(key, seed, phase, analysis, impact)
        self._memo[key] = evaluation
        self._order.append(evaluation)
        logger.debug(
            "candidate rp=%.2f phase=%s stockout=%.2f%% net=%.2f",
            key, phase, analysis.stockout_probability, impact.net_risk_value,
        )
        return evaluation

    def history_frame(self, floor: float) -> pd.DataFrame:
        rows = []
        for i, ev in enumerate(self._order, start=1):
            rows.append({
                "iter": i,
                "phase": ev.phase,
                "reorder_point": ev.reorder_point,
                "seed": ev.seed,
                "StockoutProbability": ev.stockout_probability,
                "NetRiskValue": ev.net_risk_value,
                "Feasible": ev.stockout_probability <= floor,
            })
        return pd.DataFrame(rows)


def _golden_section(
    objective: Callable[[float], float],
    low: float,
    high: float,
    *,
    tolerance: float,
    max_iterations: int,
) -> None:
    """Golden-section search over [low, high]; infeasible points score +inf.

    Only drives which points get evaluated; the caller picks the best
    feasible point from everything evaluated.
    """

    inv_phi = (math.sqrt(5.0) - 1.0) / 2.0
    a, b = low, high
    c = b - inv_phi * (b - a)
    d = a + inv_phi * (b - a)
    fc, fd = objective(c), objective(d)
    for _ in range(int(max_iterations)):
        if b - a <= tolerance:
            break
        # both infeasible: feasibility improves with higher reorder points
        move_left = fc <= fd and not (math.isinf(fc) and math.isinf(fd))
        if move_left:
            b, d, fd = d, c, fc
            c = b - inv_phi * (b - a)
            fc = objective(c)
        else:
            a, c, fc = c, d, fd
            d = a + inv_phi * (b - a)
            fd = objective(d)


def optimize_reorder_point(
    params: InventoryParams,
    service_level_floor: Optional[float] = None,
    seed: Optional[int] = None,
    *,
    cfg: Optional[Dict] = None,
    num_simulations: Optional[int] = None,
    num_days: Optional[int] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> OptimizationResult:
    """Recommend a reorder point minimising net risk value under a stockout floor.

    Phase 1 raises the reorder point from its current value in fixed steps
    (``step_fraction`` x mean demand x mean lead time) until the stockout
    probability is at or below ``service_level_floor`` percent. Phase 2 runs a
    golden-section search around that point; candidates above the floor are
    excluded. The best feasible point evaluated wins, and the original point
    is kept when nothing beats it.

    Raises
    ------
    InfeasibleOptimizationError
        Phase 1 did not reach the floor within ``max_service_steps`` steps.
    OptimizationCancelledError
        ``should_cancel()`` returned True at a candidate checkpoint.
    """

    cfg = resolve_config(cfg)
    opt_cfg = cfg["Optimizer"]
    sim_cfg = cfg["Simulation"]
    floor = float(opt_cfg["service_level_floor"] if service_level_floor is None else service_level_floor)
    if not math.isfinite(floor) or not 0.0 <= floor <= 100.0:
        raise InvalidParameterError("service_level_floor must lie in [0, 100]", field="service_level_floor", value=floor)
    check_params(params)

    evaluate = _CandidateEvaluator(
        params,
        cfg,
        seed=seed,
        num_simulations=int(sim_cfg["num_simulations"] if num_simulations is None else num_simulations),
        num_days=int(sim_cfg["num_days"] if num_days is None else num_days),
        should_cancel=should_cancel,
    )
    step = max(
        float(opt_cfg["step_fraction"]) * params.daily_demand_mean * params.mean_lead_time,
        float(opt_cfg["min_step"]),
    )
    max_steps = int(opt_cfg["max_service_steps"])

    def feasible(ev: CandidateEvaluation) -> bool:
        return ev.stockout_probability <= floor

    with LogContext(logger, f"Optimising reorder point from {params.reorder_point:g}"):
        original = evaluate(params.reorder_point, "original")

        candidate = original
        steps = 0
        while not feasible(candidate):
            if steps >= max_steps:
                raise InfeasibleOptimizationError(
                    f"Stockout probability stayed above {floor:g}% after {steps} steps",
                    last_reorder_point=candidate.reorder_point,
                    last_stockout_probability=candidate.stockout_probability,
                    steps=steps,
                    floor=floor,
                )
            steps += 1
            candidate = evaluate(candidate.reorder_point + step, "service")

        def objective(rp: float) -> float:
            ev = evaluate(rp, "cost")
            return ev.net_risk_value if feasible(ev) else math.inf

        window = int(opt_cfg["neighborhood_steps"]) * step
        _golden_section(
            objective,
            max(0.0, candidate.reorder_point - window),
            candidate.reorder_point + window,
            tolerance=float(opt_cfg["tolerance"]),
            max_iterations=int(opt_cfg["max_iterations"]),
        )

        pool = [ev for ev in evaluate.evaluated() if feasible(ev)]
        best = min(pool, key=lambda ev: (ev.net_risk_value, ev is not original))

    if best.net_risk_value > original.net_risk_value:
        logger.warning(
            "Service floor %.1f%% forces a cost increase of %.2f for reorder point %.2f",
            floor, best.net_risk_value - original.net_risk_value, best.reorder_point,
        )
    logger.info(
        "Recommended reorder point %.2f (was %.2f), net risk %.2f -> %.2f after %d evaluations",
        best.reorder_point, original.reorder_point,
        original.net_risk_value, best.net_risk_value, len(evaluate),
    )

    recommended_rp = params.reorder_point if best is original else best.reorder_point
    return OptimizationResult(
        recommended_reorder_point=float(recommended_rp),
        financial_impact=best.financial_impact,
        risk_analysis=best.risk_analysis,
        original_reorder_point=float(params.reorder_point),
        original_financial_impact=original.financial_impact,
        original_risk_analysis=original.risk_analysis,
        cost_delta=best.net_risk_value - original.net_risk_value,
        service_level_floor=floor,
        evaluations=len(evaluate),
        history=evaluate.history_frame(floor),
    )


__all__ = [
    "DEFAULT_CONFIG",
    "RISK_METRICS",
    "deep_merge",
    "validate_config",
    "resolve_config",
    "InventoryParams",
    "check_params",
    "validate_params",
    "check_seed",
    "RandomSource",
    "DemandSampler",
    "LeadTimeSampler",
    "OrderEvent",
    "Trajectory",
    "simulate_trajectory",
    "SimulationResult",
    "nearest_rank_percentiles",
    "run_simulation",
    "RiskLevel",
    "classify_risk",
    "RiskAnalysis",
    "analyze_risk",
    "FinancialImpact",
    "calculate_financial_impact",
    "CandidateEvaluation",
    "OptimizationResult",
    "optimize_reorder_point",
]
