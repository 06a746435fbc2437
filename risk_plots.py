from __future__ import annotations
import os

import pandas as pd

try:  # Matplotlib is optional for non-plotting contexts
    import matplotlib.pyplot as plt  # type: ignore
except Exception:  # pragma: no cover
    plt = None  # type: ignore

from risk_core import SimulationResult


def ensure_dir(path: str) -> None:
    if path:
        os.makedirs(path, exist_ok=True)


def _require_matplotlib() -> None:
    if plt is None:
        raise RuntimeError("matplotlib is required for plotting but is not available")


def save_percentile_plot(result: SimulationResult, title: str, out_png: str) -> None:
    """Percentile band chart: outermost percentiles shaded, median line, reorder point."""
    _require_matplotlib()
    ensure_dir(os.path.dirname(out_png))
    frame = result.percentile_frame()
    bands = sorted(result.percentiles)
    plt.figure(figsize=(10, 4))
    if len(bands) >= 2:
        lo, hi = f"P{bands[0]:g}", f"P{bands[-1]:g}"
        plt.fill_between(frame["Day"], frame[lo], frame[hi], alpha=0.25, label=f"{lo}–{hi}")
    if bands:
        mid = 50.0 if 50.0 in result.percentiles else bands[len(bands) // 2]
        plt.plot(frame["Day"], frame[f"P{mid:g}"], lw=2, label=f"P{mid:g}")
    plt.axhline(result.params.reorder_point, color="grey", linestyle="--", lw=1, label="Reorder point")
    plt.title(title)
    plt.xlabel("Day")
    plt.ylabel("Units")
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def save_savings_plot(ranking: pd.DataFrame, title: str, out_png: str) -> None:
    _require_matplotlib()
    ensure_dir(os.path.dirname(out_png))
    plt.figure(figsize=(10, 4))
    plt.bar(ranking["SKU"].astype(str), ranking["PotentialSavings"])
    plt.title(title)
    plt.xlabel("SKU")
    plt.ylabel("Potential savings")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


__all__ = ["ensure_dir", "save_percentile_plot", "save_savings_plot"]
