"""Exception hierarchy for the inventory risk engine.

Every failure carries a machine-readable ``code`` and a ``details`` dict so
callers (UI, storage, batch jobs) can translate it however they like.
"""

from __future__ import annotations
from typing import Any, Dict, Optional


class InventoryRiskError(Exception):
    """Base class for all engine errors.

    Attributes
    ----------
    message : str
        Short description of what went wrong.
    code : str
        Machine-readable error code (e.g. ``"SIM_001"``).
    details : dict
        Structured context (indices, offending values, ...).
    """

    default_code = "IR_000"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


class InvalidParameterError(InventoryRiskError):
    """A numeric input is non-finite or breaks a precondition."""

    default_code = "PARAM_001"

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        if field is not None:
            details["field"] = field
            details["value"] = value
        super().__init__(message, details=details, **kwargs)
        self.field = field
        self.value = value


class NumericalInstabilityError(InventoryRiskError):
    """A non-finite value appeared in a simulation or in a figure derived from it.

    ``simulation_index`` / ``day`` locate a bad inventory level; aggregates
    (mean inventory, cost terms) are named by ``quantity`` instead.
    """

    default_code = "SIM_001"

    def __init__(
        self,
        message: str,
        simulation_index: Optional[int] = None,
        day: Optional[int] = None,
        quantity: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if simulation_index is not None:
            details["simulation_index"] = int(simulation_index)
        if day is not None:
            details["day"] = int(day)
        if quantity is not None:
            details["quantity"] = quantity
        super().__init__(message, details=details, **kwargs)
        self.simulation_index = None if simulation_index is None else int(simulation_index)
        self.day = None if day is None else int(day)
        self.quantity = quantity


class InfeasibleOptimizationError(InventoryRiskError):
    """The service-level phase never reached the stockout floor."""

    default_code = "OPT_001"

    def __init__(
        self,
        message: str,
        last_reorder_point: float,
        last_stockout_probability: float,
        steps: int,
        floor: float,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details.update({
            "last_reorder_point": float(last_reorder_point),
            "last_stockout_probability": float(last_stockout_probability),
            "steps": int(steps),
            "floor": float(floor),
        })
        super().__init__(message, details=details, **kwargs)
        self.last_reorder_point = float(last_reorder_point)
        self.last_stockout_probability = float(last_stockout_probability)
        self.steps = int(steps)
        self.floor = float(floor)


class OptimizationCancelledError(InventoryRiskError):
    """The caller's cancellation hook fired between candidate evaluations."""

    default_code = "OPT_002"

    def __init__(self, message: str, evaluations: int, **kwargs):
        details = kwargs.pop("details", {})
        details["evaluations"] = int(evaluations)
        super().__init__(message, details=details, **kwargs)
        self.evaluations = int(evaluations)


__all__ = [
    "InventoryRiskError",
    "InvalidParameterError",
    "NumericalInstabilityError",
    "InfeasibleOptimizationError",
    "OptimizationCancelledError",
]
