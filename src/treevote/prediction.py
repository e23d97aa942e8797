"""Per-tree prediction records."""
from __future__ import annotations

from dataclasses import dataclass, field, fields as dc_fields
from typing import Any


@dataclass
class Prediction:
    """
    Result of running one input through one tree.

    Attributes
    ----------
    prediction : Any
        Category (classification) or number (regression, boosting).
    confidence : float or None
        Leaf confidence; the leaf error for regression trees.
    distribution : list or None
        ``[[value, count], ...]`` pairs observed in training at the leaf.
    count : int or None
        Number of training instances at the leaf.
    order : int or None
        Position of the tree in its ensemble, used to break ties.
    path : list of str
        Rules (``to_rule`` strings) of the nodes traversed below the root.
    probability : float or None
        Vote weight of the probability combination method.
    objective_class : Any
        Class a boosted classification tree votes for (``None`` otherwise).
    weight : float or None
        Boosting weight of the tree that produced the record.
    """

    prediction: Any
    confidence: float | None = None
    distribution: list | None = None
    count: int | float | None = None
    order: int | None = None
    path: list = field(default_factory=list)
    probability: float | None = None
    objective_class: Any = None
    weight: float | None = None

    def get(self, label: str) -> Any:
        return getattr(self, label, None)

    def has(self, label: str) -> bool:
        return self.get(label) is not None

    def to_dict(self) -> dict:
        """Plain dictionary with the attributes that are set."""
        out = {}
        for item in dc_fields(self):
            value = getattr(self, item.name)
            if value is not None:
                out[item.name] = value
        return out


@dataclass
class ProportionalResult:
    """Gradient statistics merged over the leaves reached by an input."""

    g_sums: float
    h_sums: float
    count: int | float
    path: list = field(default_factory=list)
