"""
treevote.boosted
================

Trees of gradient boosted ensembles.

Boosted nodes carry the partial sums of the loss gradient (``g_sum``) and
hessian (``h_sum``) of the training instances they hold.  With the
proportional missing strategy an input lacking a split field is sent down
every branch of the split and the sums of all the leaves reached are added
up; the tree's vote is then ``-g_sums / (h_sums + lambda)``.
"""
from __future__ import annotations

from typing import Any, Mapping

from .constants import LAST_PREDICTION, PROPORTIONAL
from .exceptions import ModelConfigurationError
from .fields import Fields
from .prediction import Prediction, ProportionalResult
from .predicate import predicate_from_json
from .tree import Node


class BoostedNode(Node):
    """Node of a boosted tree: a single predicate guard plus gradient sums."""

    __slots__ = ("g_sum", "h_sum")

    def __init__(self, guard, output, count=0, g_sum=None, h_sum=None,
                 children=(), node_id=None):
        super().__init__(guard, output, count, children, node_id)
        self.g_sum = g_sum
        self.h_sum = h_sum

    @classmethod
    def from_dict(cls, info: Mapping[str, Any]) -> "BoostedNode":
        if "predicate" not in info:
            raise ModelConfigurationError(
                f"Boosted tree node {info.get('id', '?')} has no predicate")
        children = [cls.from_dict(child) for child in info.get("children") or []]
        return cls(predicate_from_json(info["predicate"]), info.get("output"),
                   count=info.get("count", 0),
                   g_sum=info.get("g_sum"),
                   h_sum=info.get("h_sum"),
                   children=children,
                   node_id=info.get("id"))


class BoostedTree:
    """
    One tree of a boosted ensemble.

    Parameters
    ----------
    root : BoostedNode or dict
        Root node or its JSON description.
    fields : Fields
        Field map of the model.
    objective_class : Any, optional
        Class this tree votes for (classification ensembles only).
    weight : float, default=1.0
        Weight of the tree in the boosted sum.
    lambda_ : float, default=0.0
        L2 regularisation used to turn gradient sums into a prediction.
    """

    def __init__(self, root, fields: Fields, objective_class=None,
                 weight: float = 1.0, lambda_: float = 0.0):
        self.root = root if isinstance(root, BoostedNode) else BoostedNode.from_dict(root)
        self.fields = fields
        for node in self.root.walk():
            for predicate in node.conditions():
                fields.spec(predicate.field)
        self.objective_class = objective_class
        self.weight = weight
        self.lambda_ = lambda_

    def predict(self, input_data: Mapping[str, Any],
                missing_strategy: int = LAST_PREDICTION) -> Prediction:
        """Vote of this tree for ``input_data`` (keyed by field id)."""
        if missing_strategy == PROPORTIONAL:
            result = self.predict_proportional(input_data)
            return Prediction(prediction=-result.g_sums / (result.h_sums + self.lambda_),
                              count=result.count, path=result.path,
                              objective_class=self.objective_class,
                              weight=self.weight)
        if missing_strategy != LAST_PREDICTION:
            raise ValueError(f"Unknown missing strategy {missing_strategy!r}")
        node, path = self.root, []
        while node.children and node.resolvable(input_data, self.fields):
            for child in node.children:
                if child.guard.evaluate(input_data, self.fields):
                    path.append(child.guard.to_rule(self.fields))
                    node = child
                    break
            else:
                break
        return Prediction(prediction=node.output, count=node.count, path=path,
                          objective_class=self.objective_class, weight=self.weight)

    def predict_proportional(self, input_data: Mapping[str, Any], path=None,
                             missing_found: bool = False) -> ProportionalResult:
        """
        Gradient and hessian sums of the leaves reached by ``input_data``.

        Splits whose field is missing from the input are followed on every
        branch and their sums added.  The path records the unique rules
        traversed before the first such split.
        """
        if path is None:
            path = []
        return self._proportional(self.root, input_data, path, missing_found)

    def _proportional(self, node: BoostedNode, input_data, path, missing_found):
        if node.is_leaf:
            if node.g_sum is None or node.h_sum is None:
                raise ModelConfigurationError(
                    f"Boosted tree node {node.node_id} lacks its g_sum/h_sum values")
            return ProportionalResult(node.g_sum, node.h_sum, node.count, path)
        if node.resolvable(input_data, self.fields):
            for child in node.children:
                if child.guard.evaluate(input_data, self.fields):
                    rule = child.guard.to_rule(self.fields)
                    if rule not in path and not missing_found:
                        path.append(rule)
                    return self._proportional(child, input_data, path, missing_found)
            return ProportionalResult(node.g_sum or 0.0, node.h_sum or 0.0,
                                      node.count, path)
        g_sums = 0.0
        h_sums = 0.0
        population = 0
        for child in node.children:
            result = self._proportional(child, input_data, path, True)
            g_sums += result.g_sums
            h_sums += result.h_sums
            population += result.count
        return ProportionalResult(g_sums, h_sums, population, path)
