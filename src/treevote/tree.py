# -*- coding: utf-8 -*-
"""
treevote.tree
=============

Local evaluation of the decision trees found in a model description.

Every node of a tree is guarded by a :class:`~treevote.predicate.PredicateSet`
(a single predicate for regular models, several for anomaly-style trees).
Traversal starts at the root and, at each node, follows the first child
whose guard holds.  Two strategies are available when the input lacks the
field a node splits on:

* ``LAST_PREDICTION`` (0) stops and returns the output of the node reached
  so far.
* ``PROPORTIONAL`` (1) follows every branch of the unresolved split and
  merges the training distributions of all the leaves reached.

The module also provides rule export, pretty printing and Graphviz export
of a tree.  The shared traversal helpers (:class:`Node`, :func:`split_field`,
:func:`one_branch`) are reused by :mod:`treevote.boosted`.
"""

# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Mapping

from .constants import LAST_PREDICTION, NUMERIC, PROPORTIONAL, TEXT_OPTYPES
from .exceptions import ModelConfigurationError
from .fields import Fields
from .prediction import Prediction
from .predicate import Always, Predicate, PredicateSet
from .stats import (distribution_mean, regression_error, unbiased_sample_variance,
                    ws_confidence)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _conditions(guard) -> list[Predicate]:
    if isinstance(guard, PredicateSet):
        return guard.conditions
    if isinstance(guard, Always):
        return []
    return [guard]


def split_field(children) -> str | None:
    """Field used by all the children of a node, ``None`` if not unique."""
    split = {p.field for child in children for p in _conditions(child.guard)}
    if len(split) == 1:
        return split.pop()
    return None


def missing_branch(children) -> bool:
    """Some child explicitly takes the missing values."""
    return any(p.missing for child in children for p in _conditions(child.guard))


def none_value(children) -> bool:
    """Some child is guarded by an ``is missing`` / ``is not missing`` test."""
    return any(p.value is None and p.term is None
               for child in children for p in _conditions(child.guard))


def one_branch(children, input_data: Mapping[str, Any]) -> bool:
    """True if there is a single branch to follow for this input."""
    return (split_field(children) in input_data or
            missing_branch(children) or none_value(children))


def merge_distributions(distribution: dict, new_distribution: dict) -> dict:
    """Add the counts of ``new_distribution`` into ``distribution``."""
    for value, instances in new_distribution.items():
        distribution[value] = distribution.get(value, 0) + instances
    return distribution


def _leaf_distribution(info: Mapping[str, Any]):
    if info.get("distribution") is not None:
        return [list(item) for item in info["distribution"]]
    summary = info.get("objective_summary") or {}
    for key in ("bins", "counts", "categories"):
        if summary.get(key):
            return [list(item) for item in summary[key]]
    return None


# -----------------------------------------------------------------------------
# Nodes
# -----------------------------------------------------------------------------
class Node:
    """Shape shared by the standard and the boosted tree nodes."""

    __slots__ = ("guard", "output", "count", "children", "node_id")

    def __init__(self, guard, output, count, children, node_id=None):
        self.guard = guard
        self.output = output
        self.count = count
        self.children = tuple(children)
        self.node_id = node_id

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def conditions(self) -> list[Predicate]:
        return _conditions(self.guard)

    def walk(self):
        """Depth-first iteration over the subtree rooted here."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def resolvable(self, input_data: Mapping[str, Any], fields: Fields) -> bool:
        """
        The split below this node can be decided for ``input_data``: the
        split field is present, some child handles missing values, or the
        split is on a text/items field (missing text counts as no match).
        """
        split = split_field(self.children)
        if split is None:
            return True
        return (one_branch(self.children, input_data) or
                fields.spec(split).optype in TEXT_OPTYPES)


class TreeNode(Node):
    """
    Node of a standard decision tree.

    Attributes
    ----------
    guard : PredicateSet
        Conditions that must hold to enter the node.
    output : Any
        Prediction issued when traversal stops here.
    confidence : float or None
        Confidence (classification) or error (regression) of ``output``.
    distribution : list or None
        Training distribution ``[[value, count], ...]`` at the node.
    count : int
        Training instances at the node.
    children : tuple of TreeNode
        Empty for leaves.
    """

    __slots__ = ("confidence", "distribution")

    def __init__(self, guard: PredicateSet, output, confidence=None,
                 distribution=None, count=None, children=(), node_id=None):
        if count is None:
            count = sum(instances for _, instances in distribution) if distribution else 0
        super().__init__(guard, output, count, children, node_id)
        self.confidence = confidence
        self.distribution = distribution

    @classmethod
    def from_dict(cls, info: Mapping[str, Any]) -> "TreeNode":
        """Build the subtree described by a node of the model JSON."""
        if "predicates" in info:
            guard = PredicateSet.from_json(info["predicates"])
        elif "predicate" in info:
            guard = PredicateSet.from_json(info["predicate"])
        else:
            raise ModelConfigurationError(
                f"Tree node {info.get('id', '?')} has no predicate")
        children = [cls.from_dict(child) for child in info.get("children") or []]
        return cls(guard, info.get("output"),
                   confidence=info.get("confidence"),
                   distribution=_leaf_distribution(info),
                   count=info.get("count"),
                   children=children,
                   node_id=info.get("id"))

    def to_prediction(self, path: list) -> Prediction:
        return Prediction(prediction=self.output, confidence=self.confidence,
                          distribution=self.distribution, count=self.count,
                          path=path)


# -----------------------------------------------------------------------------
# Tree
# -----------------------------------------------------------------------------
class DecisionTree:
    """
    A read-only decision tree bound to the fields of its model.

    Parameters
    ----------
    root : TreeNode or dict
        Root node, or its JSON description.
    fields : Fields
        Field map of the model.  Every field a predicate refers to must be
        in it.

    Raises
    ------
    ModelConfigurationError
        If a predicate refers to a field that is not in ``fields``.
    """

    def __init__(self, root, fields: Fields):
        self.root = root if isinstance(root, TreeNode) else TreeNode.from_dict(root)
        self.fields = fields
        for node in self.root.walk():
            for predicate in node.conditions():
                fields.spec(predicate.field)
        objective = fields.objective
        if objective is not None:
            self.regression = objective.optype == NUMERIC
        else:
            self.regression = not isinstance(self.root.output, str)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------
    def predict(self, input_data: Mapping[str, Any],
                missing_strategy: int = LAST_PREDICTION) -> Prediction:
        """
        Run ``input_data`` (keyed by field id) through the tree.

        Returns
        -------
        Prediction
            Output, confidence, distribution and count of the node where
            traversal stopped, and the rules of the nodes traversed.
        """
        if missing_strategy == PROPORTIONAL:
            return self.predict_proportional(input_data)
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
        return node.to_prediction(path)

    def predict_proportional(self, input_data: Mapping[str, Any]) -> Prediction:
        """
        Prediction merging every leaf reachable when a split field is
        missing.

        Classification trees predict the majority category of the merged
        distribution (ties go to the lowest category); regression trees
        predict its mean.
        """
        path: list[str] = []
        merged, last_node, population = self._proportional(
            self.root, input_data, path, False)
        if self.regression:
            distribution = sorted([list(item) for item in merged.items()])
            if len(distribution) == 1:
                prediction = distribution[0][0]
                confidence = last_node.confidence
            else:
                prediction = distribution_mean(distribution)
                confidence = regression_error(
                    unbiased_sample_variance(distribution, prediction), population)
        else:
            distribution = [list(item) for item in
                            sorted(merged.items(), key=lambda x: (-x[1], x[0]))]
            prediction = distribution[0][0] if distribution else last_node.output
            confidence = (ws_confidence(prediction, merged) if distribution
                          else last_node.confidence)
        return Prediction(prediction=prediction, confidence=confidence,
                          distribution=distribution, count=population, path=path)

    def _proportional(self, node: TreeNode, input_data, path, missing_found):
        if node.is_leaf:
            distribution = {value: count for value, count in (node.distribution or [])}
            if not distribution:
                distribution = {node.output: node.count}
            return distribution, node, node.count
        if node.resolvable(input_data, self.fields):
            for child in node.children:
                if child.guard.evaluate(input_data, self.fields):
                    rule = child.guard.to_rule(self.fields)
                    if rule not in path and not missing_found:
                        path.append(rule)
                    return self._proportional(child, input_data, path, missing_found)
            distribution = {value: count for value, count in (node.distribution or [])}
            return distribution or {node.output: node.count}, node, node.count
        merged: dict = {}
        population = 0
        for child in node.children:
            distribution, _, count = self._proportional(child, input_data, path, True)
            merge_distributions(merged, distribution)
            population += count
        return merged, node, population

    def depth(self, input_data: Mapping[str, Any]) -> tuple[int, list]:
        """
        Depth of the node an input reaches and the rules leading to it.

        The root counts as depth 1; an input rejected by the root guard
        has depth 0.
        """
        path: list[str] = []
        if not self.root.guard.evaluate(input_data, self.fields):
            return 0, path
        node, depth = self.root, 1
        while node.children:
            for child in node.children:
                if child.guard.evaluate(input_data, self.fields):
                    path.append(child.guard.to_rule(self.fields))
                    node = child
                    depth += 1
                    break
            else:
                break
        return depth, path

    # ------------------------------------------------------------------
    # Rule export / Graphviz / printing helpers
    # ------------------------------------------------------------------
    def export_rules(self) -> list[str]:
        """
        Export every root-to-leaf path as ``<antecedent> => <output>``.

        The antecedent joins the human readable descriptions of the
        conditions with ``and``; the root is rendered as ``<root>``.
        """
        rules: list[str] = []
        self._collect_rules(self.root, [], rules)
        return rules

    def _collect_rules(self, node: TreeNode, parts, rules):
        if node.is_leaf:
            body = " and ".join(parts) if parts else "<root>"
            rules.append(f"{body} => {node.output}")
            return
        for child in node.children:
            self._collect_rules(child, parts + [child.guard.to_description(self.fields)],
                                rules)

    def print_tree(self):
        """Pretty-print the tree to ``stdout``."""
        self._print_node(self.root, "")

    def _print_node(self, node: TreeNode, indent=""):
        if node.is_leaf:
            print(f"{indent}Predict {node.output} | count={node.count}")
            return
        for child in node.children:
            print(f"{indent}if {child.guard.to_description(self.fields)}:")
            self._print_node(child, indent + "  ")

    def export_graphviz(self, filename: str | None = None, *, format: str = "png") -> str:
        """
        Export the tree structure in Graphviz format.

        When ``filename`` is None the DOT source is returned.  ``format='dot'``
        writes the DOT source directly without calling the external ``dot``
        binary; other formats are rendered and fall back to a ``.dot`` file
        when rendering fails.

        Returns
        -------
        str
            Path to the written file, or the DOT source if filename is None.
        """
        try:
            import graphviz
        except ImportError:
            raise RuntimeError("Graphviz is required for export_graphviz but not installed.")
        dot = graphviz.Digraph(format=format)
        self._add_graph_nodes(dot, self.root, "0")
        if filename is None:
            return dot.source
        if format.lower() == "dot":
            path = f"{filename}.dot"
            dot.save(path)
            return path
        try:
            dot.render(filename, cleanup=True)
            return f"{filename}.{format}"
        except graphviz.ExecutableNotFound:
            fallback_path = f"{filename}.dot"
            dot.save(fallback_path)
            return fallback_path

    def _add_graph_nodes(self, dot, node: TreeNode, name: str):
        if node.is_leaf:
            dot.node(name, f"{node.output}\ncount={node.count}",
                     shape="box", style="filled", color="lightgrey")
            return
        dot.node(name, f"{node.output}\ncount={node.count}",
                 shape="ellipse", style="filled", color="lightblue")
        for index, child in enumerate(node.children):
            child_name = f"{name}_{index}"
            self._add_graph_nodes(dot, child, child_name)
            dot.edge(name, child_name, label=child.guard.to_description(self.fields))
