"""
treevote.ensemble
=================

Loading of model and ensemble descriptions and the local prediction engines.

Descriptions are loaded in two phases.  :func:`load_model` and
:func:`load_ensemble` validate the JSON (as returned by the platform's API,
already decoded) and return immutable descriptors; ``into_engine`` turns a
descriptor into a fitted :class:`LocalModel` or :class:`LocalEnsemble`.
The engines follow the scikit-learn estimator conventions: configuration
goes into the constructor and ``fit`` binds them to a description.

Example
-------
>>> ensemble = load_ensemble(ensemble_json, models=model_jsons).into_engine(method=1)
>>> ensemble.predict({"petal width": 0.5})
'Iris-setosa'
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator

from .boosted import BoostedTree
from .constants import (LAST_PREDICTION, MISSING_STRATEGIES, OPERATING_POINT_KINDS,
                        PLURALITY)
from .exceptions import InputValidationError, ModelConfigurationError, NotLoadedError
from .fields import Fields
from .multivote import CombinationMethod, MultiVote, combine_to_distribution
from .stats import ws_confidence
from .tree import DecisionTree

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Descriptions
# -----------------------------------------------------------------------------
def _unwrap(resource: Mapping[str, Any]) -> tuple[str | None, Mapping[str, Any]]:
    if not isinstance(resource, Mapping):
        raise ModelConfigurationError(
            f"Cannot build a local predictor from {type(resource).__name__}")
    resource_id = resource.get("resource")
    if isinstance(resource.get("object"), Mapping):
        resource = resource["object"]
        resource_id = resource_id or resource.get("resource")
    return resource_id, resource


def _objective_id(resource: Mapping[str, Any]) -> str | None:
    objective = resource.get("objective_field")
    if objective is None and resource.get("objective_fields"):
        objective = resource["objective_fields"][0]
    if isinstance(objective, Mapping):
        objective = objective.get("id")
    return objective


@dataclass(frozen=True)
class ModelDescriptor:
    """Validated description of a single tree model."""

    resource_id: str | None
    fields: Fields
    root: Mapping[str, Any]
    boosting: Mapping[str, Any] | None = None
    name: str | None = None

    def build_tree(self) -> DecisionTree | BoostedTree:
        """The tree of this model, boosted or standard."""
        if self.boosting:
            return BoostedTree(self.root, self.fields,
                               objective_class=self.boosting.get("objective_class"),
                               weight=self.boosting.get("weight", 1.0),
                               lambda_=self.boosting.get("lambda", 0.0))
        return DecisionTree(self.root, self.fields)

    def into_engine(self, **params) -> "LocalModel":
        return LocalModel(**params).fit(self)


def load_model(resource: Mapping[str, Any]) -> ModelDescriptor:
    """
    Validate a model resource and build its descriptor.

    Parameters
    ----------
    resource : dict
        The model resource (``{"resource": ..., "object": {...}}``) or its
        ``object`` part.  The ``model`` key must hold the ``root`` node and
        the ``fields`` map; ``model_fields``, when present, restricts the
        fields to those used by the model.

    Raises
    ------
    ModelConfigurationError
        If required keys are missing or the fields list is incomplete.
    """
    resource_id, resource = _unwrap(resource)
    model = resource.get("model")
    if not isinstance(model, Mapping):
        raise ModelConfigurationError("Cannot create the Model instance. Could not"
                                      " find the 'model' key in the resource")
    if "root" not in model or "fields" not in model:
        raise ModelConfigurationError(
            "The model description needs both the 'root' and 'fields' keys")
    all_fields = model["fields"]
    objective_id = _objective_id(resource)
    if model.get("model_fields") is not None:
        fields = {}
        for field_id, info in model["model_fields"].items():
            if field_id not in all_fields:
                raise ModelConfigurationError(
                    "Some fields are missing to generate a local model. Please"
                    " provide a model with the complete list of fields.")
            fields[field_id] = dict(info, name=all_fields[field_id]["name"],
                                    summary=all_fields[field_id].get("summary", {}))
        if objective_id is not None and objective_id not in fields \
                and objective_id in all_fields:
            fields[objective_id] = all_fields[objective_id]
    else:
        fields = all_fields
    boosting = resource.get("boosting") or model.get("boosting") or None
    descriptor = ModelDescriptor(resource_id=resource_id,
                                 fields=Fields(fields, objective_id),
                                 root=model["root"],
                                 boosting=boosting,
                                 name=resource.get("name"))
    logger.debug("Loaded model %s with %d fields", resource_id, len(descriptor.fields))
    return descriptor


@dataclass(frozen=True)
class EnsembleDescriptor:
    """Validated description of an ensemble and its models, in tree order."""

    resource_id: str | None
    models: tuple
    fields: Fields
    boosting: bool = False
    boosting_offsets: Any = None
    categories: tuple = field(default_factory=tuple)

    def into_engine(self, **params) -> "LocalEnsemble":
        return LocalEnsemble(**params).fit(self)


def _merge_fields(models: Sequence[ModelDescriptor], objective_id: str | None) -> Fields:
    merged = {}
    for model in models:
        for field_id, spec in model.fields.items():
            merged.setdefault(field_id, spec)
    if objective_id is None:
        objective_id = models[0].fields.objective_id
    return Fields(merged, objective_id)


def load_ensemble(resource: Mapping[str, Any],
                  models: Sequence[Any] | None = None) -> EnsembleDescriptor:
    """
    Validate an ensemble resource and the resources of its models.

    Parameters
    ----------
    resource : dict
        The ensemble resource or its ``object`` part.  Its ``models`` key
        lists the model ids in tree order (or the full model resources).
    models : list, optional
        Model resources or :class:`ModelDescriptor` objects.  They are
        sorted following the ensemble's ``models`` ids when both carry ids.

    Raises
    ------
    ModelConfigurationError
        If models are missing or the descriptions are inconsistent.
    """
    resource_id, resource = _unwrap(resource)
    model_ids = resource.get("models") or []
    if models is None:
        models = [item for item in model_ids if isinstance(item, Mapping)]
        model_ids = [item.get("resource") for item in models]
    if not models:
        raise ModelConfigurationError(
            f"Cannot build the ensemble {resource_id}: no models were given")
    descriptors = [item if isinstance(item, ModelDescriptor) else load_model(item)
                   for item in models]
    if model_ids:
        if len(model_ids) != len(descriptors):
            raise ModelConfigurationError(
                f"The ensemble lists {len(model_ids)} models but"
                f" {len(descriptors)} were given")
        by_id = {descriptor.resource_id: descriptor for descriptor in descriptors}
        if all(model_id in by_id for model_id in model_ids):
            descriptors = [by_id[model_id] for model_id in model_ids]

    objective_id = _objective_id(resource)
    ensemble_info = resource.get("ensemble") or {}
    if ensemble_info.get("fields"):
        fields = Fields(ensemble_info["fields"],
                        objective_id or descriptors[0].fields.objective_id)
    else:
        fields = _merge_fields(descriptors, objective_id)

    boosting = bool(resource.get("boosting")) or all(d.boosting for d in descriptors)
    offsets = None
    categories = list(fields.categories)
    if boosting:
        if not all(d.boosting for d in descriptors):
            raise ModelConfigurationError(
                "A boosted ensemble needs the boosting information of every model")
        offsets = resource.get("initial_offsets")
        if offsets is None:
            offsets = resource.get("initial_offset", 0.0)
        elif not isinstance(offsets, Mapping):
            offsets = {category: offset for category, offset in offsets}
        for descriptor in descriptors:
            objective_class = descriptor.boosting.get("objective_class")
            if objective_class is not None and objective_class not in categories:
                categories.append(objective_class)
    logger.debug("Loaded ensemble %s: %d models, boosting=%s",
                 resource_id, len(descriptors), boosting)
    return EnsembleDescriptor(resource_id=resource_id,
                              models=tuple(descriptors),
                              fields=fields,
                              boosting=boosting,
                              boosting_offsets=offsets,
                              categories=tuple(categories))


# -----------------------------------------------------------------------------
# Engines
# -----------------------------------------------------------------------------
def _check_missing_strategy(missing_strategy):
    if missing_strategy not in MISSING_STRATEGIES:
        raise ValueError(f"Unknown missing strategy {missing_strategy!r}")
    return missing_strategy


class LocalModel(BaseEstimator):
    """
    Local predictor for a single tree model.

    Parameters
    ----------
    missing_strategy : int, default=0
        ``0`` (last prediction) or ``1`` (proportional).
    add_unused_fields : bool, default=False
        Report the input keys that were not used (unknown fields or
        ``None`` values) in full predictions.
    """

    def __init__(self, *, missing_strategy: int = LAST_PREDICTION,
                 add_unused_fields: bool = False):
        self.missing_strategy = missing_strategy
        self.add_unused_fields = add_unused_fields

    def fit(self, model, y=None):
        """Bind the engine to a model descriptor (or model resource)."""
        descriptor = model if isinstance(model, ModelDescriptor) else load_model(model)
        self.resource_id_ = descriptor.resource_id
        self.fields_ = descriptor.fields
        self.tree_ = descriptor.build_tree()
        return self

    def _check_fitted(self):
        if getattr(self, "tree_", None) is None:
            raise NotLoadedError("Model not loaded. Call fit(...) first.")

    def predict(self, input_data: Mapping[str, Any], missing_strategy: int | None = None,
                full: bool = False):
        """
        Predict the objective for one input keyed by field name or id.

        Returns the predicted value, or with ``full=True`` a dictionary
        with the prediction, confidence, distribution, count and path.
        """
        self._check_fitted()
        if missing_strategy is None:
            missing_strategy = self.missing_strategy
        clean, unused = self.fields_.filter_input(input_data)
        prediction = self.tree_.predict(clean, _check_missing_strategy(missing_strategy))
        if not full:
            return prediction.prediction
        output = prediction.to_dict()
        if self.add_unused_fields:
            output["unused_fields"] = unused
        return output


class LocalEnsemble(BaseEstimator):
    """
    Local predictor for an ensemble of decision trees.

    Every tree votes for the input and the votes are combined with a
    :class:`~treevote.multivote.MultiVote`.  Boosted ensembles always use
    the boosting combination.

    Parameters
    ----------
    method : int, default=0
        Combination method: 0 plurality, 1 confidence weighted, 2
        probability weighted, 3 threshold.
    missing_strategy : int, default=0
        ``0`` (last prediction) or ``1`` (proportional).
    threshold : int or None, default=None
        Minimum number of votes for ``category`` (threshold method).
    category : Any, default=None
        Category singled out by the threshold method.
    add_unused_fields : bool, default=False
        Report the input keys that were not used in full predictions.
    n_jobs : int or None, default=None
        Evaluate the trees in parallel threads with joblib.  Votes keep
        the order of the trees in the ensemble.
    """

    def __init__(self, *, method: int = PLURALITY,
                 missing_strategy: int = LAST_PREDICTION,
                 threshold: int | None = None,
                 category: Any = None,
                 add_unused_fields: bool = False,
                 n_jobs: int | None = None):
        self.method = method
        self.missing_strategy = missing_strategy
        self.threshold = threshold
        self.category = category
        self.add_unused_fields = add_unused_fields
        self.n_jobs = n_jobs

    def fit(self, ensemble, models=None, y=None):
        """Bind the engine to an ensemble descriptor (or ensemble resource)."""
        if not isinstance(ensemble, EnsembleDescriptor):
            ensemble = load_ensemble(ensemble, models)
        self.resource_id_ = ensemble.resource_id
        self.fields_ = ensemble.fields
        self.trees_ = [model.build_tree() for model in ensemble.models]
        self.boosting_ = ensemble.boosting
        self.boosting_offsets_ = ensemble.boosting_offsets
        self.categories_ = list(ensemble.categories)
        objective = self.fields_.objective
        self.regression_ = objective is not None and not self.categories_
        return self

    def _check_fitted(self):
        if not getattr(self, "trees_", None):
            raise NotLoadedError("Ensemble not loaded. Call fit(...) first.")

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------
    def _votes(self, input_data, missing_strategy):
        self._check_fitted()
        if missing_strategy is None:
            missing_strategy = self.missing_strategy
        _check_missing_strategy(missing_strategy)
        clean, unused = self.fields_.filter_input(input_data)
        if self.n_jobs in (None, 1):
            predictions = [tree.predict(clean, missing_strategy) for tree in self.trees_]
        else:
            predictions = Parallel(n_jobs=self.n_jobs, prefer="threads")(
                delayed(tree.predict)(clean, missing_strategy) for tree in self.trees_)
        for index, prediction in enumerate(predictions):
            prediction.order = index
        return predictions, unused

    def _multivote(self, predictions) -> MultiVote:
        return MultiVote(predictions, boosting=self.boosting_,
                         boosting_offsets=self.boosting_offsets_,
                         categories=self.categories_)

    def predict(self, input_data: Mapping[str, Any], method: int | None = None,
                options: Mapping[str, Any] | None = None,
                missing_strategy: int | None = None, full: bool = False):
        """
        Combined prediction of the ensemble for one input.

        Parameters
        ----------
        input_data : dict
            Input keyed by field name or field id.
        method : int, optional
            Overrides the ``method`` parameter for this call.
        options : dict, optional
            ``{"threshold": ..., "category": ...}`` for the threshold
            method; defaults to the engine parameters.
        missing_strategy : int, optional
            Overrides the ``missing_strategy`` parameter for this call.
        full : bool, default=False
            Return the whole combined dictionary instead of the value.
        """
        predictions, unused = self._votes(input_data, missing_strategy)
        if self.boosting_:
            method = CombinationMethod.BOOSTING
        elif method is None:
            method = self.method
        if options is None and self.threshold is not None:
            options = {"threshold": self.threshold, "category": self.category}
        result = self._multivote(predictions).combine(method, options)
        if not full:
            return result["prediction"]
        if self.add_unused_fields:
            result["unused_fields"] = unused
        return result

    def predict_batch(self, rows, **kwargs) -> np.ndarray:
        """Predictions for a sequence of inputs, as a numpy array."""
        values = [self.predict(row, **kwargs) for row in rows]
        if self.regression_ and not kwargs.get("full"):
            return np.asarray(values, dtype=float)
        return np.asarray(values, dtype=object)

    # ------------------------------------------------------------------
    # Per-class outputs
    # ------------------------------------------------------------------
    def _check_classification(self):
        if self.regression_ or not self.categories_:
            raise ValueError("Per-class predictions are only available for"
                             " classification ensembles")

    def _leaf_distribution(self, prediction) -> dict:
        distribution = dict((c, n) for c, n in (prediction.distribution or []))
        if not distribution:
            distribution = {prediction.prediction: prediction.count or 1}
        return distribution

    def predict_probability(self, input_data: Mapping[str, Any],
                            missing_strategy: int | None = None) -> list[dict]:
        """
        Probability of every class, in the declared category order.

        Standard ensembles average the leaf distributions of their trees;
        boosted ensembles return the softmax of the class scores.
        """
        self._check_classification()
        predictions, _ = self._votes(input_data, missing_strategy)
        if self.boosting_:
            result = self._multivote(predictions).combine(CombinationMethod.BOOSTING)
            by_class = {item["category"]: item["probability"]
                        for item in result["probabilities"]}
            return [{"category": category, "probability": by_class.get(category, 0.0)}
                    for category in self.categories_]
        per_tree = []
        for prediction in predictions:
            distribution = self._leaf_distribution(prediction)
            total = float(sum(distribution.values()))
            per_tree.append([{"category": category,
                              "probability": distribution.get(category, 0) / total
                              if total > 0 else 0.0}
                             for category in self.categories_])
        return combine_to_distribution(per_tree, "probability", key="category")

    def predict_confidence(self, input_data: Mapping[str, Any],
                           missing_strategy: int | None = None) -> list[dict]:
        """Wilson confidence of every class, combined over the trees."""
        self._check_classification()
        if self.boosting_:
            raise ValueError("Confidences are not available for boosted ensembles")
        predictions, _ = self._votes(input_data, missing_strategy)
        per_tree = []
        for prediction in predictions:
            distribution = self._leaf_distribution(prediction)
            per_tree.append([{"category": category,
                              "confidence": ws_confidence(category, distribution)
                              if distribution.get(category) else 0.0}
                             for category in self.categories_])
        return combine_to_distribution(per_tree, "confidence", key="category")

    def predict_votes(self, input_data: Mapping[str, Any],
                      missing_strategy: int | None = None) -> list[dict]:
        """Number of trees voting for every class."""
        self._check_classification()
        if self.boosting_:
            raise ValueError("Votes are not available for boosted ensembles")
        predictions, _ = self._votes(input_data, missing_strategy)
        votes = {category: 0 for category in self.categories_}
        for prediction in predictions:
            votes[prediction.prediction] = votes.get(prediction.prediction, 0) + 1
        return [{"category": category, "votes": count} for category, count in votes.items()]

    def _category_index(self, category) -> int:
        try:
            return self.categories_.index(category)
        except ValueError:
            return len(self.categories_)

    def predict_operating(self, input_data: Mapping[str, Any],
                          operating_point: Mapping[str, Any],
                          missing_strategy: int | None = None) -> dict:
        """
        Prediction using an operating point instead of the plain argmax.

        ``operating_point`` is ``{"kind": "probability" | "confidence" |
        "votes", "positive_class": ..., "threshold": ...}``.  The positive
        class is predicted when its measure is above the threshold;
        otherwise the best of the remaining classes is.
        """
        self._check_classification()
        kind = operating_point.get("kind", "probability")
        positive_class = operating_point.get("positive_class",
                                             operating_point.get("positiveClass"))
        threshold = operating_point.get("threshold")
        if kind not in OPERATING_POINT_KINDS:
            raise InputValidationError(f"Invalid operating point kind {kind!r}. Allowed"
                                       f" kinds: {', '.join(OPERATING_POINT_KINDS)}")
        if positive_class not in self.categories_:
            raise InputValidationError(
                f"The positive class {positive_class!r} is not one of the"
                f" objective classes {self.categories_!r}")
        if not isinstance(threshold, (int, float)) or isinstance(threshold, bool):
            raise InputValidationError("The operating point needs a numeric threshold")
        if kind == "probability":
            predictions = self.predict_probability(input_data, missing_strategy)
        elif kind == "confidence":
            predictions = self.predict_confidence(input_data, missing_strategy)
        else:
            predictions = self.predict_votes(input_data, missing_strategy)
        position = self.categories_.index(positive_class)
        if predictions[position][kind] > threshold:
            chosen = predictions[position]
        else:
            ranked = sorted(predictions, key=lambda item: (
                -item[kind], self._category_index(item["category"])))
            others = [item for item in ranked if item["category"] != positive_class]
            if not others:
                raise InputValidationError(
                    f"No class other than {positive_class!r} to predict below the threshold")
            chosen = others[0]
        return {"prediction": chosen["category"], kind: chosen[kind]}
