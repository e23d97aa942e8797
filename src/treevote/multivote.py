"""
treevote.multivote
==================

Combination of the votes issued by the trees of an ensemble.

A :class:`MultiVote` wraps the per-tree :class:`~treevote.prediction.Prediction`
records of one input and reduces them to a single prediction with one of
the methods of :class:`CombinationMethod`:

* ``PLURALITY`` (0) : one vote per tree / plain average for regressions.
* ``CONFIDENCE`` (1) : confidence weighted votes / error weighted average.
* ``PROBABILITY`` (2) : votes weighted by the class probabilities of each
  leaf's training distribution / plain average for regressions.
* ``THRESHOLD`` (3) : predict a given category only if at least
  ``threshold`` trees vote for it.
* ``BOOSTING`` (-1) : weighted sum of the votes plus the ensemble offsets,
  followed by a softmax for classifications.

Ties between categories with the same accumulated weight are broken by the
``order`` of the first tree that voted for them.
"""
from __future__ import annotations

import logging
import math
from dataclasses import fields as dc_fields, replace
from enum import IntEnum
from typing import Any, Iterable, Mapping

from .constants import PRECISION, TOP_RANGE
from .exceptions import CombinationError
from .prediction import Prediction
from .stats import ws_confidence

logger = logging.getLogger(__name__)

PREDICTION_ATTRIBUTES = {item.name for item in dc_fields(Prediction)}
ATTRIBUTE_ALIASES = {"class": "objective_class", "objClass": "objective_class"}


class CombinationMethod(IntEnum):
    BOOSTING = -1
    PLURALITY = 0
    CONFIDENCE = 1
    PROBABILITY = 2
    THRESHOLD = 3


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _as_prediction(item: Any) -> Prediction:
    if isinstance(item, Prediction):
        return replace(item, path=list(item.path))
    if isinstance(item, Mapping):
        values = {}
        for key, value in item.items():
            key = ATTRIBUTE_ALIASES.get(key, key)
            if key in PREDICTION_ATTRIBUTES:
                values[key] = value
        if "prediction" not in values:
            raise CombinationError(f"The vote {dict(item)!r} has no prediction")
        return Prediction(**values)
    raise CombinationError(f"Cannot use {item!r} as a vote")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_integer(value) -> bool:
    if not _is_number(value) or value < 1:
        return False
    return isinstance(value, int) or float(value).is_integer()


def combine_to_distribution(distributions: Iterable[list], measure: str = "probability",
                            key: str | None = None) -> list[dict]:
    """
    Add up several per-class distributions and renormalise the result.

    Parameters
    ----------
    distributions : iterable of list of dict
        Each element lists every class once, e.g.
        ``[{"category": "a", "probability": 0.2}, ...]``, in the same order.
    measure : str, default="probability"
        Entry holding the quantity to add (``probability``, ``confidence``,
        ``votes``).
    key : str, optional
        Entry holding the class; guessed from the first element
        (``category`` or ``prediction``) when omitted.

    Returns
    -------
    list of dict
        One entry per class, keyed like the inputs.  The measures are
        ``nan`` when the grand total is zero.
    """
    output: list[float] = []
    classes: list = []
    total = 0.0
    for distribution in distributions:
        if key is None and distribution:
            key = "category" if "category" in distribution[0] else "prediction"
        if not output:
            output = [0.0] * len(distribution)
            classes = [item[key] for item in distribution]
        for index, item in enumerate(distribution):
            output[index] += item[measure]
            total += item[measure]
    if total == 0:
        return [{key: name, measure: float("nan")} for name in classes]
    return [{key: name, measure: value / total} for name, value in zip(classes, output)]


# -----------------------------------------------------------------------------
# Combination strategies
# -----------------------------------------------------------------------------
class Combiner:
    """Common interface of the combination strategies."""

    method: CombinationMethod
    # attribute used to weight each vote (None: one vote per tree)
    weight_label: str | None = None
    # attributes every vote must carry
    required_keys: tuple[str, ...] = ()

    def combine(self, votes: "MultiVote", options: Mapping[str, Any] | None) -> dict:
        raise NotImplementedError


class PluralityCombiner(Combiner):
    method = CombinationMethod.PLURALITY

    def combine(self, votes, options):
        if votes.is_regression():
            return votes.average()
        return votes.combine_categorical(self.weight_label)


class ConfidenceCombiner(Combiner):
    method = CombinationMethod.CONFIDENCE
    weight_label = "confidence"
    required_keys = ("confidence",)

    def combine(self, votes, options):
        if votes.is_regression():
            return votes.error_weighted()
        return votes.combine_categorical(self.weight_label)


class ProbabilityCombiner(Combiner):
    method = CombinationMethod.PROBABILITY
    weight_label = "probability"
    required_keys = ("distribution", "count")

    def combine(self, votes, options):
        if votes.is_regression():
            return votes.average()
        exploded = MultiVote(votes.probability_weight(), categories=votes.categories)
        return exploded.combine_categorical(self.weight_label)


class ThresholdCombiner(Combiner):
    method = CombinationMethod.THRESHOLD

    def combine(self, votes, options):
        if votes.is_regression():
            return votes.average()
        return votes.single_out_category(options).combine_categorical(self.weight_label)


class BoostingCombiner(Combiner):
    method = CombinationMethod.BOOSTING
    weight_label = "weight"
    required_keys = ("weight",)

    def combine(self, votes, options):
        return votes.boosting_combination()


COMBINERS = {combiner.method: combiner for combiner in (
    PluralityCombiner(), ConfidenceCombiner(), ProbabilityCombiner(),
    ThresholdCombiner(), BoostingCombiner())}

if set(COMBINERS) != set(CombinationMethod):
    raise ImportError("Every combination method needs a combiner: missing "
                      f"{sorted(set(CombinationMethod) - set(COMBINERS))}")


# -----------------------------------------------------------------------------
# MultiVote
# -----------------------------------------------------------------------------
class MultiVote:
    """
    Votes of the trees of an ensemble for one input.

    Parameters
    ----------
    predictions : list of Prediction or dict, or a single one
        Per-tree votes.  Dictionaries are converted to
        :class:`~treevote.prediction.Prediction` records.  In
        ``probabilities`` mode, each element is instead a per-class
        probability list.
    boosting : bool, default=False
        The votes come from a boosted ensemble; ``combine`` always uses
        the boosting method.
    boosting_offsets : float or dict, optional
        Initial offset of a boosted regression, or per-class offsets of a
        boosted classification.
    categories : list, optional
        Declared order of the objective classes, used to break ties
        between boosted class probabilities.
    probabilities : bool, default=False
        Raw probability-array mode (see :func:`combine_to_distribution`).

    Notes
    -----
    The records are copied on construction.  When any of them lacks an
    ``order`` all are numbered 0..N-1 following the given sequence.
    """

    def __init__(self, predictions, *, boosting: bool = False,
                 boosting_offsets=None, categories=None, probabilities: bool = False):
        if predictions is None:
            predictions = []
        elif isinstance(predictions, (Prediction, Mapping)):
            predictions = [predictions]
        self.boosting = boosting
        self.boosting_offsets = boosting_offsets
        self.categories = list(categories) if categories else []
        self.probabilities = probabilities
        if probabilities:
            self.predictions = [[dict(item) for item in distribution]
                                for distribution in predictions]
            return
        self.predictions = [_as_prediction(item) for item in predictions]
        if any(prediction.order is None for prediction in self.predictions):
            for index, prediction in enumerate(self.predictions):
                prediction.order = index

    def __len__(self) -> int:
        return len(self.predictions)

    def __repr__(self) -> str:
        return f"MultiVote({self.predictions!r}, boosting={self.boosting!r})"

    def is_regression(self) -> bool:
        """All the votes are numbers."""
        return all(_is_number(prediction.prediction) for prediction in self.predictions)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def combine(self, method=CombinationMethod.PLURALITY,
                options: Mapping[str, Any] | None = None):
        """
        Reduce the votes to a single prediction.

        Parameters
        ----------
        method : CombinationMethod or int, default=PLURALITY
            Combination method.  Ignored for boosted votes, which are always
            combined with ``BOOSTING``.
        options : dict, optional
            ``{"threshold": int, "category": Any}`` for the threshold method.

        Returns
        -------
        dict
            ``prediction`` plus ``confidence`` (classifications and
            averaged regressions) or ``probability``/``probabilities``
            (boosted classifications).  In probabilities mode the combined
            per-class list is returned instead.

        Raises
        ------
        CombinationError
            If there are no votes, the method is unknown or the votes lack
            the information the method needs.
        """
        if self.probabilities:
            if not self.predictions:
                raise CombinationError("No predictions to be combined.")
            return combine_to_distribution(self.predictions)
        if not self.predictions:
            raise CombinationError("No predictions to be combined.")
        if self.boosting:
            method = CombinationMethod.BOOSTING
        try:
            method = CombinationMethod(method)
        except ValueError:
            raise CombinationError(f"Unknown combination method {method!r}") from None
        combiner = COMBINERS[method]
        for key in combiner.required_keys:
            if not all(prediction.has(key) for prediction in self.predictions):
                raise CombinationError(
                    "Not enough data to use the selected prediction method "
                    f"({method.name.lower()}). Lacks {key} information.")
        logger.debug("Combining %d votes with method %s", len(self.predictions), method.name)
        return combiner.combine(self, options)

    # ------------------------------------------------------------------
    # Regression
    # ------------------------------------------------------------------
    def average(self) -> dict:
        """
        Mean of the predictions and of the available confidences.

        The confidence is rounded to 5 decimals like every other combined
        confidence; the platform returns the unrounded mean here.
        """
        total = len(self.predictions)
        if total < 1:
            raise CombinationError("No predictions to be combined.")
        result = sum(prediction.prediction for prediction in self.predictions) / total
        confidences = [prediction.confidence for prediction in self.predictions
                       if _is_number(prediction.confidence) and
                       not math.isnan(prediction.confidence)]
        output = {"prediction": result}
        if confidences:
            output["confidence"] = round(sum(confidences) / len(confidences), PRECISION)
        return output

    def error_weights(self, top_range: float = TOP_RANGE) -> list[float]:
        """
        Weights ``e^-scaled_error`` where each confidence (the error of a
        regression tree) is linearly rescaled into ``[0, top_range]``.
        Uniform weights when all errors are equal.
        """
        errors = []
        for prediction in self.predictions:
            error = prediction.confidence
            if not _is_number(error):
                raise CombinationError("Not enough data to use the selected "
                                       "prediction method. Lacks confidence information.")
            if not math.isfinite(error):
                raise CombinationError(
                    f"Cannot weight a vote whose confidence is {error!r}")
            errors.append(error)
        min_error = min(errors)
        error_range = float(max(errors) - min_error)
        if error_range > 0:
            return [math.exp((min_error - error) / error_range * top_range)
                    for error in errors]
        return [1.0] * len(errors)

    def error_weighted(self) -> dict:
        """Average of the predictions weighted by their (rescaled) errors."""
        weights = self.error_weights(TOP_RANGE)
        normalization_factor = sum(weights)
        result = 0.0
        combined_error = 0.0
        for prediction, weight in zip(self.predictions, weights):
            result += prediction.prediction * weight
            combined_error += prediction.confidence * weight
        return {"prediction": result / normalization_factor,
                "confidence": round(combined_error / normalization_factor, PRECISION)}

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------
    def combine_categorical(self, weight_label: str | None = None) -> dict:
        """
        Category with the highest accumulated weight.

        Each vote weighs 1 when ``weight_label`` is None, otherwise the
        value of that attribute.  The combined confidence is the weighted
        average of the confidences of the votes for the winning category,
        or a Wilson score of the combined distribution when the votes carry
        no confidence.
        """
        if not self.predictions:
            raise CombinationError("No predictions to be combined.")
        mode: dict[Any, list] = {}
        for prediction in self.predictions:
            weight = 1
            if weight_label is not None:
                if not prediction.has(weight_label):
                    raise CombinationError(
                        "Not enough data to use the selected prediction method. "
                        f"Lacks {weight_label} information.")
                weight = prediction.get(weight_label)
            category = prediction.prediction
            if category in mode:
                mode[category][0] += weight
            else:
                mode[category] = [weight, prediction.order]
        winner = sorted(mode.items(), key=lambda item: (-item[1][0], item[1][1]))[0][0]

        if all(prediction.has("confidence") for prediction in self.predictions):
            return self.weighted_confidence(winner, weight_label)
        distribution, count = self.combine_distribution(weight_label)
        confidence = ws_confidence(winner, distribution, ws_n=count if count > 0 else None)
        return {"prediction": winner, "confidence": confidence}

    def weighted_confidence(self, combined_prediction, weight_label: str | None = None) -> dict:
        """Weighted average confidence of the votes for ``combined_prediction``."""
        agreeing = [prediction for prediction in self.predictions
                    if prediction.prediction == combined_prediction]
        if weight_label is not None:
            for prediction in agreeing:
                if not prediction.has("confidence") or not prediction.has(weight_label):
                    raise CombinationError(
                        "Not enough data to use the selected prediction method. "
                        f"Lacks {weight_label} information.")
        final_confidence = 0.0
        total_weight = 0.0
        for prediction in agreeing:
            weight = 1 if weight_label is None else prediction.get(weight_label)
            final_confidence += weight * prediction.confidence
            total_weight += weight
        if total_weight > 0:
            final_confidence = round(final_confidence / total_weight, PRECISION)
        else:
            final_confidence = float("nan")
        return {"prediction": combined_prediction, "confidence": final_confidence}

    def combine_distribution(self, weight_label: str | None = None) -> tuple[dict, float]:
        """
        Distribution ``{category: accumulated weight}`` of the votes and the
        total number of training instances behind them.
        """
        distribution: dict[Any, float] = {}
        total = 0
        for prediction in self.predictions:
            if weight_label is None:
                weight = 1
            elif prediction.has(weight_label):
                weight = prediction.get(weight_label)
            else:
                raise CombinationError(
                    "Not enough data to use the selected prediction method. "
                    f"Lacks {weight_label} information.")
            distribution[prediction.prediction] = \
                distribution.get(prediction.prediction, 0.0) + weight
            total += prediction.count or 0
        return distribution, total

    def probability_weight(self) -> list[Prediction]:
        """
        Split every vote into one vote per category of its leaf
        distribution, weighted by the category's probability.
        """
        predictions = []
        for prediction in self.predictions:
            if not prediction.has("distribution") or not prediction.has("count"):
                raise CombinationError("Probability weighting is not available because"
                                       " distribution information is missing.")
            total = prediction.count
            if not _is_positive_integer(total):
                raise CombinationError("Probability weighting is not available because"
                                       f" distribution seems to have {total} as number"
                                       " of instances in a node")
            for category, instances in prediction.distribution:
                predictions.append(Prediction(prediction=category,
                                              probability=float(instances) / total,
                                              count=instances,
                                              order=prediction.order))
        return predictions

    def single_out_category(self, options: Mapping[str, Any] | None) -> "MultiVote":
        """
        Votes for ``options["category"]`` if there are at least
        ``options["threshold"]`` of them, otherwise the remaining votes.
        """
        if not options or "threshold" not in options or "category" not in options:
            raise CombinationError("No category and threshold information was found."
                                   " Add threshold and category info. E.g."
                                   " {'threshold': 6, 'category': 'Iris-virginica'}.")
        threshold = options["threshold"]
        category = options["category"]
        if not _is_positive_integer(threshold):
            raise CombinationError(
                f"The threshold must be a positive integer, got {threshold!r}.")
        length = len(self.predictions)
        if threshold > length:
            raise CombinationError(f"You cannot set a threshold value larger than {length}."
                                   " The ensemble has not enough models to use this"
                                   " threshold value.")
        category_predictions = []
        rest_of_predictions = []
        for prediction in self.predictions:
            if prediction.prediction == category:
                category_predictions.append(prediction)
            else:
                rest_of_predictions.append(prediction)
        if len(category_predictions) >= threshold:
            return MultiVote(category_predictions, categories=self.categories)
        return MultiVote(rest_of_predictions, categories=self.categories)

    # ------------------------------------------------------------------
    # Boosting
    # ------------------------------------------------------------------
    def _category_index(self, category) -> int:
        try:
            return self.categories.index(category)
        except ValueError:
            return len(self.categories)

    def boosting_combination(self) -> dict:
        """
        Weighted sum of the boosted votes plus offsets.

        Regressions return the sum itself.  Classifications sum the votes
        of each class into a logit and apply a softmax; classes are sorted
        by probability, ties going to the class declared first.
        """
        if self.predictions[0].objective_class is None:
            offset = self.boosting_offsets or 0.0
            return {"prediction": sum(prediction.weight * prediction.prediction
                                      for prediction in self.predictions) + offset}
        offsets = self.boosting_offsets or {}
        logits: dict[Any, float] = {}
        for prediction in self.predictions:
            if prediction.objective_class is None:
                continue
            logits[prediction.objective_class] = (
                logits.get(prediction.objective_class, 0.0) +
                prediction.weight * prediction.prediction)
        for category in logits:
            logits[category] += offsets.get(category, 0)
        try:
            exponentials = {category: math.exp(logit) for category, logit in logits.items()}
        except OverflowError:
            raise CombinationError("The boosted class scores are too large to "
                                   "compute their probabilities.") from None
        total = sum(exponentials.values())
        if total == 0:
            logger.warning("Boosted class scores underflow: probabilities are undefined")
            probabilities = [(category, float("nan")) for category in exponentials]
            probabilities.sort(key=lambda item: self._category_index(item[0]))
        else:
            probabilities = [(category, value / total)
                             for category, value in exponentials.items()]
            probabilities.sort(key=lambda item: (-item[1], self._category_index(item[0])))
        prediction, probability = probabilities[0]
        return {"prediction": prediction,
                "probability": round(probability, PRECISION),
                "probabilities": [{"category": category,
                                   "probability": round(value, PRECISION)}
                                  for category, value in probabilities]}
