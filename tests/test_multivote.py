import math

import pytest

from treevote import CombinationError, CombinationMethod, MultiVote, Prediction


def test_plurality_tie_goes_to_first_tree():
    votes = MultiVote([{"prediction": "A", "order": 0}, {"prediction": "B", "order": 1}])
    assert votes.combine(CombinationMethod.PLURALITY)["prediction"] == "A"
    votes = MultiVote([{"prediction": "B"}, {"prediction": "A"}])
    assert votes.combine(0)["prediction"] == "B"


def test_plurality_majority_and_confidence():
    votes = MultiVote([{"prediction": "A", "confidence": 0.8},
                       {"prediction": "B", "confidence": 0.6},
                       {"prediction": "B", "confidence": 0.4}])
    result = votes.combine(CombinationMethod.PLURALITY)
    assert result == {"prediction": "B", "confidence": 0.5}


def test_regression_average_skips_missing_confidence():
    votes = MultiVote([{"prediction": 10, "confidence": 2.0}, {"prediction": 20}])
    assert votes.combine(0) == {"prediction": 15, "confidence": 2.0}


def test_error_weighted_uniform():
    votes = MultiVote([{"prediction": 10, "confidence": 1},
                       {"prediction": 20, "confidence": 1}])
    result = votes.combine(CombinationMethod.CONFIDENCE)
    assert result["prediction"] == 15
    assert result["confidence"] == 1


def test_error_weighted_rescaling():
    votes = MultiVote([{"prediction": 10, "confidence": 0},
                       {"prediction": 20, "confidence": 1}])
    weight = math.exp(-10)
    result = votes.combine(CombinationMethod.CONFIDENCE)
    assert result["prediction"] == pytest.approx((10 + 20 * weight) / (1 + weight))
    assert votes.error_weights() == [1.0, pytest.approx(weight)]


def test_error_weighted_rejects_infinite_confidence():
    votes = MultiVote([{"prediction": 10, "confidence": float("inf")},
                       {"prediction": 20, "confidence": 1}])
    with pytest.raises(CombinationError):
        votes.combine(CombinationMethod.CONFIDENCE)


def test_confidence_weighted_classification():
    votes = MultiVote([{"prediction": "A", "confidence": 0.9},
                       {"prediction": "B", "confidence": 0.6},
                       {"prediction": "B", "confidence": 0.5}])
    result = votes.combine(CombinationMethod.CONFIDENCE)
    assert result["prediction"] == "B"
    assert result["confidence"] == pytest.approx(0.61 / 1.1, abs=1e-5)


def test_confidence_zero_weight_is_nan():
    votes = MultiVote([{"prediction": "A", "confidence": 0}])
    assert math.isnan(votes.combine(CombinationMethod.CONFIDENCE)["confidence"])


def test_missing_weight_label_names_method():
    votes = MultiVote([{"prediction": "A", "confidence": 0.9}, {"prediction": "B"}])
    with pytest.raises(CombinationError, match="confidence"):
        votes.combine(CombinationMethod.CONFIDENCE)


def test_probability_tie_resolved_by_order():
    votes = MultiVote([
        {"prediction": "A", "distribution": [["A", 3], ["B", 1]], "count": 4},
        {"prediction": "B", "distribution": [["A", 1], ["B", 3]], "count": 4},
    ])
    result = votes.combine(CombinationMethod.PROBABILITY)
    assert result["prediction"] == "A"
    assert 0 < result["confidence"] < 0.5


def test_probability_requires_integer_counts():
    votes = MultiVote([{"prediction": "A", "distribution": [["A", 3.5]], "count": 3.5}])
    with pytest.raises(CombinationError):
        votes.combine(CombinationMethod.PROBABILITY)
    empty_leaf = MultiVote([{"prediction": "A", "distribution": [], "count": 0}])
    with pytest.raises(CombinationError, match="number of instances"):
        empty_leaf.combine(CombinationMethod.PROBABILITY)
    votes = MultiVote([{"prediction": "A", "count": 3}])
    with pytest.raises(CombinationError, match="distribution"):
        votes.combine(CombinationMethod.PROBABILITY)


def test_threshold():
    votes = [{"prediction": "A"}, {"prediction": "B"}, {"prediction": "B"}]
    result = MultiVote(votes).combine(CombinationMethod.THRESHOLD,
                                      {"threshold": 1, "category": "A"})
    assert result["prediction"] == "A"
    result = MultiVote(votes).combine(CombinationMethod.THRESHOLD,
                                      {"threshold": 2, "category": "A"})
    assert result["prediction"] == "B"
    with pytest.raises(CombinationError):
        MultiVote(votes).combine(CombinationMethod.THRESHOLD,
                                 {"threshold": 4, "category": "A"})
    with pytest.raises(CombinationError):
        MultiVote(votes).combine(CombinationMethod.THRESHOLD)
    # no vote for the category and a non-positive threshold
    for threshold in (0, -1, 1.5):
        with pytest.raises(CombinationError, match="positive integer"):
            MultiVote(votes).combine(CombinationMethod.THRESHOLD,
                                     {"threshold": threshold, "category": "C"})


def test_categorical_without_votes():
    with pytest.raises(CombinationError, match="No predictions"):
        MultiVote([]).combine_categorical()


def test_boosting_softmax():
    votes = MultiVote([{"prediction": 2.0, "objective_class": "cat1", "weight": 1},
                       {"prediction": 1.0, "objective_class": "cat2", "weight": 1}],
                      boosting=True, boosting_offsets={}, categories=["cat1", "cat2"])
    result = votes.combine()
    assert result["prediction"] == "cat1"
    expected = math.exp(2) / (math.exp(2) + math.exp(1))
    assert result["probability"] == pytest.approx(expected, abs=1e-5)
    total = sum(item["probability"] for item in result["probabilities"])
    assert total == pytest.approx(1.0, abs=1e-9)


def test_boosting_ties_follow_category_order():
    votes = MultiVote([{"prediction": 1.0, "class": "cat1", "weight": 1},
                       {"prediction": 1.0, "class": "cat2", "weight": 1}],
                      boosting=True, categories=["cat2", "cat1"])
    assert votes.combine()["prediction"] == "cat2"


def test_boosting_offsets():
    votes = MultiVote([{"prediction": 0.0, "objective_class": "cat1", "weight": 1},
                       {"prediction": 0.0, "objective_class": "cat2", "weight": 1}],
                      boosting=True, boosting_offsets={"cat2": 1.0},
                      categories=["cat1", "cat2"])
    assert votes.combine()["prediction"] == "cat2"

    regression = MultiVote([{"prediction": 1.5, "weight": 0.5},
                            {"prediction": 2.0, "weight": 1.0}],
                           boosting=True, boosting_offsets=10.0)
    assert regression.combine(CombinationMethod.PLURALITY) == {"prediction": 12.75}


def test_boosting_overflow():
    votes = MultiVote([{"prediction": 1000.0, "objective_class": "cat1", "weight": 1}],
                      boosting=True)
    with pytest.raises(CombinationError):
        votes.combine()


def test_probabilities_mode():
    votes = MultiVote([
        [{"category": "a", "probability": 0.2}, {"category": "b", "probability": 0.8}],
        [{"category": "a", "probability": 0.6}, {"category": "b", "probability": 0.4}],
    ], probabilities=True)
    result = votes.combine()
    assert [item["category"] for item in result] == ["a", "b"]
    assert result[0]["probability"] == pytest.approx(0.4)
    assert result[1]["probability"] == pytest.approx(0.6)


def test_invalid_combinations():
    with pytest.raises(CombinationError):
        MultiVote([]).combine()
    with pytest.raises(CombinationError):
        MultiVote([{"prediction": "A"}]).combine(7)


def test_combine_is_idempotent():
    records = [Prediction("A", confidence=0.7), Prediction("B", confidence=0.9),
               Prediction("A", confidence=0.4)]
    votes = MultiVote(records)
    for method in (0, 1, 3):
        options = {"threshold": 1, "category": "B"}
        assert votes.combine(method, options) == votes.combine(method, options)
    assert [record.order for record in votes.predictions] == [0, 1, 2]
    assert all(record.order is None for record in records)
