import pytest

from treevote import DecisionTree, ModelConfigurationError
from treevote.constants import LAST_PREDICTION, PROPORTIONAL

from conftest import IRIS_ROOT, PRICE_ROOT


def test_last_prediction_reaches_leaf(iris_fields):
    tree = DecisionTree(IRIS_ROOT, iris_fields)
    result = tree.predict({"000002": 1.0})
    assert result.prediction == "Iris-setosa"
    assert result.confidence == 0.92865
    assert result.count == 50
    assert result.path == ['(<= (f "000002") 2.45)']

    result = tree.predict({"000002": 5.0, "000003": 2.0})
    assert result.prediction == "Iris-virginica"
    assert result.path == ['(> (f "000002") 2.45)', '(> (f "000003") 1.75)']


def test_last_prediction_stops_on_missing_field(iris_fields):
    tree = DecisionTree(IRIS_ROOT, iris_fields)
    result = tree.predict({"000002": 5.0}, LAST_PREDICTION)
    assert result.prediction == "Iris-versicolor"
    assert result.count == 100
    assert len(result.path) == 1

    root = tree.predict({})
    assert root.prediction == "Iris-versicolor"
    assert root.path == []


def test_path_length_matches_depth(iris_fields):
    tree = DecisionTree(IRIS_ROOT, iris_fields)
    for data in ({"000002": 1.0}, {"000002": 3.0, "000003": 1.0},
                 {"000002": 3.0, "000003": 2.0}):
        result = tree.predict(data)
        depth, path = tree.depth(data)
        assert len(result.path) == depth - 1
        assert path == result.path


def test_depth_two_level_tree(iris_fields):
    root = {"predicate": True, "output": "Iris-setosa",
            "children": [
                {"predicate": {"op": "<", "field": "000000", "value": 5},
                 "output": "Iris-setosa"},
                {"predicate": {"op": ">=", "field": "000000", "value": 5},
                 "output": "Iris-virginica"},
            ]}
    tree = DecisionTree(root, iris_fields)
    depth, path = tree.depth({"000000": 6.1})
    assert depth == 2
    assert path == ['(>= (f "000000") 5)']


def test_depth_rejected_by_root(iris_fields):
    root = {"predicates": [{"op": ">", "field": "000000", "value": 5}],
            "output": "Iris-setosa"}
    tree = DecisionTree(root, iris_fields)
    assert tree.depth({"000000": 1}) == (0, [])
    assert tree.depth({"000000": 7}) == (1, [])


def test_proportional_classification(iris_fields):
    tree = DecisionTree(IRIS_ROOT, iris_fields)
    result = tree.predict({"000002": 5.0}, PROPORTIONAL)
    assert result.prediction == "Iris-versicolor"
    assert result.count == 100
    assert result.distribution == [["Iris-versicolor", 50], ["Iris-virginica", 50]]
    assert result.path == ['(> (f "000002") 2.45)']
    assert 0 < result.confidence < 0.5

    result = tree.predict({}, PROPORTIONAL)
    # three way tie, lowest category wins
    assert result.prediction == "Iris-setosa"
    assert result.count == 150
    assert result.path == []


def test_proportional_regression(price_fields):
    tree = DecisionTree(PRICE_ROOT, price_fields)
    assert tree.regression
    result = tree.predict({}, PROPORTIONAL)
    assert result.prediction == pytest.approx(20.0)
    assert result.count == 8
    assert result.confidence > 0

    single = tree.predict({"000000": 7}, PROPORTIONAL)
    assert single.prediction == 30
    assert single.confidence == 2.0


def test_unknown_field_is_configuration_error(price_fields):
    root = {"predicate": True, "output": 1.0,
            "children": [{"predicate": {"op": "<", "field": "00000f", "value": 1},
                          "output": 2.0}]}
    with pytest.raises(ModelConfigurationError):
        DecisionTree(root, price_fields)
    with pytest.raises(ModelConfigurationError):
        DecisionTree({"output": 1.0}, price_fields)


def test_unknown_missing_strategy(iris_fields):
    tree = DecisionTree(IRIS_ROOT, iris_fields)
    with pytest.raises(ValueError):
        tree.predict({}, 7)


def test_export_rules(iris_fields):
    tree = DecisionTree(IRIS_ROOT, iris_fields)
    rules = tree.export_rules()
    assert rules[0] == "petal length <= 2.45 => Iris-setosa"
    assert rules[1] == "petal length > 2.45 and petal width <= 1.75 => Iris-versicolor"
    assert len(rules) == 3


def test_print_tree(iris_fields, capsys):
    DecisionTree(IRIS_ROOT, iris_fields).print_tree()
    out = capsys.readouterr().out
    assert "if petal length <= 2.45:" in out
    assert "Predict Iris-virginica | count=46" in out


def test_export_graphviz_source(iris_fields):
    pytest.importorskip("graphviz")
    source = DecisionTree(IRIS_ROOT, iris_fields).export_graphviz()
    assert "digraph" in source
    assert "petal width > 1.75" in source
