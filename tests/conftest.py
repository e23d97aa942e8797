import copy

import pytest

from treevote import Fields

SPECIES = [["Iris-setosa", 50], ["Iris-versicolor", 50], ["Iris-virginica", 50]]

IRIS_FIELDS = {
    "000000": {"name": "sepal length", "optype": "numeric"},
    "000002": {"name": "petal length", "optype": "numeric"},
    "000003": {"name": "petal width", "optype": "numeric"},
    "000004": {"name": "species", "optype": "categorical",
               "summary": {"categories": SPECIES}},
    "000005": {"name": "review", "optype": "text",
               "summary": {"term_forms": {"good": ["goods"]}},
               "term_analysis": {"case_sensitive": False, "token_mode": "all"}},
    "000006": {"name": "colors", "optype": "items",
               "item_analysis": {"separator": ";"}},
}

IRIS_ROOT = {
    "id": 0, "predicate": True, "output": "Iris-versicolor", "count": 150,
    "confidence": 0.26, "distribution": SPECIES,
    "children": [
        {"id": 1, "predicate": {"operator": "<=", "field": "000002", "value": 2.45},
         "output": "Iris-setosa", "count": 50, "confidence": 0.92865,
         "distribution": [["Iris-setosa", 50]]},
        {"id": 2, "predicate": {"operator": ">", "field": "000002", "value": 2.45},
         "output": "Iris-versicolor", "count": 100, "confidence": 0.40383,
         "distribution": [["Iris-versicolor", 50], ["Iris-virginica", 50]],
         "children": [
             {"id": 3, "predicate": {"operator": "<=", "field": "000003", "value": 1.75},
              "output": "Iris-versicolor", "count": 54, "confidence": 0.80317,
              "distribution": [["Iris-versicolor", 49], ["Iris-virginica", 5]]},
             {"id": 4, "predicate": {"operator": ">", "field": "000003", "value": 1.75},
              "output": "Iris-virginica", "count": 46, "confidence": 0.88489,
              "distribution": [["Iris-versicolor", 1], ["Iris-virginica", 45]]},
         ]},
    ],
}

PRICE_FIELDS = {
    "000000": {"name": "size", "optype": "numeric"},
    "000001": {"name": "price", "optype": "numeric"},
}

PRICE_ROOT = {
    "predicate": True, "output": 20.0, "count": 8, "confidence": 9.5,
    "children": [
        {"predicate": {"operator": "<", "field": "000000", "value": 5},
         "output": 10.0, "count": 4, "confidence": 1.5,
         "distribution": [[9, 2], [11, 2]]},
        {"predicate": {"operator": ">=", "field": "000000", "value": 5},
         "output": 30.0, "count": 4, "confidence": 2.0,
         "distribution": [[30, 4]]},
    ],
}

BOOSTED_ROOT = {
    "predicate": True, "output": 1.0, "count": 10, "g_sum": -4.0, "h_sum": 4.0,
    "children": [
        {"predicate": {"operator": "<", "field": "000000", "value": 5},
         "output": 2.0, "count": 6, "g_sum": -6.0, "h_sum": 3.0,
         "children": [
             {"predicate": {"operator": "<", "field": "000001", "value": 1},
              "output": 3.0, "count": 2, "g_sum": -3.0, "h_sum": 1.0},
             {"predicate": {"operator": ">=", "field": "000001", "value": 1},
              "output": 1.0, "count": 4, "g_sum": -3.0, "h_sum": 2.0},
         ]},
        {"predicate": {"operator": ">=", "field": "000000", "value": 5},
         "output": -0.5, "count": 4, "g_sum": 2.0, "h_sum": 1.0},
    ],
}

BOOSTED_FIELDS = {
    "000000": {"name": "x", "optype": "numeric"},
    "000001": {"name": "y", "optype": "numeric"},
    "000002": {"name": "target", "optype": "numeric"},
}


def model_resource(resource_id, root, fields=None, objective="000004", boosting=None):
    model = {"resource": resource_id,
             "object": {"objective_field": objective,
                        "model": {"root": copy.deepcopy(root),
                                  "fields": copy.deepcopy(fields or IRIS_FIELDS)}}}
    if boosting is not None:
        model["object"]["boosting"] = boosting
    return model


def stump(field, value, low, high, low_confidence=0.9, high_confidence=0.8):
    return {
        "predicate": True, "output": low, "count": 150, "distribution": SPECIES,
        "children": [
            {"predicate": {"operator": "<=", "field": field, "value": value},
             "output": low, "count": 50, "confidence": low_confidence,
             "distribution": [[low, 45], [high, 5]]},
            {"predicate": {"operator": ">", "field": field, "value": value},
             "output": high, "count": 100, "confidence": high_confidence,
             "distribution": [[low, 10], [high, 90]]},
        ],
    }


@pytest.fixture
def iris_fields():
    return Fields(IRIS_FIELDS, "000004")


@pytest.fixture
def price_fields():
    return Fields(PRICE_FIELDS, "000001")


@pytest.fixture
def boosted_fields():
    return Fields(BOOSTED_FIELDS, "000002")


@pytest.fixture
def iris_models():
    return [
        model_resource("model/1", IRIS_ROOT),
        model_resource("model/2", stump("000003", 0.8, "Iris-setosa", "Iris-virginica")),
        model_resource("model/3", stump("000002", 4.5, "Iris-versicolor", "Iris-virginica")),
    ]


@pytest.fixture
def iris_ensemble():
    return {"resource": "ensemble/1",
            "object": {"objective_field": "000004",
                       "models": ["model/1", "model/2", "model/3"]}}
