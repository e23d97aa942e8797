import pytest

from treevote import Fields, FieldSpec, InputValidationError, ModelConfigurationError

from conftest import IRIS_FIELDS


def test_name_and_id_resolution(iris_fields):
    assert iris_fields.field_id("petal length") == "000002"
    assert iris_fields.field_id("000002") == "000002"
    assert iris_fields.field_id("unknown") is None
    assert iris_fields.objective.name == "species"
    assert iris_fields.categories == ["Iris-setosa", "Iris-versicolor", "Iris-virginica"]


def test_filter_input_keeps_caller_data(iris_fields):
    data = {"petal length": "1.5", "000003": 0.2, "species": "Iris-setosa",
            "sepal length": None, "height": 3}
    snapshot = dict(data)
    clean, unused = iris_fields.filter_input(data)
    assert clean == {"000002": 1.5, "000003": 0.2}
    assert sorted(unused) == ["height", "sepal length", "species"]
    assert data == snapshot


def test_numeric_casting():
    spec = FieldSpec("000000", "price", "numeric", prefix="$", suffix=" USD")
    assert spec.cast("$12.5 USD") == 12.5
    assert spec.cast(3) == 3
    with pytest.raises(InputValidationError):
        spec.cast("cheap")
    with pytest.raises(InputValidationError):
        spec.cast(True)


def test_categorical_casting(iris_fields):
    spec = iris_fields["000004"]
    assert spec.cast(3) == "3"
    assert spec.cast(False) == "false"
    with pytest.raises(InputValidationError):
        spec.cast(["Iris-setosa"])


def test_invalid_fields():
    with pytest.raises(ModelConfigurationError):
        Fields({"000000": {"name": "x"}})
    with pytest.raises(ModelConfigurationError):
        Fields({"000000": {"name": "x", "optype": "shape"}})
    with pytest.raises(ModelConfigurationError):
        Fields(IRIS_FIELDS, "00000f")
    with pytest.raises(ModelConfigurationError):
        Fields(IRIS_FIELDS).spec("00000f")


def test_regression_has_no_categories(price_fields):
    assert price_fields.categories == []
