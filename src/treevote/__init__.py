# treevote/__init__.py
"""
treevote: offline scoring of decision tree ensembles from their JSON
descriptions (scikit-learn style engines).

Exports:
    - load_model, load_ensemble
    - LocalModel, LocalEnsemble
    - DecisionTree, BoostedTree
    - MultiVote, CombinationMethod
    - Predicate, PredicateSet, ALWAYS
"""
from .boosted import BoostedTree
from .ensemble import (EnsembleDescriptor, LocalEnsemble, LocalModel, ModelDescriptor,
                       load_ensemble, load_model)
from .exceptions import (CombinationError, InputValidationError, ModelConfigurationError,
                         NotLoadedError, TreevoteError)
from .fields import Fields, FieldSpec
from .multivote import CombinationMethod, MultiVote
from .predicate import ALWAYS, Predicate, PredicateSet
from .prediction import Prediction
from .tree import DecisionTree

__all__ = [
    "load_model", "load_ensemble", "ModelDescriptor", "EnsembleDescriptor",
    "LocalModel", "LocalEnsemble", "DecisionTree", "BoostedTree",
    "MultiVote", "CombinationMethod", "Predicate", "PredicateSet", "ALWAYS",
    "Prediction", "Fields", "FieldSpec",
    "TreevoteError", "ModelConfigurationError", "InputValidationError",
    "CombinationError", "NotLoadedError",
]
__version__ = "0.1.0"
