"""
treevote.constants
==================

Codes and numeric defaults shared by the trees, the vote combiner and the
ensemble engines.
"""
from __future__ import annotations

# Missing value strategies
LAST_PREDICTION = 0
PROPORTIONAL = 1
MISSING_STRATEGIES = (LAST_PREDICTION, PROPORTIONAL)

# Combination methods (see treevote.multivote.CombinationMethod)
PLURALITY = 0
CONFIDENCE = 1
PROBABILITY = 2
THRESHOLD = 3
BOOSTING = -1

# Decimal places used when rounding combined confidences and probabilities
PRECISION = 5

# Wilson score interval z value (95%)
WS_Z = 1.96
# Regression error z value
RZ = 1.96

# Errors are rescaled into [0, TOP_RANGE] before weighting
TOP_RANGE = 10

NUMERIC = "numeric"
CATEGORICAL = "categorical"
TEXT = "text"
ITEMS = "items"
DATETIME = "datetime"
OPTYPES = (NUMERIC, CATEGORICAL, TEXT, ITEMS, DATETIME)
TEXT_OPTYPES = (TEXT, ITEMS)

# Text analysis token modes
TM_TOKENS = "tokens_only"
TM_FULL_TERM = "full_terms_only"
TM_ALL = "all"

OPERATING_POINT_KINDS = ("probability", "confidence", "votes")
