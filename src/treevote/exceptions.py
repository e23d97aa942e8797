"""Exception hierarchy.

Every error raised by the package is a ``ValueError`` subclass, so code
written against plain ``ValueError`` keeps catching them.
"""


class TreevoteError(ValueError):
    """Base class for all treevote errors."""


class ModelConfigurationError(TreevoteError):
    """The model or ensemble description is incomplete or inconsistent."""


class InputValidationError(TreevoteError):
    """An input value cannot be cast to the type of its field."""


class CombinationError(TreevoteError):
    """A vote combination method cannot be applied to the given votes."""


class NotLoadedError(TreevoteError):
    """A prediction was requested before loading a description."""
