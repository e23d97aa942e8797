"""
treevote.predicate
==================

Field-level conditions guarding the nodes of a tree.

A :class:`Predicate` compares one input field against a reference value
(or, for text and items fields, compares the number of occurrences of a
term against it).  A :class:`PredicateSet` is the conjunction of several
predicates.  The explicit :data:`ALWAYS` sentinel stands for the ``true``
predicate found at the root of every tree.

Both classes render themselves in two forms:

* ``to_rule`` returns the LISP-like filter expression understood by the
  platform's dataset filters, e.g. ``(= (f "000004") 183)``.
* ``to_description`` returns a human readable clause using field names,
  e.g. ``petal length > 2.45``.
"""
from __future__ import annotations

import json
import operator as op
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .constants import ITEMS, TEXT, TM_ALL, TM_FULL_TERM, TM_TOKENS
from .exceptions import ModelConfigurationError
from .fields import Fields

OPERATORS = {
    "=": op.eq,
    "!=": op.ne,
    "<": op.lt,
    "<=": op.le,
    ">": op.gt,
    ">=": op.ge,
    "in": lambda value, options: value in options,
}
# Aliases used by some platform versions
OPERATOR_ALIASES = {"/=": "!="}

RELATIONS = {
    "<=": "no more than {} {}",
    ">=": "{} {} at least",
    ">": "more than {} {}",
    "<": "less than {} {}",
}

FULL_TERM_PATTERN = re.compile(r"^.+\b.+$", re.U)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _plural(text: str, num) -> str:
    return text if num == 1 else f"{text}s"


def _lisp_value(value: Any) -> str:
    """Render a reference value the way the filter language expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_lisp_value(item) for item in value) + "]"
    return json.dumps(value, ensure_ascii=False)


def _tokens_flags(case_sensitive: bool) -> int:
    return re.U if case_sensitive else re.U | re.I


def full_term_match(text: str, full_term: str, case_sensitive: bool) -> int:
    """1 if ``text`` is exactly ``full_term`` (modulo case), 0 otherwise."""
    if not case_sensitive:
        text = text.lower()
        full_term = full_term.lower()
    return 1 if text == full_term else 0


def term_matches_tokens(text: str, forms: list[str], case_sensitive: bool) -> int:
    """Number of token occurrences of any of the ``forms`` in ``text``."""
    alternatives = r"(\b|_)|(\b|_)".join(re.escape(form) for form in forms)
    pattern = re.compile(r"(\b|_)%s(\b|_)" % alternatives,
                         flags=_tokens_flags(case_sensitive))
    return len(pattern.findall(text))


def term_matches(text: str, forms: list[str], options: Mapping[str, Any]) -> int:
    """
    Count the occurrences of a term (given with all its forms) in ``text``.

    ``options`` is the field's ``term_analysis``: ``token_mode`` selects
    whether terms are matched as tokens, as the full field content, or
    both (full terms for multi-word terms, tokens otherwise).
    """
    token_mode = options.get("token_mode", TM_TOKENS)
    case_sensitive = options.get("case_sensitive", False)
    first_term = forms[0]
    if token_mode == TM_FULL_TERM:
        return full_term_match(text, first_term, case_sensitive)
    if token_mode == TM_ALL and len(forms) == 1 and FULL_TERM_PATTERN.match(first_term):
        return full_term_match(text, first_term, case_sensitive)
    return term_matches_tokens(text, forms, case_sensitive)


def item_matches(text: str, item: str, options: Mapping[str, Any]) -> int:
    """Count the occurrences of ``item`` in a separator-delimited ``text``."""
    separator = options.get("separator", " ")
    regexp = options.get("separator_regexp")
    if regexp is None:
        regexp = re.escape(separator)
    pattern = re.compile(r"(^|%s)%s($|%s)" % (regexp, re.escape(item), regexp),
                         flags=re.U)
    return len(pattern.findall(text))


# -----------------------------------------------------------------------------
# Predicates
# -----------------------------------------------------------------------------
class Always:
    """The ``true`` predicate: holds for every input."""

    __slots__ = ()

    field = None
    missing = False
    value = None

    def evaluate(self, input_data: Mapping[str, Any], fields: Fields) -> bool:
        return True

    def to_rule(self, fields: Fields) -> str:
        return ""

    def to_description(self, fields: Fields) -> str:
        return ""

    def __repr__(self) -> str:
        return "ALWAYS"

    def __eq__(self, other) -> bool:
        return isinstance(other, Always)

    def __hash__(self) -> int:
        return hash(Always)


ALWAYS = Always()


@dataclass(frozen=True)
class Predicate:
    """
    A condition on a single field.

    Parameters
    ----------
    operator : str
        One of ``=``, ``!=``, ``<``, ``<=``, ``>``, ``>=`` or ``in``.
    field : str
        Field id the condition applies to.
    value : Any
        Reference value.  ``None`` combined with ``=`` means "the field is
        missing"; combined with ``!=`` it means "the field is present".
    term : str or None
        For text and items fields: the term whose occurrences are counted
        and compared against ``value``.
    missing : bool
        The predicate also holds when the field is missing from the input.
        A missing-flagged predicate without ``value`` holds only then.
    """

    operator: str
    field: str
    value: Any = None
    term: str | None = None
    missing: bool = False

    def __post_init__(self):
        if self.operator not in OPERATORS:
            raise ModelConfigurationError(f"Unknown predicate operator {self.operator!r}")

    @classmethod
    def from_dict(cls, info: Mapping[str, Any]) -> "Predicate":
        """Build a predicate from its JSON description.

        Operators ending in ``*`` (``<=*``) flag the predicate as also
        accepting missing values.
        """
        try:
            operator = info["operator"] if "operator" in info else info["op"]
            field = info["field"]
        except KeyError as exc:
            raise ModelConfigurationError(
                f"Predicate {dict(info)!r} lacks the key {exc.args[0]!r}") from None
        missing = bool(info.get("missing", False))
        if operator.endswith("*"):
            operator = operator[:-1]
            missing = True
        operator = OPERATOR_ALIASES.get(operator, operator)
        value = info.get("value")
        if isinstance(value, list):
            value = tuple(value)
        return cls(operator, field, value, info.get("term"), missing)

    def _term_count(self, input_data: Mapping[str, Any], fields: Fields) -> int:
        spec = fields.spec(self.field)
        text = input_data.get(self.field, "")
        if spec.optype == TEXT:
            forms = [self.term]
            forms.extend(spec.term_forms.get(self.term, []))
            return term_matches(text, forms, spec.term_analysis)
        return item_matches(text, self.term, spec.item_analysis)

    def evaluate(self, input_data: Mapping[str, Any], fields: Fields) -> bool:
        """Apply the predicate to an input keyed by field id."""
        if self.term is not None:
            return OPERATORS[self.operator](self._term_count(input_data, fields),
                                            self.value)
        if input_data.get(self.field) is None:
            if self.missing:
                return True
            if self.value is None:
                return self.operator == "="
            return self.operator == "!="
        if self.value is None:
            return self.operator == "!=" and not self.missing
        return OPERATORS[self.operator](input_data[self.field], self.value)

    def to_rule(self, fields: Fields) -> str:
        """LISP-like filter expression for this predicate."""
        field_id = json.dumps(self.field)
        if self.term is not None:
            spec = fields.spec(self.field)
            term = json.dumps(self.term, ensure_ascii=False)
            if spec.optype == TEXT:
                options = spec.term_analysis
                insensitive = "false" if options.get("case_sensitive", False) else "true"
                language = options.get("language")
                language = "" if language is None else " " + json.dumps(language)
                return (f"({self.operator} (occurrences (f {field_id}) {term} "
                        f"{insensitive}{language}) {_lisp_value(self.value)})")
            if spec.optype == ITEMS:
                return (f"({self.operator} (if (contains-items? {field_id} {term}) 1 0) "
                        f"{_lisp_value(self.value)})")
        if self.value is None:
            if self.operator == "!=" and not self.missing:
                return f"(not (missing? {field_id}))"
            return f"(missing? {field_id})"
        rule = f"({self.operator} (f {field_id}) {_lisp_value(self.value)})"
        if self.missing:
            rule = f"(or (missing? {field_id}) {rule})"
        return rule

    def to_description(self, fields: Fields) -> str:
        """Human readable version of the predicate."""
        spec = fields.spec(self.field)
        name = spec.name
        relation_missing = " or missing" if self.missing else ""
        if self.term is not None:
            full_term = self._is_full_term(spec)
            relation_suffix = ""
            if ((self.operator == "<" and self.value <= 1) or
                    (self.operator == "<=" and self.value == 0)):
                relation_literal = "is not equal to" if full_term else "does not contain"
            else:
                relation_literal = "is equal to" if full_term else "contains"
                if not full_term and self.operator in RELATIONS and \
                        (self.operator != ">" or self.value != 0):
                    relation_suffix = " " + RELATIONS[self.operator].format(
                        self.value, _plural("time", self.value))
            return f"{name} {relation_literal} {self.term}{relation_suffix}{relation_missing}"
        if self.value is None:
            if self.operator == "!=" and not self.missing:
                return f"{name} is not missing"
            return f"{name} is missing"
        return f"{name} {self.operator} {self.value}{relation_missing}"

    def _is_full_term(self, spec) -> bool:
        if spec.optype != TEXT:
            return False
        options = spec.term_analysis
        token_mode = options.get("token_mode", TM_TOKENS)
        if token_mode == TM_FULL_TERM:
            return True
        return token_mode == TM_ALL and bool(FULL_TERM_PATTERN.match(self.term))


def predicate_from_json(info: Any) -> Predicate | Always:
    """``true`` becomes :data:`ALWAYS`, anything else a :class:`Predicate`."""
    if info is True:
        return ALWAYS
    if isinstance(info, Mapping):
        return Predicate.from_dict(info)
    raise ModelConfigurationError(f"Cannot build a predicate from {info!r}")


class PredicateSet:
    """Ordered conjunction of predicates."""

    __slots__ = ("predicates",)

    def __init__(self, predicates: Iterable[Predicate | Always] = ()):
        self.predicates = tuple(predicates)

    @classmethod
    def from_json(cls, info: Any) -> "PredicateSet":
        if info is True:
            return cls([ALWAYS])
        if isinstance(info, Mapping):
            return cls([Predicate.from_dict(info)])
        return cls(predicate_from_json(item) for item in info)

    def __iter__(self):
        return iter(self.predicates)

    def __len__(self) -> int:
        return len(self.predicates)

    def __repr__(self) -> str:
        return f"PredicateSet({list(self.predicates)!r})"

    @property
    def conditions(self) -> list[Predicate]:
        """The non-sentinel predicates, in their original order."""
        return [p for p in self.predicates if not isinstance(p, Always)]

    def evaluate(self, input_data: Mapping[str, Any], fields: Fields) -> bool:
        for predicate in self.conditions:
            if not predicate.evaluate(input_data, fields):
                return False
        return True

    def to_rule(self, fields: Fields) -> str:
        rules = [predicate.to_rule(fields) for predicate in self.conditions]
        if len(rules) > 1:
            return "(and " + " ".join(rules) + ")"
        return rules[0] if rules else ""

    def to_description(self, fields: Fields) -> str:
        return " and ".join(p.to_description(fields) for p in self.conditions)
