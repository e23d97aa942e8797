"""
treevote.fields
===============

Field metadata for a model description.  A :class:`Fields` map resolves
input keys given either as field ids (``"000002"``) or as field names
(``"petal length"``) and casts the input values to the optype declared by
the model.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from .constants import NUMERIC, OPTYPES
from .exceptions import InputValidationError, ModelConfigurationError


@dataclass(frozen=True)
class FieldSpec:
    """Immutable description of one model field.

    Parameters
    ----------
    field_id : str
        Identifier used by predicates (``"000004"``).
    name : str
        Human readable name, also accepted as input key.
    optype : str
        One of ``numeric``, ``categorical``, ``text``, ``items`` or
        ``datetime``.
    summary : dict
        Summary statistics as delivered by the platform.  Only
        ``categories`` and ``term_forms`` are used by the prediction code.
    term_analysis, item_analysis : dict
        Tokenisation options for text and items fields.
    prefix, suffix : str or None
        Affixes stripped from numeric values given as strings.
    """

    field_id: str
    name: str
    optype: str
    summary: dict = field(default_factory=dict)
    term_analysis: dict = field(default_factory=dict)
    item_analysis: dict = field(default_factory=dict)
    prefix: str | None = None
    suffix: str | None = None

    @classmethod
    def from_dict(cls, field_id: str, info: Mapping[str, Any]) -> "FieldSpec":
        try:
            name = info["name"]
            optype = info["optype"]
        except KeyError as exc:
            raise ModelConfigurationError(
                f"Field {field_id} lacks the required key {exc.args[0]!r}") from None
        if optype not in OPTYPES:
            raise ModelConfigurationError(
                f"Field {field_id} has an unknown optype {optype!r}")
        return cls(
            field_id=field_id,
            name=name,
            optype=optype,
            summary=dict(info.get("summary") or {}),
            term_analysis=dict(info.get("term_analysis") or {}),
            item_analysis=dict(info.get("item_analysis") or {}),
            prefix=info.get("prefix"),
            suffix=info.get("suffix"),
        )

    @property
    def term_forms(self) -> dict:
        return self.summary.get("term_forms", {})

    def cast(self, value: Any) -> Any:
        """Cast an input value to this field's optype."""
        if self.optype == NUMERIC:
            if isinstance(value, bool):
                raise InputValidationError(
                    f"Mismatch input data type in field {self.name} for value {value!r}")
            if isinstance(value, (int, float)):
                return value
            if isinstance(value, str):
                text = value
                if self.prefix and text.startswith(self.prefix):
                    text = text[len(self.prefix):]
                if self.suffix and text.endswith(self.suffix):
                    text = text[:len(text) - len(self.suffix)]
                try:
                    return float(text)
                except ValueError:
                    pass
            raise InputValidationError(
                f"Mismatch input data type in field {self.name} for value {value!r}")
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        raise InputValidationError(
            f"Mismatch input data type in field {self.name} for value {value!r}")


class Fields(Mapping):
    """Read-only map ``field_id -> FieldSpec`` with name resolution."""

    def __init__(self, fields: Mapping[str, Any], objective_id: str | None = None):
        self._fields: dict[str, FieldSpec] = {}
        for field_id, info in fields.items():
            if isinstance(info, FieldSpec):
                self._fields[field_id] = info
            else:
                self._fields[field_id] = FieldSpec.from_dict(field_id, info)
        self._by_name = {spec.name: fid for fid, spec in self._fields.items()}
        if objective_id is not None and objective_id not in self._fields:
            raise ModelConfigurationError(
                f"The objective field {objective_id} is not in the fields list")
        self.objective_id = objective_id

    def __getitem__(self, field_id: str) -> FieldSpec:
        return self._fields[field_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"Fields({list(self._fields)!r}, objective_id={self.objective_id!r})"

    def field_id(self, key: str) -> str | None:
        """Return the id for a key given as id or as name (``None`` if unknown)."""
        if key in self._fields:
            return key
        return self._by_name.get(key)

    def spec(self, field_id: str) -> FieldSpec:
        """Like ``fields[field_id]`` but raising a configuration error."""
        try:
            return self._fields[field_id]
        except KeyError:
            raise ModelConfigurationError(
                f"Field {field_id} is used by the model but missing from "
                "its fields list") from None

    @property
    def objective(self) -> FieldSpec | None:
        if self.objective_id is None:
            return None
        return self._fields[self.objective_id]

    @property
    def categories(self) -> list:
        """Objective categories in their declared order (empty for regressions)."""
        objective = self.objective
        if objective is None or objective.optype == NUMERIC:
            return []
        return [category for category, _ in objective.summary.get("categories", [])]

    def filter_input(self, input_data: Mapping[str, Any]) -> tuple[dict, list]:
        """
        Build a new input dictionary keyed by field id.

        Entries whose key is not a model field, or whose value is ``None``,
        are left out and reported in the second element of the returned
        tuple.  The objective field is never used as input.  The given
        mapping is not modified.

        Raises
        ------
        InputValidationError
            If a value cannot be cast to its field's optype.
        """
        clean: dict[str, Any] = {}
        unused: list[str] = []
        for key, value in input_data.items():
            field_id = self.field_id(key)
            if value is None or field_id is None or field_id == self.objective_id:
                unused.append(key)
                continue
            clean[field_id] = self._fields[field_id].cast(value)
        return clean, unused
